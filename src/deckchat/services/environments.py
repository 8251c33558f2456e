# src/deckchat/services/environments.py
from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple

from deckchat.agent.prompts import RULES_FILE, SAMPLE_FILE
from deckchat.core.logging import get_logger
from deckchat.core.metrics import ENVIRONMENTS
from deckchat.kernel.errors import EnvironmentUnavailable, SetupFailed
from deckchat.services.sandbox.base import Environment, EnvironmentProvider
from deckchat.services.session_store import SessionStore, environment_key

log = get_logger(__name__)

Notify = Callable[[str], Awaitable[None]]


@dataclass
class EnvironmentHandle:
    environment_id: str
    created_at: float
    refreshed_at: float

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> Optional["EnvironmentHandle"]:
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return cls(
                environment_id=str(data["environment_id"]),
                created_at=float(data.get("created_at", 0)),
                refreshed_at=float(data.get("refreshed_at", 0)),
            )
        except (ValueError, KeyError, TypeError):
            # bare id written by an older deployment
            return cls(environment_id=raw, created_at=0.0, refreshed_at=0.0)


@dataclass(frozen=True)
class ReferenceFiles:
    """Static files every agent turn relies on; opaque text to us."""
    rules: str
    sample: str

    @classmethod
    def load(cls, rules_path: str, sample_path: str) -> "ReferenceFiles":
        return cls(
            rules=Path(rules_path).read_text(encoding="utf-8"),
            sample=Path(sample_path).read_text(encoding="utf-8"),
        )

    def items(self) -> List[Tuple[str, str]]:
        return [(RULES_FILE, self.rules), (SAMPLE_FILE, self.sample)]


async def write_references(env: Environment, references: ReferenceFiles) -> None:
    for name, content in references.items():
        res = await env.write_file(name, content)
        if not res.ok:
            raise SetupFailed(detail=f"Failed to write {name}: {res.stderr or 'Unknown error'}")


async def _silent(_: str) -> None:
    return None


class EnvironmentManager:
    """
    Hands out a ready environment per document.

    The handle in the session store is refreshed on every acquire with a TTL
    below the environment's own idle timeout, so a stored handle never
    points at something the provider already evicted for inactivity.
    """

    def __init__(
        self,
        store: SessionStore,
        provider: EnvironmentProvider,
        references: ReferenceFiles,
        *,
        vcpus: int = 2,
        timeout_sec: int = 900,
        runtime: str = "node22",
        handle_ttl: int = 840,
        install_cmd: str = "",
    ):
        if handle_ttl >= timeout_sec:
            raise ValueError("handle_ttl must be lower than the environment idle timeout")
        self.store = store
        self.provider = provider
        self.references = references
        self.vcpus = vcpus
        self.timeout_sec = timeout_sec
        self.runtime = runtime
        self.handle_ttl = handle_ttl
        self.install_cmd = install_cmd

    async def acquire(self, document_id: str, notify: Optional[Notify] = None) -> Tuple[Environment, bool]:
        notify = notify or _silent
        key = environment_key(document_id)
        handle = EnvironmentHandle.from_raw(await self.store.get(key))

        env: Optional[Environment] = None
        if handle is not None:
            try:
                env = await self.provider.resolve(handle.environment_id)
            except EnvironmentUnavailable as e:
                log.info("stored environment %s not reusable: %s", handle.environment_id, e.detail)

        now = time.time()
        fresh = env is None
        if fresh:
            await notify("[Creating secure environment...]\n\n")
            env = await self.provider.create(vcpus=self.vcpus, timeout_sec=self.timeout_sec, runtime=self.runtime)
            await self.setup(env, notify)
            handle = EnvironmentHandle(environment_id=env.id, created_at=now, refreshed_at=now)
        else:
            handle.refreshed_at = now

        await self.store.set(key, handle.to_json(), self.handle_ttl)
        ENVIRONMENTS.labels("created" if fresh else "reused").inc()
        log.info("environment %s %s", env.id, "created" if fresh else "reused")
        return env, fresh

    async def setup(self, env: Environment, notify: Notify) -> None:
        """One-time preparation of a new environment: agent runtime and reference files."""
        if self.install_cmd:
            await notify("[Installing agent CLI...]\n\n")
            res = await env.bash(self.install_cmd)
            if not res.ok:
                raise SetupFailed(detail=f"Failed to install agent CLI: {res.stderr.strip() or 'Unknown error'}")
            await notify("[Agent CLI installed]\n\n")

        await notify("[Setting up files...]\n\n")
        await write_references(env, self.references)
