from __future__ import annotations

import asyncio
import os
import shutil
import time
import uuid
from pathlib import Path
from typing import Dict, Optional, Sequence

from deckchat.core.logging import get_logger
from deckchat.kernel.errors import EnvironmentUnavailable
from deckchat.services.sandbox.base import CommandResult, Environment, EnvironmentProvider, LineCallback

log = get_logger(__name__)

_LEASE = ".lease"
_LINE_LIMIT = 16 * 1024 * 1024  # agent tool events can carry whole files


class LocalEnvironment(Environment):
    """A working directory on this host; HOME points at it so installs stay inside."""

    def __init__(self, environment_id: str, root: Path):
        super().__init__(environment_id)
        self.root = root

    def _touch(self) -> None:
        (self.root / _LEASE).touch()

    async def run(
        self,
        cmd: str,
        args: Sequence[str] = (),
        env: Optional[Dict[str, str]] = None,
        on_line: Optional[LineCallback] = None,
    ) -> CommandResult:
        self._touch()
        proc_env = dict(os.environ)
        proc_env["HOME"] = str(self.root)
        if env:
            proc_env.update(env)
        try:
            proc = await asyncio.create_subprocess_exec(
                cmd, *args,
                cwd=str(self.root),
                env=proc_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_LINE_LIMIT,
            )
        except FileNotFoundError as e:
            return CommandResult(exit_code=127, stderr=str(e))

        err_task = asyncio.create_task(proc.stderr.read())
        chunks = []
        try:
            while True:
                raw = await proc.stdout.readline()
                if not raw:
                    break
                chunks.append(raw)
                if on_line is not None:
                    line = raw.decode("utf-8", errors="replace")
                    await on_line(line[:-1] if line.endswith("\n") else line)
        except BaseException:
            # reap the child before the error leaves this call
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
            err_task.cancel()
            await asyncio.gather(err_task, return_exceptions=True)
            await proc.wait()
            self._touch()
            raise
        stderr = await err_task
        rc = await proc.wait()
        self._touch()
        return CommandResult(
            exit_code=rc,
            stdout=b"".join(chunks).decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


class LocalSandboxProvider(EnvironmentProvider):
    def __init__(self, root: str, timeout_sec: int = 900):
        self.root = Path(root).resolve()
        self.timeout_sec = timeout_sec

    async def create(self, *, vcpus: int, timeout_sec: int, runtime: str) -> Environment:
        # Resources are not enforced locally; the idle timeout is the provider-wide one.
        env_id = f"local_{uuid.uuid4().hex[:16]}"
        path = self.root / env_id
        try:
            path.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise EnvironmentUnavailable(detail=f"cannot create {path}: {e!r}")
        environment = LocalEnvironment(env_id, path)
        environment._touch()
        log.info("local sandbox created id=%s path=%s", env_id, path)
        return environment

    async def resolve(self, environment_id: str) -> Environment:
        path = self.root / environment_id
        lease = path / _LEASE
        if path.parent != self.root or not lease.exists():
            raise EnvironmentUnavailable(detail=f"sandbox {environment_id} not found")
        idle = time.time() - lease.stat().st_mtime
        if idle > self.timeout_sec:
            # Emulate the remote service's idle eviction.
            shutil.rmtree(path, ignore_errors=True)
            raise EnvironmentUnavailable(detail=f"sandbox {environment_id} expired after {int(idle)}s idle")
        return LocalEnvironment(environment_id, path)
