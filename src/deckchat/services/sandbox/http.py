"""
REST client for a remote sandbox service.

Expected contract:
  POST   {base}/v1/sandboxes                  {"resources": {"vcpus"}, "timeout_ms", "runtime"} -> {"sandbox": {"id", "status"}}
  GET    {base}/v1/sandboxes/{id}             -> {"sandbox": {"id", "status"}}  (404 once evicted)
  POST   {base}/v1/sandboxes/{id}/commands    {"cmd", "args", "env", "wait": true}
                                              -> {"exitCode", "stdout", "stderr"}
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from deckchat.core.logging import get_logger
from deckchat.kernel.errors import EnvironmentUnavailable
from deckchat.services.sandbox.base import CommandResult, Environment, EnvironmentProvider, LineCallback

log = get_logger(__name__)

_LIVE_STATES = {"pending", "running"}


class HttpEnvironment(Environment):
    def __init__(self, environment_id: str, client: httpx.AsyncClient):
        super().__init__(environment_id)
        self._client = client

    async def run(
        self,
        cmd: str,
        args: Sequence[str] = (),
        env: Optional[Dict[str, str]] = None,
        on_line: Optional[LineCallback] = None,
    ) -> CommandResult:
        body: Dict[str, Any] = {"cmd": cmd, "args": list(args), "wait": True}
        if env:
            body["env"] = env
        try:
            r = await self._client.post(f"/v1/sandboxes/{self.id}/commands", json=body)
        except httpx.TransportError as e:
            raise EnvironmentUnavailable(detail=f"sandbox {self.id} unreachable: {e!r}")
        if r.status_code in (404, 410):
            raise EnvironmentUnavailable(detail=f"sandbox {self.id} is gone")
        r.raise_for_status()
        data = r.json()
        result = CommandResult(
            exit_code=int(data.get("exitCode", 1)),
            stdout=data.get("stdout") or "",
            stderr=data.get("stderr") or "",
        )
        # The service answers once the command finished; replay its lines in order.
        if on_line is not None:
            lines = result.stdout.split("\n")
            if lines and lines[-1] == "":
                lines.pop()
            for line in lines:
                await on_line(line[:-1] if line.endswith("\r") else line)
        return result


class HttpSandboxProvider(EnvironmentProvider):
    def __init__(self, base_url: str, token: Optional[str] = None, *, client: Optional[httpx.AsyncClient] = None):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        # Agent turns can run for minutes; no read timeout on the command call.
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(30.0, read=None),
        )

    async def create(self, *, vcpus: int, timeout_sec: int, runtime: str) -> Environment:
        body = {"resources": {"vcpus": vcpus}, "timeout_ms": timeout_sec * 1000, "runtime": runtime}
        try:
            r = await self._client.post("/v1/sandboxes", json=body)
            r.raise_for_status()
            sandbox_id = r.json()["sandbox"]["id"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise EnvironmentUnavailable(detail=f"sandbox creation failed: {e!r}")
        log.info("sandbox created id=%s vcpus=%d timeout=%ds", sandbox_id, vcpus, timeout_sec)
        return HttpEnvironment(sandbox_id, self._client)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        wait=wait_exponential(min=0.2, max=2),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _fetch(self, environment_id: str) -> httpx.Response:
        return await self._client.get(f"/v1/sandboxes/{environment_id}")

    async def resolve(self, environment_id: str) -> Environment:
        try:
            r = await self._fetch(environment_id)
        except httpx.TransportError as e:
            raise EnvironmentUnavailable(detail=f"sandbox {environment_id} unreachable: {e!r}")
        if r.status_code != 200:
            raise EnvironmentUnavailable(detail=f"sandbox {environment_id} lookup returned HTTP {r.status_code}")
        try:
            status = ((r.json() or {}).get("sandbox") or {}).get("status")
        except (ValueError, AttributeError) as e:
            raise EnvironmentUnavailable(detail=f"sandbox {environment_id} lookup returned an unreadable body: {e!r}")
        if status not in _LIVE_STATES:
            raise EnvironmentUnavailable(detail=f"sandbox {environment_id} is {status or 'unknown'}")
        return HttpEnvironment(environment_id, self._client)

    async def aclose(self) -> None:
        await self._client.aclose()
