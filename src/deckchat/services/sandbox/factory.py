from __future__ import annotations

from deckchat.core.config import Settings
from deckchat.services.sandbox.base import EnvironmentProvider
from deckchat.services.sandbox.http import HttpSandboxProvider
from deckchat.services.sandbox.local import LocalSandboxProvider


def build_provider(settings: Settings) -> EnvironmentProvider:
    if settings.SANDBOX_PROVIDER == "local":
        return LocalSandboxProvider(settings.SANDBOX_LOCAL_ROOT, timeout_sec=settings.SANDBOX_TIMEOUT_SEC)
    return HttpSandboxProvider(settings.SANDBOX_API_URL, settings.SANDBOX_API_TOKEN)
