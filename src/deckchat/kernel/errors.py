from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Dict, Any


@dataclass
class ProblemDetails(Exception):
    type: str = "about:blank"
    title: str = "Turn failed"
    detail: str = ""
    status: int = 500
    code: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type,
            "title": self.title,
            "detail": self.detail,
            "status": self.status,
        }
        if self.code is not None:
            data["code"] = self.code
        if self.meta is not None:
            data["meta"] = self.meta
        return data

    def __str__(self) -> str:
        return f"{self.title} ({self.code or ''}): {self.detail}"


# ---- fatal per-turn conditions (reported as streamed text, never retried) ----

@dataclass
class EnvironmentUnavailable(ProblemDetails):
    title: str = "Execution environment unavailable"
    status: int = 503
    code: Optional[str] = "E_ENV_UNAVAILABLE"


@dataclass
class SetupFailed(ProblemDetails):
    title: str = "Environment setup failed"
    code: Optional[str] = "E_SETUP_FAILED"


@dataclass
class AgentInvocationFailed(ProblemDetails):
    title: str = "Agent invocation failed"
    status: int = 502
    code: Optional[str] = "E_AGENT_FAILED"


@dataclass
class ResultReadFailed(ProblemDetails):
    title: str = "Could not read back the document"
    code: Optional[str] = "E_RESULT_READ"
