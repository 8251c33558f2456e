# src/deckchat/agent/events.py
# Permissive decoder for the agent CLI's stream-json output (one JSON object per line).
#
# Decodable shapes:
#   {"type": "assistant", "message": {"content": [{"text": "..."}]}}           -> Narration
#   {"type": "tool_call", "subtype": "started",
#    "tool_call": {"writeToolCall"|"readToolCall"|"editToolCall": {"args": {"path"}}}} -> ToolNotice
#   {"type": "result", "duration_ms": 1234, "session_id": "..."}               -> Completion
# Anything else, including invalid JSON, decodes to Ignored and never raises.

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

_TOOL_KINDS = (
    ("writeToolCall", "write"),
    ("readToolCall", "read"),
    ("editToolCall", "edit"),
)


@dataclass(frozen=True)
class Narration:
    text: str


@dataclass(frozen=True)
class ToolNotice:
    kind: str  # write | read | edit
    path: str


@dataclass(frozen=True)
class Completion:
    duration_ms: int = 0
    continuation_token: Optional[str] = None


@dataclass(frozen=True)
class Ignored:
    reason: str
    line: str = ""
    malformed: bool = False


AgentEvent = Union[Narration, ToolNotice, Completion, Ignored]


def _first_text(event: Dict[str, Any]) -> str:
    message = event.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if not isinstance(content, list) or not content or not isinstance(content[0], dict):
        return ""
    text = content[0].get("text")
    return text if isinstance(text, str) else ""


def _tool_notice(event: Dict[str, Any]) -> Optional[ToolNotice]:
    call = event.get("tool_call")
    if not isinstance(call, dict):
        return None
    for field, kind in _TOOL_KINDS:
        spec = call.get(field)
        if isinstance(spec, dict):
            args = spec.get("args") if isinstance(spec.get("args"), dict) else {}
            return ToolNotice(kind=kind, path=str(args.get("path") or "file"))
    return None


def decode_line(line: str) -> AgentEvent:
    if not line.strip():
        return Ignored("blank line", line)
    try:
        event = json.loads(line)
    except (ValueError, RecursionError) as e:
        return Ignored(f"invalid JSON: {e}", line, malformed=True)
    if not isinstance(event, dict):
        return Ignored("not a JSON object", line, malformed=True)

    etype = event.get("type")
    if etype == "assistant":
        return Narration(_first_text(event))

    if etype == "tool_call":
        if event.get("subtype") != "started":
            return Ignored(f"tool_call subtype {event.get('subtype')!r}", line)
        notice = _tool_notice(event)
        return notice if notice is not None else Ignored("unknown tool", line)

    if etype == "result":
        try:
            duration = int(event.get("duration_ms") or 0)
        except (TypeError, ValueError):
            duration = 0
        token = event.get("session_id")
        return Completion(duration_ms=duration, continuation_token=str(token) if token else None)

    return Ignored(f"unrecognized type {etype!r}", line)
