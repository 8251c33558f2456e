# src/deckchat/core/ctx.py
from __future__ import annotations
import contextvars
from typing import Optional, Mapping

_document_id = contextvars.ContextVar("document_id", default=None)
_turn_id     = contextvars.ContextVar("turn_id",     default=None)

def set_ctx(*, document_id: Optional[str]=None, turn_id: Optional[str]=None) -> None:
    if document_id is not None: _document_id.set(document_id)
    if turn_id is not None:     _turn_id.set(turn_id)

def get_ctx() -> Mapping[str, Optional[str]]:
    return {
        "document_id": _document_id.get(),
        "turn_id":     _turn_id.get(),
    }
