# src/deckchat/agent/continuity.py
from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from deckchat.agent.events import Completion
from deckchat.agent.prompts import context_prompt, first_turn_prompt
from deckchat.core.config import Settings
from deckchat.core.logging import get_logger
from deckchat.services.session_store import SessionStore, continuation_key, transcript_key

log = get_logger(__name__)


@dataclass(frozen=True)
class AgentRequest:
    prompt: str
    resume_token: Optional[str] = None


class ContinuityStrategy(ABC):
    """How a turn carries the conversation so far into the agent."""

    def __init__(self, store: SessionStore, document_file: str):
        self.store = store
        self.document_file = document_file

    @abstractmethod
    async def prepare(self, document_id: str, message: str, is_first: bool) -> AgentRequest:
        ...

    @abstractmethod
    async def record(
        self,
        document_id: str,
        message: str,
        narration: str,
        completion: Optional[Completion],
    ) -> None:
        ...


class ResumeContinuity(ContinuityStrategy):
    """The agent remembers the conversation itself; we only keep its continuation token."""

    def __init__(self, store: SessionStore, document_file: str, ttl: int):
        super().__init__(store, document_file)
        self.ttl = ttl

    async def prepare(self, document_id: str, message: str, is_first: bool) -> AgentRequest:
        token = await self.store.get(continuation_key(document_id))
        if is_first:
            prompt = first_turn_prompt(message, self.document_file)
        elif token:
            prompt = message
        else:
            # Nothing to resume (expired or never stored); restate the context.
            prompt = context_prompt(message, self.document_file)
        return AgentRequest(prompt=prompt, resume_token=token)

    async def record(self, document_id, message, narration, completion) -> None:
        if completion is None or not completion.continuation_token:
            return
        await self.store.set(continuation_key(document_id), completion.continuation_token, self.ttl)
        log.info("continuation token stored ttl=%ds", self.ttl)


class TranscriptContinuity(ContinuityStrategy):
    """The agent starts fresh every turn; a bounded transcript is replayed in the prompt."""

    def __init__(self, store: SessionStore, document_file: str, ttl: int, max_len: int):
        super().__init__(store, document_file)
        self.ttl = ttl
        self.max_len = max_len

    async def history(self, document_id: str) -> List[dict]:
        entries = []
        for raw in await self.store.get_list(transcript_key(document_id)):
            try:
                entries.append(json.loads(raw))
            except ValueError:
                log.warning("dropping unreadable transcript entry: %.80r", raw)
        return entries

    async def _append(self, document_id: str, role: str, content: str) -> None:
        entry = {"role": role, "content": content, "timestamp": int(time.time() * 1000)}
        await self.store.append_bounded(
            transcript_key(document_id),
            json.dumps(entry, ensure_ascii=False),
            self.max_len,
            self.ttl,
        )

    async def prepare(self, document_id: str, message: str, is_first: bool) -> AgentRequest:
        history = await self.history(document_id)
        await self._append(document_id, "user", message)
        if is_first:
            return AgentRequest(prompt=first_turn_prompt(message, self.document_file))
        return AgentRequest(prompt=context_prompt(message, self.document_file, history))

    async def record(self, document_id, message, narration, completion) -> None:
        if completion is None:
            return
        await self._append(document_id, "assistant", narration)


def build_continuity(settings: Settings, store: SessionStore) -> ContinuityStrategy:
    if settings.CONTINUITY_MODE == "transcript":
        return TranscriptContinuity(
            store,
            settings.DOCUMENT_FILENAME,
            ttl=settings.TRANSCRIPT_TTL_SEC,
            max_len=settings.TRANSCRIPT_MAX_LEN,
        )
    return ResumeContinuity(store, settings.DOCUMENT_FILENAME, ttl=settings.CONTINUATION_TTL_SEC)
