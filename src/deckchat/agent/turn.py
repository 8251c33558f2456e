# src/deckchat/agent/turn.py
"""
One conversational turn against a document's execution environment.

    RESOLVE_ENV -> SYNC_FILES -> INVOKE_AGENT -> DECODE_STREAM
        -> PERSIST_STATE -> READ_RESULT -> EMIT_FINAL -> DONE

Any failure ends in FAILED: the error is written to the still-open stream
as a short notice and the stream is closed normally. Narration already
streamed stays streamed, and state already persisted is not rolled back.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from deckchat.agent.continuity import ContinuityStrategy
from deckchat.agent.events import Completion, Ignored, decode_line
from deckchat.agent.prompts import agent_args, agent_command
from deckchat.core.ctx import set_ctx
from deckchat.core.logging import get_logger
from deckchat.core.metrics import AGENT_DURATION, MALFORMED_EVENTS, TURNS
from deckchat.kernel.errors import (
    AgentInvocationFailed,
    EnvironmentUnavailable,
    ProblemDetails,
    ResultReadFailed,
)
from deckchat.server.stream import FinalContent, ResponseSink, render
from deckchat.services.environments import EnvironmentManager, write_references

log = get_logger(__name__)


class TurnState(str, Enum):
    RESOLVE_ENV = "RESOLVE_ENV"
    SYNC_FILES = "SYNC_FILES"
    INVOKE_AGENT = "INVOKE_AGENT"
    DECODE_STREAM = "DECODE_STREAM"
    PERSIST_STATE = "PERSIST_STATE"
    READ_RESULT = "READ_RESULT"
    EMIT_FINAL = "EMIT_FINAL"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class TurnOutcome:
    turn_id: str
    state: TurnState = TurnState.RESOLVE_ENV
    failed_in: Optional[TurnState] = None
    error: Optional[ProblemDetails] = None
    environment_id: Optional[str] = None
    fresh_environment: bool = False
    narration: str = ""
    continuation_token: Optional[str] = None
    final_content: Optional[str] = None


class TurnExecutor:
    def __init__(
        self,
        environments: EnvironmentManager,
        continuity: ContinuityStrategy,
        *,
        document_file: str = "presentation.md",
        agent_binary: str = "cursor-agent",
        agent_bin_dir: str = "",
        api_key: Optional[str] = None,
        api_key_env: str = "CURSOR_API_KEY",
    ):
        self.environments = environments
        self.continuity = continuity
        self.document_file = document_file
        self.agent_binary = agent_binary
        self.agent_bin_dir = agent_bin_dir
        self.api_key = api_key
        self.api_key_env = api_key_env

    async def run(self, document_id: str, message: str, current_content: str, sink: ResponseSink) -> TurnOutcome:
        outcome = TurnOutcome(turn_id=uuid.uuid4().hex[:12])
        set_ctx(document_id=document_id, turn_id=outcome.turn_id)
        try:
            await self._run(outcome, document_id, message, current_content or "", sink)
        except ProblemDetails as e:
            self._fail(outcome, e)
            log.error("turn failed in %s code=%s detail=%s", outcome.failed_in.value, e.code, e.detail)
        except Exception as e:
            self._fail(outcome, ProblemDetails(detail=str(e) or type(e).__name__, code="E_INTERNAL"))
            log.exception("turn failed in %s", outcome.failed_in.value)
        else:
            TURNS.labels("done").inc()
            return outcome

        TURNS.labels("failed").inc()
        if sink.open:
            await sink.notice(f"\n\nError: {outcome.error.detail or outcome.error.title}")
        return outcome

    def _fail(self, outcome: TurnOutcome, error: ProblemDetails) -> None:
        outcome.failed_in = outcome.state
        outcome.state = TurnState.FAILED
        outcome.error = error

    def _enter(self, outcome: TurnOutcome, state: TurnState) -> None:
        outcome.state = state
        log.info("turn %s -> %s", outcome.turn_id, state.value)

    async def _run(
        self,
        outcome: TurnOutcome,
        document_id: str,
        message: str,
        current_content: str,
        sink: ResponseSink,
    ) -> None:
        self._enter(outcome, TurnState.RESOLVE_ENV)
        env, fresh = await self.environments.acquire(document_id, notify=sink.notice)
        outcome.environment_id, outcome.fresh_environment = env.id, fresh

        self._enter(outcome, TurnState.SYNC_FILES)
        if not fresh:
            # new environments got them during setup
            await write_references(env, self.environments.references)
        res = await env.write_file(self.document_file, current_content)
        if not res.ok:
            raise EnvironmentUnavailable(
                detail=f"Failed to write {self.document_file}: {res.stderr.strip() or 'Unknown error'}"
            )
        if fresh:
            await sink.notice("[Files setup complete...]\n\n")
            await sink.notice("[Running AI agent...]\n\n")

        self._enter(outcome, TurnState.INVOKE_AGENT)
        is_first = not current_content.strip()
        request = await self.continuity.prepare(document_id, message, is_first)
        script = agent_command(
            self.agent_binary,
            agent_args(request.prompt, request.resume_token),
            self.agent_bin_dir,
        )
        env_vars: Dict[str, str] = {self.api_key_env: self.api_key or ""}

        narration: List[str] = []
        completion: Optional[Completion] = None

        async def on_line(line: str) -> None:
            nonlocal completion
            if outcome.state is TurnState.INVOKE_AGENT:
                self._enter(outcome, TurnState.DECODE_STREAM)
            event = decode_line(line)
            if isinstance(event, Ignored):
                if event.malformed:
                    MALFORMED_EVENTS.inc()
                    log.warning("skipping agent output line: %s", event.reason)
                return
            if isinstance(event, Completion):
                completion = event
            narration.append(render(event))
            await sink.emit(event)

        started = time.perf_counter()
        result = await env.bash(script, env=env_vars, on_line=on_line)
        AGENT_DURATION.observe(time.perf_counter() - started)
        outcome.narration = "".join(narration)

        self._enter(outcome, TurnState.PERSIST_STATE)
        await self.continuity.record(document_id, message, outcome.narration, completion)
        if completion is not None:
            outcome.continuation_token = completion.continuation_token
        if not result.ok:
            raise AgentInvocationFailed(
                detail=f"Agent CLI failed: {result.stderr.strip() or 'Unknown error'}",
                meta={"exit_code": result.exit_code, "stderr": result.stderr},
            )

        self._enter(outcome, TurnState.READ_RESULT)
        read = await env.read_file(self.document_file)
        if not read.ok:
            raise ResultReadFailed(detail=f"Failed to read {self.document_file}")

        self._enter(outcome, TurnState.EMIT_FINAL)
        outcome.final_content = read.stdout
        await sink.emit(FinalContent(read.stdout))
        self._enter(outcome, TurnState.DONE)
