# src/deckchat/server/stream.py
# Wire protocol of the chat stream (text/plain, protocol version 1):
#
#   <narration bytes, any length> SENTINEL <final document content>
#
# Narration is free text: agent thinking, tool notices, progress and error
# notices. The sentinel appears at most once and only on success; nothing
# is written after the final content. Clients split on its first
# occurrence; a body without it means the turn failed.

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Set, Tuple, Union

from deckchat.agent.events import Completion, Narration, ToolNotice
from deckchat.core.logging import get_logger

log = get_logger(__name__)

SENTINEL = "__FINAL_CONTENT__"
PROTOCOL_VERSION = "1"

_TOOL_VERBS = {"write": "Writing", "read": "Reading", "edit": "Editing"}


@dataclass(frozen=True)
class Notice:
    """Progress or error text produced by the orchestrator itself."""
    text: str


@dataclass(frozen=True)
class FinalContent:
    content: str


WireEvent = Union[Narration, ToolNotice, Completion, Notice, FinalContent]


def render(event: WireEvent) -> str:
    if isinstance(event, (Narration, Notice)):
        return event.text
    if isinstance(event, ToolNotice):
        verb = _TOOL_VERBS.get(event.kind, event.kind.capitalize())
        return f"\n[{verb} {event.path}...]\n"
    if isinstance(event, Completion):
        return f"\n\n[Completed in {event.duration_ms}ms]\n"
    if isinstance(event, FinalContent):
        return SENTINEL + event.content
    raise TypeError(f"not a wire event: {event!r}")


def encode(event: WireEvent) -> bytes:
    return render(event).encode("utf-8")


def split_stream(body: str) -> Tuple[str, Optional[str]]:
    """Split a received body into (narration, final content or None)."""
    narration, sep, content = body.partition(SENTINEL)
    return (narration, content) if sep else (body, None)


class StreamClosed(RuntimeError):
    pass


class ResponseSink:
    """
    Ordered, single-producer channel between a turn and the HTTP body.

    Events are queued in emission order and encoded on the way out.
    Once FinalContent is emitted, or the sink is closed, further emits
    raise StreamClosed.
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Optional[WireEvent]]" = asyncio.Queue()
        self._sealed = False
        self._closed = False
        self.final_sent = False

    async def emit(self, event: WireEvent) -> None:
        if self._sealed:
            raise StreamClosed(f"stream already finished, dropping {type(event).__name__}")
        if isinstance(event, FinalContent):
            self._sealed = True
            self.final_sent = True
        await self._queue.put(event)

    @property
    def open(self) -> bool:
        return not self._sealed

    async def notice(self, text: str) -> None:
        await self.emit(Notice(text))

    def close(self) -> None:
        if self._closed:
            return
        self._sealed = self._closed = True
        self._queue.put_nowait(None)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield encode(event)


TurnRunner = Callable[[ResponseSink], Awaitable[None]]

# Strong references to turns whose client went away; they run to completion.
_inflight: Set["asyncio.Task[None]"] = set()


async def multiplex(run: TurnRunner) -> AsyncIterator[bytes]:
    """
    Run one turn in its own task and yield its wire bytes as they are emitted.

    If the consumer stops early (client disconnect) the task is not
    cancelled, so commands already running inside the environment finish
    and session state stays consistent.
    """
    sink = ResponseSink()

    async def _drive() -> None:
        try:
            await run(sink)
        except Exception as e:
            # The response is already open; a failure can only be reported in-band.
            log.exception("turn crashed outside its own error handling")
            if sink.open:
                await sink.notice(f"\n\nError: {e}")
        finally:
            sink.close()

    task = asyncio.create_task(_drive())
    _inflight.add(task)
    task.add_done_callback(_inflight.discard)

    async for chunk in sink.iter_bytes():
        yield chunk
    await task
