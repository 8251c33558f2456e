# src/deckchat/api/routes/chat.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from deckchat.agent.turn import TurnExecutor
from deckchat.api.schemas import ChatRequest
from deckchat.core.logging import get_logger
from deckchat.server.stream import PROTOCOL_VERSION, ResponseSink, multiplex

log = get_logger(__name__)

router = APIRouter()


def get_executor(request: Request) -> TurnExecutor:
    return request.app.state.executor


@router.post("/api/presentations/{presentation_id}/chat")
async def chat(presentation_id: str, body: ChatRequest, executor: TurnExecutor = Depends(get_executor)):
    """
    Run one agent turn and stream it back as text/plain:
    narration first, then SENTINEL + the updated document.
    """
    message = body.user_request
    content = body.current_content

    async def _turn(sink: ResponseSink) -> None:
        await executor.run(presentation_id, message, content, sink)

    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",  # for nginx, prevents response buffering
        "X-Stream-Protocol": PROTOCOL_VERSION,
    }
    log.info("chat turn requested presentation=%s messages=%d", presentation_id, len(body.messages))
    return StreamingResponse(multiplex(_turn), media_type="text/plain; charset=utf-8", headers=headers)
