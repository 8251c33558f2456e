import asyncio

import pytest

from deckchat.agent.events import Completion, Narration, ToolNotice
from deckchat.server.stream import (
    SENTINEL,
    FinalContent,
    Notice,
    ResponseSink,
    StreamClosed,
    multiplex,
    render,
    split_stream,
)


def test_render_wire_events():
    assert render(Narration("hi")) == "hi"
    assert render(Notice("[Creating secure environment...]\n\n")) == "[Creating secure environment...]\n\n"
    assert render(ToolNotice("write", "presentation.md")) == "\n[Writing presentation.md...]\n"
    assert render(ToolNotice("read", "RULES.md")) == "\n[Reading RULES.md...]\n"
    assert render(Completion(42, "t")) == "\n\n[Completed in 42ms]\n"
    assert render(FinalContent("# Deck")) == SENTINEL + "# Deck"
    with pytest.raises(TypeError):
        render("plain string")


def test_split_stream_uses_first_sentinel():
    body = "thinking" + SENTINEL + "# Deck\nmentions " + SENTINEL
    assert split_stream(body) == ("thinking", "# Deck\nmentions " + SENTINEL)
    assert split_stream("only narration\n\nError: x") == ("only narration\n\nError: x", None)


def test_sink_is_sealed_after_final_content():
    async def go():
        sink = ResponseSink()
        await sink.emit(Narration("a"))
        await sink.emit(FinalContent("doc"))
        assert not sink.open
        with pytest.raises(StreamClosed):
            await sink.emit(Narration("late"))
        sink.close()
        sink.close()
        return [c async for c in sink.iter_bytes()]

    assert asyncio.run(go()) == [b"a", (SENTINEL + "doc").encode()]


def test_multiplex_preserves_emission_order():
    async def turn(sink):
        for i in range(20):
            await sink.emit(Narration(f"{i},"))
            if i % 5 == 0:
                await asyncio.sleep(0)
        await sink.emit(FinalContent("end"))

    async def go():
        return b"".join([c async for c in multiplex(turn)]).decode()

    expected = "".join(f"{i}," for i in range(20)) + SENTINEL + "end"
    assert asyncio.run(go()) == expected


def test_multiplex_reports_crashes_in_band():
    async def turn(sink):
        await sink.emit(Narration("partial"))
        raise ValueError("bad state")

    async def go():
        return b"".join([c async for c in multiplex(turn)]).decode()

    assert asyncio.run(go()) == "partial\n\nError: bad state"


def test_turn_keeps_running_after_consumer_leaves():
    finished = []

    async def turn(sink):
        await sink.emit(Narration("first"))
        await asyncio.sleep(0.01)
        await sink.emit(Narration("second"))
        finished.append(True)

    async def go():
        gen = multiplex(turn)
        first = await gen.__anext__()
        await gen.aclose()  # client disconnected
        await asyncio.sleep(0.05)
        return first

    assert asyncio.run(go()) == b"first"
    assert finished == [True]
