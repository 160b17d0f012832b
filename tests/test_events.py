import asyncio
import json

import pytest

from cronos_x402_sdk.events import (
    CallbackSink,
    EventStream,
    ExecutionSession,
    FanOutEmitter,
    ListSink,
)
from cronos_x402_sdk.models import ExecutionStep, ProgressEvent


class ExplodingSink:
    async def emit(self, event: ProgressEvent) -> None:
        raise RuntimeError("sink down")


def test_fan_out_delivers_in_order_to_every_sink() -> None:
    first, second = ListSink(), ListSink()
    received = []
    emitter = FanOutEmitter([first, CallbackSink(received.append), second])
    session = ExecutionSession(emitter, "session-1")

    async def run():
        await session.enter(ExecutionStep.DISCOVER, "Discovering services...")
        await session.progress("Found 3 service(s)")
        await session.succeed("Transaction confirmed!")

    asyncio.run(run())

    messages = ["Discovering services...", "Found 3 service(s)", "Transaction confirmed!"]
    assert [e.message for e in first.events] == messages
    assert [e.message for e in second.events] == messages
    assert [e.message for e in received] == messages
    assert session.events == first.events


def test_failing_sink_does_not_stop_others(caplog) -> None:
    sink = ListSink()
    session = ExecutionSession(FanOutEmitter([ExplodingSink(), sink]))

    asyncio.run(session.enter(ExecutionStep.MATCH, "Looking up service x..."))

    assert len(sink.events) == 1
    assert "sink down" in caplog.text


def test_session_records_failed_step() -> None:
    session = ExecutionSession(FanOutEmitter())

    async def run():
        await session.enter(ExecutionStep.SIGN, "Signing transaction...")
        await session.fail("Transaction cancelled by user", {"category": "user_rejected"})

    asyncio.run(run())

    assert session.finished
    assert session.current_step == ExecutionStep.ERROR
    assert session.outcome.data == {"category": "user_rejected", "failedStep": "sign"}


def test_finished_session_accepts_no_more_events() -> None:
    session = ExecutionSession(FanOutEmitter())

    async def run():
        await session.succeed("done")
        await session.progress("late")

    with pytest.raises(RuntimeError, match="already finished"):
        asyncio.run(run())


def test_event_stream_closes_after_terminal_event() -> None:
    stream = EventStream()

    async def run():
        await stream.emit(ProgressEvent(type="progress", message="a", step=ExecutionStep.DISCOVER))
        await stream.emit(ProgressEvent(type="error", message="b", step=ExecutionStep.ERROR))
        await stream.emit(ProgressEvent(type="progress", message="ignored"))
        return [chunk async for chunk in stream.sse()]

    frames = asyncio.run(run())

    assert len(frames) == 2
    assert all(f.startswith("data: ") and f.endswith("\n\n") for f in frames)
    assert json.loads(frames[1][6:])["type"] == "error"


def test_ndjson_lines() -> None:
    stream = EventStream()

    async def run():
        await stream.emit(ProgressEvent(type="success", message="ok", timestamp=1700000000000))
        return [line async for line in stream.ndjson()]

    (line,) = asyncio.run(run())

    assert line.endswith("\n")
    assert json.loads(line) == {"type": "success", "message": "ok", "timestamp": 1700000000000}


def test_event_json_shape() -> None:
    event = ProgressEvent(
        type="progress",
        message="Calculating commitment...",
        timestamp=1,
        step=ExecutionStep.COMMIT,
        data={"k": "v"},
    )

    assert json.loads(event.to_json()) == {
        "type": "progress",
        "message": "Calculating commitment...",
        "timestamp": 1,
        "step": "commit",
        "data": {"k": "v"},
    }
