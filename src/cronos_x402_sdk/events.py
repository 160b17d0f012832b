"""
Progress event delivery.

The orchestrator produces events through a single ``produce(event)`` call.
FanOutEmitter forwards each event, in order, to any number of sinks:

- CallbackSink: in-process delivery to a sync or async callable
- EventStream: async iterator for push transports (SSE / NDJSON writers)
- ListSink: keeps events in memory (tests, tool-call results)

A sink that fails does not stop the pipeline or the other sinks.
"""

import asyncio
import inspect
import logging
import uuid
from typing import Any, AsyncIterator, Callable, Iterable, Optional, Protocol, runtime_checkable

from cronos_x402_sdk.models import ExecutionStep, ProgressEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class EventSink(Protocol):
    async def emit(self, event: ProgressEvent) -> None:
        ...


class CallbackSink:
    """Deliver events to a plain callback (sync or async)."""

    def __init__(self, callback: Callable[[ProgressEvent], Any]):
        self.callback = callback

    async def emit(self, event: ProgressEvent) -> None:
        result = self.callback(event)
        if inspect.isawaitable(result):
            await result


class ListSink:
    """Collect events in a list."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    async def emit(self, event: ProgressEvent) -> None:
        self.events.append(event)


class EventStream:
    """
    Queue-backed sink that can be iterated by a push transport.

    Iteration ends after the terminal (success / error) event.

    Example:
        >>> stream = EventStream()
        >>> task = asyncio.create_task(orchestrator.execute(..., sinks=[stream]))
        >>> async for chunk in stream.sse():
        ...     await response.write(chunk)
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[ProgressEvent]] = asyncio.Queue()
        self._closed = False

    async def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        await self._queue.put(event)
        if event.is_terminal:
            self.close()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def sse(self) -> AsyncIterator[str]:
        """Events as Server-Sent Events frames."""
        async for event in self:
            yield event.to_sse()

    async def ndjson(self) -> AsyncIterator[str]:
        """Events as newline-delimited JSON."""
        async for event in self:
            yield event.to_ndjson()


class FanOutEmitter:
    """Forwards every produced event to all sinks, in registration order."""

    def __init__(self, sinks: Optional[Iterable[EventSink]] = None):
        self.sinks: list[EventSink] = list(sinks or [])

    def add(self, sink: EventSink) -> None:
        self.sinks.append(sink)

    async def produce(self, event: ProgressEvent) -> None:
        for sink in self.sinks:
            try:
                await sink.emit(event)
            except Exception:
                logger.exception("Progress sink %r failed on %s event", sink, event.type)


class ExecutionSession:
    """
    State of one execution attempt.

    Holds the ordered event trace, the current step and the terminal outcome.
    A session is never resumed: a retry is a new session.
    """

    def __init__(self, emitter: FanOutEmitter, session_id: Optional[str] = None):
        self.id = session_id or uuid.uuid4().hex
        self.emitter = emitter
        self.events: list[ProgressEvent] = []
        self.current_step: Optional[ExecutionStep] = None
        self.outcome: Optional[ProgressEvent] = None

    @property
    def finished(self) -> bool:
        return self.outcome is not None

    async def _record(self, event: ProgressEvent) -> None:
        if self.finished:
            raise RuntimeError(f"Session {self.id} already finished")
        self.events.append(event)
        await self.emitter.produce(event)

    async def enter(
        self, step: ExecutionStep, message: str, data: Optional[dict[str, Any]] = None
    ) -> None:
        """Move to ``step`` and announce the work about to happen."""
        self.current_step = step
        logger.info("[%s] %s: %s", self.id[:8], step.value, message)
        await self._record(ProgressEvent(type="progress", message=message, step=step, data=data))

    async def progress(self, message: str, data: Optional[dict[str, Any]] = None) -> None:
        """Additional progress detail within the current step."""
        await self._record(
            ProgressEvent(type="progress", message=message, step=self.current_step, data=data)
        )

    async def succeed(self, message: str, data: Optional[dict[str, Any]] = None) -> None:
        self.current_step = ExecutionStep.SUCCESS
        event = ProgressEvent(type="success", message=message, step=ExecutionStep.SUCCESS, data=data)
        await self._record(event)
        self.outcome = event

    async def fail(self, message: str, data: Optional[dict[str, Any]] = None) -> None:
        failed_at = self.current_step
        self.current_step = ExecutionStep.ERROR
        payload = dict(data or {})
        if failed_at is not None:
            payload.setdefault("failedStep", failed_at.value)
        event = ProgressEvent(type="error", message=message, step=ExecutionStep.ERROR, data=payload)
        await self._record(event)
        self.outcome = event
