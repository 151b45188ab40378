"""Event dispatcher routing inbound events to handlers for one epoch at a time."""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from galibot.core.handler_registry import EventHandler, HandlerRegistry
from galibot.errors import ConnectError, HandlerFailure, SendError
from galibot.interfaces.events import (
    CredentialRotated,
    DeviceCredential,
    EventKind,
    InboundEvent,
    OutboundReply,
)
from galibot.interfaces.transport import Transport, TransportSession

logger = logging.getLogger(__name__)

RotationCallback = Callable[[DeviceCredential], Awaitable[None]]

# Queue marker telling the worker the epoch's event stream is finished
_END_OF_EPOCH = object()


class EpochEnd(Enum):
    """Why an epoch's dispatch loop returned."""

    CONNECTION_LOST = "connection lost"
    SESSION_REVOKED = "session revoked"
    STREAM_CLOSED = "event stream closed"
    STREAM_FAILED = "event stream failed"
    STOPPED = "dispatcher stopped"


class EventDispatcher:
    """Consumes a session's event stream and invokes registered handlers.

    A reader task pulls events off the transport and queues them; a single
    worker dispatches them in arrival order. A slow handler therefore never
    stops the transport stream from being read. Synchronous handlers run in
    a thread so they do not block the event loop either.

    Handler exceptions and send failures are logged and never propagate.
    """

    def __init__(self, registry: HandlerRegistry, transport: Transport) -> None:
        """Initialize the dispatcher.

        Args:
            registry: Handlers keyed by event kind
            transport: Transport used to deliver replies
        """
        self._registry = registry
        self._transport = transport
        self._stopping = False
        self._epoch = 0
        self._queue: asyncio.Queue | None = None
        self._worker_task: asyncio.Task | None = None
        self._dispatched = 0
        self._dropped = 0

    @property
    def epoch(self) -> int:
        """Number of epochs started."""
        return self._epoch

    @property
    def dispatched_count(self) -> int:
        """Number of events handed to a handler."""
        return self._dispatched

    @property
    def is_stopping(self) -> bool:
        """Check if stop() has been called."""
        return self._stopping

    async def run_epoch(
        self,
        session: TransportSession,
        on_credential_rotated: RotationCallback | None = None,
    ) -> EpochEnd:
        """Dispatch events from one connected session until it ends.

        Events already queued when the stream ends are still dispatched,
        unless stop() was called.

        Args:
            session: The live session lent by the lifecycle manager
            on_credential_rotated: Called with refreshed credentials; these
                events are not passed to handlers

        Returns:
            Why the epoch ended
        """
        if self._stopping:
            return EpochEnd.STOPPED

        self._epoch += 1
        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue
        worker = asyncio.create_task(self._worker(queue), name=f"dispatch-epoch-{self._epoch}")
        self._worker_task = worker
        logger.debug(f"Dispatch epoch {self._epoch} started")

        try:
            end = await self._read(session, queue, on_credential_rotated)
        finally:
            queue.put_nowait(_END_OF_EPOCH)
            await self._close_stream(session)
            await worker
            self._worker_task = None
            self._queue = None

        if self._stopping:
            end = EpochEnd.STOPPED
        logger.debug(f"Dispatch epoch {self._epoch} ended: {end.value}")
        return end

    async def _read(
        self,
        session: TransportSession,
        queue: asyncio.Queue,
        on_credential_rotated: RotationCallback | None,
    ) -> EpochEnd:
        """Move events from the session stream onto the worker queue.

        A stream that raises ends the epoch like a lost connection.
        """
        try:
            async for event in session.events:
                if self._stopping:
                    return EpochEnd.STOPPED

                if isinstance(event, CredentialRotated):
                    if on_credential_rotated is not None:
                        await on_credential_rotated(event.credential)
                    continue

                queue.put_nowait(event)

                if event.kind is EventKind.CONNECTION_LOST:
                    return EpochEnd.CONNECTION_LOST
                if event.kind is EventKind.SESSION_REVOKED:
                    return EpochEnd.SESSION_REVOKED
        except ConnectError as e:
            logger.warning(f"Event stream failed: {e}")
            return EpochEnd.STREAM_FAILED
        except Exception as e:
            logger.error(f"Unexpected error reading event stream: {e}", exc_info=True)
            return EpochEnd.STREAM_FAILED
        return EpochEnd.STREAM_CLOSED

    async def stop(self) -> None:
        """Stop dispatching.

        No new events are dispatched; a handler already running is allowed
        to finish before this returns.
        """
        if not self._stopping:
            logger.info("Stopping event dispatch")
        self._stopping = True

        worker = self._worker_task
        if worker is None or worker.done():
            return
        if self._queue is not None:
            self._queue.put_nowait(_END_OF_EPOCH)
        await asyncio.shield(worker)

    async def _worker(self, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            if event is _END_OF_EPOCH:
                return
            if self._stopping:
                dropped = 1 + sum(1 for item in _drain(queue) if item is not _END_OF_EPOCH)
                self._dropped += dropped
                logger.info(f"Dropped {dropped} undispatched event(s) on shutdown")
                return
            await self.dispatch(event)

    async def dispatch(self, event: InboundEvent) -> None:
        """Route one event to its handler and send any reply.

        Args:
            event: The inbound event
        """
        handler = self._registry.get(event.kind)
        if handler is None:
            logger.debug(f"No handler for {event.kind.value} event, dropping")
            return

        self._dispatched += 1
        try:
            result = await _invoke(handler, event)
        except Exception as e:
            failure = HandlerFailure(event.kind.value, e)
            logger.error(f"{failure}", exc_info=True)
            return

        if result is None:
            return
        if not isinstance(result, OutboundReply):
            logger.warning(
                f"Handler for {event.kind.value} returned {type(result).__name__}, "
                "expected OutboundReply or None"
            )
            return
        await self._send(result)

    async def _send(self, reply: OutboundReply) -> None:
        try:
            await self._transport.send(reply.recipient, reply.payload)
            logger.debug(f"Reply sent to {reply.recipient}")
        except SendError as e:
            logger.warning(f"Dropping reply to {reply.recipient}: {e}")
        except Exception as e:
            logger.error(f"Unexpected error sending reply to {reply.recipient}: {e}")

    @staticmethod
    async def _close_stream(session: TransportSession) -> None:
        aclose = getattr(session.events, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            logger.debug(f"Error closing event stream: {e}")


async def _invoke(handler: EventHandler, event: InboundEvent):
    if inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    ):
        return await handler(event)
    result = await asyncio.to_thread(handler, event)
    if inspect.isawaitable(result):
        result = await result
    return result


def _drain(queue: asyncio.Queue):
    while not queue.empty():
        yield queue.get_nowait()
