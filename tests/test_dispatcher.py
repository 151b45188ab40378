"""Tests for the event dispatcher."""

import asyncio
import threading

import pytest

from galibot.core.dispatcher import EpochEnd, EventDispatcher
from galibot.core.handler_registry import HandlerRegistry
from galibot.errors import ConnectError, SendError
from galibot.handlers.builtin import EchoHandler
from galibot.interfaces.events import (
    ConnectionLost,
    CredentialRotated,
    DeviceCredential,
    EventKind,
    MessageReceived,
    OutboundReply,
    SessionRevoked,
    UnknownEvent,
)
from galibot.interfaces.transport import TransportSession
from tests.mocks import MockTransport, ScriptedSession, make_credential, wait_until


def message(text: str, chat: str = "C") -> MessageReceived:
    return MessageReceived(chat=chat, sender=chat, text=text)


class Recorder:
    """Async handler recording message texts."""

    def __init__(self) -> None:
        self.texts: list[str] = []

    async def __call__(self, event: MessageReceived) -> None:
        self.texts.append(event.text)


async def open_session(transport: MockTransport) -> tuple[ScriptedSession, TransportSession]:
    scripted = transport.script_session()
    session = await transport.connect(make_credential())
    return scripted, session


class TestEventDispatcher:
    """Tests for EventDispatcher class."""

    @pytest.mark.asyncio
    async def test_events_dispatched_in_order(
        self,
        dispatcher: EventDispatcher,
        registry: HandlerRegistry,
        mock_transport: MockTransport,
    ) -> None:
        """Test handlers see events in arrival order."""
        recorder = Recorder()
        registry.register(EventKind.MESSAGE_RECEIVED, recorder)
        scripted, session = await open_session(mock_transport)
        scripted.push(*(message(str(i)) for i in range(10)), ConnectionLost("gone"))

        end = await dispatcher.run_epoch(session)

        assert end is EpochEnd.CONNECTION_LOST
        assert recorder.texts == [str(i) for i in range(10)]

    @pytest.mark.asyncio
    async def test_reply_sent_to_chat(
        self,
        dispatcher: EventDispatcher,
        registry: HandlerRegistry,
        mock_transport: MockTransport,
    ) -> None:
        """Test a handler reply is delivered through the transport."""
        registry.register(EventKind.MESSAGE_RECEIVED, EchoHandler())
        scripted, session = await open_session(mock_transport)
        scripted.push(message("hello"))
        scripted.end()

        end = await dispatcher.run_epoch(session)

        assert end is EpochEnd.STREAM_CLOSED
        assert mock_transport.sent_messages == [("C", "Received: hello")]

    @pytest.mark.asyncio
    async def test_handler_failure_isolated(
        self,
        dispatcher: EventDispatcher,
        registry: HandlerRegistry,
        mock_transport: MockTransport,
    ) -> None:
        """Test one failing event does not stop later events."""
        handled: list[str] = []

        async def fragile(event: MessageReceived) -> OutboundReply:
            if event.text == "boom":
                raise RuntimeError("handler bug")
            handled.append(event.text)
            return OutboundReply(recipient=event.chat, payload=f"ok {event.text}")

        registry.register(EventKind.MESSAGE_RECEIVED, fragile)
        scripted, session = await open_session(mock_transport)
        scripted.push(message("a"), message("boom"), message("b"))
        scripted.end()

        end = await dispatcher.run_epoch(session)

        assert end is EpochEnd.STREAM_CLOSED
        assert handled == ["a", "b"]
        assert [payload for _, payload in mock_transport.sent_messages] == ["ok a", "ok b"]

    @pytest.mark.asyncio
    async def test_send_error_dropped(
        self,
        dispatcher: EventDispatcher,
        registry: HandlerRegistry,
        mock_transport: MockTransport,
    ) -> None:
        """Test failed replies are logged and dropped without retry."""
        registry.register(EventKind.MESSAGE_RECEIVED, EchoHandler())
        mock_transport.send_error = SendError("offline")
        scripted, session = await open_session(mock_transport)
        scripted.push(message("one"), message("two"))
        scripted.end()

        end = await dispatcher.run_epoch(session)

        assert end is EpochEnd.STREAM_CLOSED
        assert mock_transport.sent_messages == []
        assert dispatcher.dispatched_count == 2

    @pytest.mark.asyncio
    async def test_unhandled_events_dropped(
        self, dispatcher: EventDispatcher, mock_transport: MockTransport
    ) -> None:
        """Test events without a handler are dropped."""
        scripted, session = await open_session(mock_transport)
        scripted.push(UnknownEvent(type_name="receipt"), message("nobody listens"))
        scripted.end()

        await dispatcher.run_epoch(session)

        assert dispatcher.dispatched_count == 0

    @pytest.mark.asyncio
    async def test_invalid_handler_result_ignored(
        self,
        dispatcher: EventDispatcher,
        registry: HandlerRegistry,
        mock_transport: MockTransport,
    ) -> None:
        """Test a handler returning something other than a reply sends nothing."""

        async def sloppy(event: MessageReceived) -> str:
            return "not a reply"

        registry.register(EventKind.MESSAGE_RECEIVED, sloppy)
        scripted, session = await open_session(mock_transport)
        scripted.push(message("x"))
        scripted.end()

        await dispatcher.run_epoch(session)

        assert mock_transport.sent_messages == []

    @pytest.mark.asyncio
    async def test_session_revoked_ends_epoch(
        self,
        dispatcher: EventDispatcher,
        registry: HandlerRegistry,
        mock_transport: MockTransport,
    ) -> None:
        """Test a revocation ends the epoch; later events are not read."""
        recorder = Recorder()
        registry.register(EventKind.MESSAGE_RECEIVED, recorder)
        scripted, session = await open_session(mock_transport)
        scripted.push(message("before"), SessionRevoked("logged out"), message("after"))

        end = await dispatcher.run_epoch(session)

        assert end is EpochEnd.SESSION_REVOKED
        assert recorder.texts == ["before"]

    @pytest.mark.asyncio
    async def test_stream_error_ends_epoch(
        self,
        dispatcher: EventDispatcher,
        registry: HandlerRegistry,
        mock_transport: MockTransport,
    ) -> None:
        """Test a stream raising ConnectError ends the epoch after queued events."""
        recorder = Recorder()
        registry.register(EventKind.MESSAGE_RECEIVED, recorder)
        scripted, session = await open_session(mock_transport)
        scripted.push(message("before"))
        scripted.fail(ConnectError("link dropped mid-stream"))

        end = await dispatcher.run_epoch(session)

        assert end is EpochEnd.STREAM_FAILED
        assert recorder.texts == ["before"]

    @pytest.mark.asyncio
    async def test_unexpected_stream_error_ends_epoch(
        self, dispatcher: EventDispatcher, mock_transport: MockTransport
    ) -> None:
        """Test any other stream exception is contained as well."""
        scripted, session = await open_session(mock_transport)
        scripted.fail(RuntimeError("decoder bug"))

        assert await dispatcher.run_epoch(session) is EpochEnd.STREAM_FAILED

    @pytest.mark.asyncio
    async def test_credential_rotation_routed_to_callback(
        self,
        dispatcher: EventDispatcher,
        registry: HandlerRegistry,
        mock_transport: MockTransport,
    ) -> None:
        """Test rotated credentials go to the callback instead of handlers."""
        handler_calls: list[object] = []
        rotated: list[DeviceCredential] = []

        async def on_rotated(credential: DeviceCredential) -> None:
            rotated.append(credential)

        registry.register(EventKind.CREDENTIAL_ROTATED, handler_calls.append)
        new_credential = make_credential(payload=b"rotated")
        scripted, session = await open_session(mock_transport)
        scripted.push(CredentialRotated(new_credential))
        scripted.end()

        await dispatcher.run_epoch(session, on_credential_rotated=on_rotated)

        assert rotated == [new_credential]
        assert handler_calls == []

    @pytest.mark.asyncio
    async def test_sync_handler_runs_in_thread(
        self,
        dispatcher: EventDispatcher,
        registry: HandlerRegistry,
        mock_transport: MockTransport,
    ) -> None:
        """Test blocking handlers are moved off the event loop thread."""
        thread_ids: list[int] = []

        def blocking(event: MessageReceived) -> OutboundReply:
            thread_ids.append(threading.get_ident())
            return OutboundReply(recipient=event.chat, payload="done")

        registry.register(EventKind.MESSAGE_RECEIVED, blocking)
        scripted, session = await open_session(mock_transport)
        scripted.push(message("x"))
        scripted.end()

        await dispatcher.run_epoch(session)

        assert thread_ids and thread_ids[0] != threading.get_ident()
        assert mock_transport.sent_messages == [("C", "done")]

    @pytest.mark.asyncio
    async def test_slow_handler_does_not_stall_reading(
        self,
        dispatcher: EventDispatcher,
        registry: HandlerRegistry,
        mock_transport: MockTransport,
    ) -> None:
        """Test the stream keeps being read while a handler is busy."""
        gate = asyncio.Event()
        recorder = Recorder()

        async def slow(event: MessageReceived) -> None:
            await gate.wait()
            await recorder(event)

        rotated: list[DeviceCredential] = []

        async def on_rotated(credential: DeviceCredential) -> None:
            rotated.append(credential)

        registry.register(EventKind.MESSAGE_RECEIVED, slow)
        scripted, session = await open_session(mock_transport)
        scripted.push(message("first"), message("second"), CredentialRotated(make_credential()))
        epoch = asyncio.create_task(dispatcher.run_epoch(session, on_credential_rotated=on_rotated))

        await wait_until(lambda: len(rotated) == 1)
        assert recorder.texts == []

        gate.set()
        scripted.end()
        assert await epoch is EpochEnd.STREAM_CLOSED
        assert recorder.texts == ["first", "second"]

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_handler(
        self,
        dispatcher: EventDispatcher,
        registry: HandlerRegistry,
        mock_transport: MockTransport,
    ) -> None:
        """Test stop() lets the running handler finish and drops queued events."""
        gate = asyncio.Event()
        started = asyncio.Event()
        finished: list[str] = []

        async def slow(event: MessageReceived) -> None:
            started.set()
            await gate.wait()
            finished.append(event.text)

        registry.register(EventKind.MESSAGE_RECEIVED, slow)
        scripted, session = await open_session(mock_transport)
        scripted.push(message("in-flight"), message("queued"))
        epoch = asyncio.create_task(dispatcher.run_epoch(session))
        await asyncio.wait_for(started.wait(), 1.0)

        stop = asyncio.create_task(dispatcher.stop())
        await asyncio.sleep(0.02)
        assert not stop.done()

        gate.set()
        await asyncio.wait_for(stop, 1.0)
        assert finished == ["in-flight"]
        assert dispatcher.is_stopping

        scripted.end()
        assert await epoch is EpochEnd.STOPPED
        assert finished == ["in-flight"]

    @pytest.mark.asyncio
    async def test_run_epoch_after_stop(
        self, dispatcher: EventDispatcher, mock_transport: MockTransport
    ) -> None:
        """Test no epoch starts once stopped."""
        await dispatcher.stop()
        _, session = await open_session(mock_transport)

        assert await dispatcher.run_epoch(session) is EpochEnd.STOPPED
        assert dispatcher.epoch == 0

    @pytest.mark.asyncio
    async def test_epoch_counter(
        self, dispatcher: EventDispatcher, mock_transport: MockTransport
    ) -> None:
        """Test each run_epoch() call starts a new epoch."""
        for _ in range(3):
            scripted, session = await open_session(mock_transport)
            scripted.end()
            await dispatcher.run_epoch(session)

        assert dispatcher.epoch == 3
