"""
Tests for the Realtime Transport

Exercises the websocket transport against an in-process fake connection:
handshake, event decoding, cancel guarding, reconnect backoff and teardown.
"""

import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from seavoice.config import VoiceSessionConfig
from seavoice.realtime.errors import ConnectionFailed
from seavoice.realtime.events import (
    AppendAudio,
    AssistantResponseStarted,
    CancelResponse,
    ConfigureSession,
    ErrorEvent,
    SessionConfigured,
    SessionReady,
)
from seavoice.realtime.protocol import BackendProtocol, OpenAIRealtimeProtocol
from seavoice.realtime.transport import ConnectionState, WebSocketTransport

DROP = object()
END = object()


class FakeWebSocket:
    """Minimal stand-in for a websockets client connection."""

    def __init__(self):
        self.sent = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.close_calls = 0

    async def send(self, text):
        if self.close_calls:
            raise ConnectionClosedOK(None, None)
        self.sent.append(json.loads(text))

    def push(self, payload):
        self.incoming.put_nowait(json.dumps(payload))

    def drop(self):
        self.incoming.put_nowait(DROP)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is DROP:
            raise ConnectionClosedError(None, None)
        if item is END:
            raise StopAsyncIteration
        return item

    async def close(self):
        self.close_calls += 1
        self.incoming.put_nowait(END)


class FakeConnector:
    """Returns (or raises) the scripted result for each connection attempt."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


async def wait_until(predicate, timeout=1.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout=timeout)


async def next_event(transport, timeout=1.0):
    iterator = transport.events().__aiter__()
    return await asyncio.wait_for(iterator.__anext__(), timeout=timeout)


def make_transport(connector, protocol=None, sleep=None, attempts=3):
    return WebSocketTransport(
        protocol or OpenAIRealtimeProtocol(),
        connect_timeout_s=10.0,
        max_reconnect_attempts=attempts,
        reconnect_base_delay_s=2.0,
        connector=connector,
        sleep=sleep or RecordingSleep(),
    )


class TestConnect:
    """Tests for the handshake."""

    @pytest.mark.asyncio
    async def test_connect_emits_ready(self, session):
        ws = FakeWebSocket()
        connector = FakeConnector(ws)
        transport = make_transport(connector)

        connection = await transport.connect(session)

        assert transport.state == ConnectionState.CONNECTED
        assert connection.session is session
        assert connection.connected_at is not None
        assert connector.calls[0] == (session.stream_url, {"open_timeout": 10.0})
        assert isinstance(await next_event(transport), SessionReady)

        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_handshake_failure(self, session):
        transport = make_transport(FakeConnector(OSError("refused")))

        with pytest.raises(ConnectionFailed):
            await transport.connect(session)

        assert transport.state == ConnectionState.ERROR

    @pytest.mark.asyncio
    async def test_handshake_timeout(self, session):
        transport = make_transport(FakeConnector(asyncio.TimeoutError()))

        with pytest.raises(ConnectionFailed):
            await transport.connect(session)


class TestSend:
    """Tests for outbound frames."""

    @pytest.mark.asyncio
    async def test_dropped_when_not_connected(self):
        transport = make_transport(FakeConnector())
        assert await transport.send(AppendAudio(b"\x00\x00")) is False

    @pytest.mark.asyncio
    async def test_audio_is_encoded(self, session):
        ws = FakeWebSocket()
        transport = make_transport(FakeConnector(ws))
        await transport.connect(session)

        assert await transport.send(AppendAudio(b"\x01\x02"))
        assert ws.sent[0]["type"] == "input_audio_buffer.append"

        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_cancel_suppressed_without_active_response(self, session):
        ws = FakeWebSocket()
        transport = make_transport(FakeConnector(ws))
        await transport.connect(session)

        assert await transport.send(CancelResponse()) is False
        assert ws.sent == []

        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_cancel_sent_once_during_response(self, session):
        """A response in flight allows exactly one cancel."""
        ws = FakeWebSocket()
        transport = make_transport(FakeConnector(ws))
        await transport.connect(session)

        ws.push({"type": "response.created", "response": {"id": "r1"}})
        await wait_until(lambda: transport.response_active)

        assert await transport.send(CancelResponse())
        assert await transport.send(CancelResponse()) is False
        assert [f["type"] for f in ws.sent] == ["response.cancel"]

        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_configuration_acknowledged(self, session):
        ws = FakeWebSocket()
        transport = make_transport(FakeConnector(ws))
        await transport.connect(session)

        await transport.send(ConfigureSession(VoiceSessionConfig()))
        assert await transport.wait_configured(0.05) is False

        ws.push({"type": "session.updated"})
        assert await transport.wait_configured(1.0) is True
        assert transport.is_configured

        await transport.disconnect()


class TestEvents:
    """Tests for inbound decoding."""

    @pytest.mark.asyncio
    async def test_events_in_order(self, session):
        ws = FakeWebSocket()
        transport = make_transport(FakeConnector(ws))
        await transport.connect(session)

        ws.push({"type": "session.updated"})
        ws.push({"type": "unknown.thing"})
        ws.push({"type": "response.created", "response": {"id": "r1"}})

        received = []
        async for event in transport.events():
            received.append(event)
            if len(received) == 3:
                break

        assert [type(e) for e in received] == [SessionReady, SessionConfigured, AssistantResponseStarted]

        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_events_end_on_disconnect(self, session):
        transport = make_transport(FakeConnector(FakeWebSocket()))
        await transport.connect(session)
        await transport.disconnect()

        received = [event async for event in transport.events()]
        assert [type(e) for e in received] == [SessionReady]


    @pytest.mark.asyncio
    async def test_wrongly_shaped_message_keeps_reading(self, session):
        ws = FakeWebSocket()
        transport = make_transport(FakeConnector(ws))
        await transport.connect(session)

        ws.push({"type": "error", "error": "boom"})
        ws.push({"type": "session.updated"})

        received = []
        async for event in transport.events():
            received.append(event)
            if len(received) == 3:
                break

        assert [type(e) for e in received] == [SessionReady, ErrorEvent, SessionConfigured]
        assert transport.state == ConnectionState.CONNECTED

        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_reader_failure_surfaces_fatal_error(self, session):
        """An unexpected reader failure ends in one fatal error, not silence."""

        class BrokenProtocol(OpenAIRealtimeProtocol):
            def decode(self, raw):
                raise RuntimeError("codec bug")

        ws = FakeWebSocket()
        transport = make_transport(FakeConnector(ws), protocol=BrokenProtocol())
        await transport.connect(session)

        ws.push({"type": "session.updated"})
        await wait_until(lambda: transport.state == ConnectionState.ERROR)

        await transport.disconnect()
        events = [event async for event in transport.events()]
        errors = [e for e in events if isinstance(e, ErrorEvent)]
        assert len(errors) == 1
        assert errors[0].code == "transport_failed"
        assert errors[0].recoverable is False


class TestReconnect:
    """Tests for bounded reconnect after an unexpected drop."""

    @pytest.mark.asyncio
    async def test_linear_backoff_then_single_fatal_error(self, session):
        ws = FakeWebSocket()
        sleep = RecordingSleep()
        connector = FakeConnector(ws, OSError("down"), OSError("down"), OSError("down"))
        transport = make_transport(connector, sleep=sleep)
        await transport.connect(session)

        ws.drop()
        await wait_until(lambda: transport.state == ConnectionState.ERROR)

        assert sleep.delays == [2.0, 4.0, 6.0]
        assert len(connector.calls) == 4
        assert transport.connection.reconnect_attempts == 3

        await transport.disconnect()
        events = [event async for event in transport.events()]
        errors = [e for e in events if isinstance(e, ErrorEvent)]
        assert len(errors) == 1
        assert errors[0].code == "reconnect_failed"
        assert errors[0].recoverable is False

    @pytest.mark.asyncio
    async def test_reconnect_replays_configuration(self, session):
        first, second = FakeWebSocket(), FakeWebSocket()
        sleep = RecordingSleep()
        connector = FakeConnector(first, OSError("blip"), second)
        transport = make_transport(connector, sleep=sleep)
        await transport.connect(session)
        await transport.send(ConfigureSession(VoiceSessionConfig(voice="sage")))

        first.drop()
        await wait_until(lambda: second.sent)

        assert sleep.delays == [2.0, 4.0]
        assert transport.state == ConnectionState.CONNECTED
        assert transport.connection.reconnect_attempts == 0
        assert second.sent[0]["type"] == "session.update"
        assert second.sent[0]["session"]["voice"] == "sage"
        assert connector.calls[2][0] == session.stream_url

        second.push({"type": "session.updated"})
        await wait_until(lambda: transport.is_configured)

        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_no_reconnect_after_disconnect(self, session):
        ws = FakeWebSocket()
        sleep = RecordingSleep()
        transport = make_transport(FakeConnector(ws), sleep=sleep)
        await transport.connect(session)

        await transport.disconnect()

        assert sleep.delays == []
        assert transport.state == ConnectionState.DISCONNECTED


class TestDisconnect:
    """Tests for teardown."""

    @pytest.mark.asyncio
    async def test_idempotent(self, session):
        ws = FakeWebSocket()
        transport = make_transport(FakeConnector(ws), protocol=BackendProtocol())
        await transport.connect(session)

        await transport.disconnect()
        await transport.disconnect()

        assert ws.close_calls == 1
        assert ws.sent == [{"type": "close"}]
        assert transport.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_send_after_disconnect_dropped(self, session):
        ws = FakeWebSocket()
        transport = make_transport(FakeConnector(ws))
        await transport.connect(session)
        await transport.disconnect()

        assert await transport.send(AppendAudio(b"\x00\x00")) is False
