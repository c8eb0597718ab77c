"""
Realtime Transport Module

Owns the single bidirectional stream to the realtime endpoint:
- Handshake, then a synthetic SessionReady once the stream can carry frames
- Outbound frames serialized through a protocol codec
- Inbound messages decoded into normalized events on an async iterator
- Local suppression of cancels when no response is active
- Reconnect with bounded linear backoff after an unexpected drop

Frames submitted while not connected are dropped, never queued.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from seavoice.logger import get_logger
from seavoice.messages import msg

from .errors import ConnectionFailed
from .events import (
    AssistantResponseDone,
    AssistantResponseStarted,
    CancelResponse,
    CloseSession,
    ConfigureSession,
    ErrorEvent,
    OutboundFrame,
    RealtimeEvent,
    SessionConfigured,
    SessionReady,
)
from .protocol import Protocol
from .session import Session

logger = get_logger(__name__)

# Failures that can occur while opening a websocket
HANDSHAKE_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)

_END = object()


class ConnectionState(Enum):
    """State of the live transport resource."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class Connection:
    """The live resource wrapping one Session."""
    session: Session
    state: ConnectionState = ConnectionState.DISCONNECTED
    connected_at: Optional[float] = None
    reconnect_attempts: int = 0


class Transport(ABC):
    """
    Base class for realtime transports.

    Subclasses implement the stream itself (`connect`, `disconnect`,
    `_write`); this class owns the inbound event queue, the active-response
    guard and the configuration acknowledgement.
    """

    def __init__(self):
        self._events: asyncio.Queue = asyncio.Queue()
        self._configured = asyncio.Event()
        self._response_active = False
        self._state = ConnectionState.DISCONNECTED
        self._connection: Optional[Connection] = None
        self._last_config: Optional[ConfigureSession] = None

    @abstractmethod
    async def connect(self, session: Session) -> Connection:
        """
        Open the stream for a session.

        Raises:
            ConnectionFailed: If the handshake fails
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the stream. Idempotent."""

    @abstractmethod
    async def _write(self, frame: OutboundFrame) -> bool:
        """Put a frame on the wire."""

    async def send(self, frame: OutboundFrame) -> bool:
        """
        Send a frame if the connection allows it.

        Returns:
            False if the frame was dropped (not connected) or suppressed
            (cancel with no active response)
        """
        if self._state != ConnectionState.CONNECTED:
            logger.debug(f"Dropping {type(frame).__name__}: transport is {self._state.value}")
            return False

        if isinstance(frame, CancelResponse):
            if not self._response_active:
                logger.debug("Cancel suppressed: no active response")
                return False
            self._response_active = False
        elif isinstance(frame, ConfigureSession):
            self._last_config = frame

        return await self._write(frame)

    async def events(self) -> AsyncIterator[RealtimeEvent]:
        """Yield normalized events until the transport is disconnected."""
        queue = self._events
        while True:
            item = await queue.get()
            if item is _END:
                return
            yield item

    async def wait_configured(self, timeout: float) -> bool:
        """Wait for the configuration acknowledgement; False on timeout."""
        try:
            await asyncio.wait_for(self._configured.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def _reset(self, session: Session) -> None:
        self._events = asyncio.Queue()
        self._configured = asyncio.Event()
        self._response_active = False
        self._last_config = None
        self._connection = Connection(session=session)

    def _emit(self, event: RealtimeEvent) -> None:
        if isinstance(event, AssistantResponseStarted):
            self._response_active = True
        elif isinstance(event, AssistantResponseDone):
            self._response_active = False
        elif isinstance(event, SessionConfigured):
            self._configured.set()
        self._events.put_nowait(event)

    def _end_events(self) -> None:
        self._events.put_nowait(_END)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug(f"Transport {self._state.value} -> {state.value}")
        self._state = state
        if self._connection is not None:
            self._connection.state = state
            if state == ConnectionState.CONNECTED:
                self._connection.connected_at = time.time()
                self._connection.reconnect_attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    @property
    def response_active(self) -> bool:
        return self._response_active

    @property
    def is_configured(self) -> bool:
        return self._configured.is_set()


Connector = Callable[..., Awaitable[Any]]


class WebSocketTransport(Transport):
    """
    Transport over a websockets client connection.

    Features:
    - Handshake bounded by connect_timeout_s
    - One supervisor task reading frames and reconnecting on drops
    - Reconnect delays of attempt * reconnect_base_delay_s
    - Last configuration replayed after a successful reconnect

    Usage:
        transport = WebSocketTransport(BackendProtocol())
        await transport.connect(session)
        async for event in transport.events():
            ...
    """

    def __init__(
        self,
        protocol: Protocol,
        connect_timeout_s: float = 10.0,
        max_reconnect_attempts: int = 3,
        reconnect_base_delay_s: float = 2.0,
        connector: Optional[Connector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__()
        self._protocol = protocol
        self._connect_timeout_s = connect_timeout_s
        self._max_reconnect_attempts = max_reconnect_attempts
        self._reconnect_base_delay_s = reconnect_base_delay_s
        self._connector = connector or websockets.connect
        self._sleep = sleep

        self._ws: Optional[Any] = None
        self._supervisor: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def protocol(self) -> Protocol:
        return self._protocol

    async def connect(self, session: Session) -> Connection:
        if self._supervisor is not None or self._ws is not None:
            logger.warning("connect() on a live transport; closing the previous stream")
            await self.disconnect()

        self._reset(session)
        self._closing = False
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to realtime stream (conversation {session.conversation_id})")

        try:
            self._ws = await self._open(session)
        except HANDSHAKE_ERRORS as e:
            logger.error(f"Realtime connection failed: {e}")
            self._set_state(ConnectionState.ERROR)
            raise ConnectionFailed(str(e)) from e

        self._set_state(ConnectionState.CONNECTED)
        self._supervisor = asyncio.create_task(self._supervise())
        self._emit(SessionReady(session_id=session.conversation_id))
        logger.info("Realtime stream connected")
        return self._connection

    async def _open(self, session: Session) -> Any:
        return await self._connector(session.stream_url, open_timeout=self._connect_timeout_s)

    async def _write(self, frame: OutboundFrame) -> bool:
        text = self._protocol.encode(frame)
        if text is None:
            return True
        ws = self._ws
        if ws is None:
            return False
        try:
            await ws.send(text)
            return True
        except ConnectionClosed as e:
            logger.debug(f"Send failed, stream closed: {e}")
            return False

    # ========================================================================
    # Receiving and Reconnect
    # ========================================================================

    async def _supervise(self) -> None:
        """Read until the stream drops, then reconnect or give up."""
        try:
            while True:
                await self._read(self._ws)
                if self._closing:
                    return
                if not await self._reconnect():
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Realtime stream reader failed: {e}")
            self._set_state(ConnectionState.ERROR)
            self._emit(ErrorEvent(
                code="transport_failed",
                message=msg("error.connection_failed"),
                recoverable=False,
            ))

    async def _read(self, ws: Any) -> None:
        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    logger.debug(f"Ignoring {len(raw)}-byte binary frame")
                    continue
                event = self._protocol.decode(raw)
                if event is not None:
                    self._emit(event)
        except ConnectionClosed as e:
            if not self._closing:
                logger.warning(f"Realtime stream dropped: {e}")
        except OSError as e:
            if not self._closing:
                logger.warning(f"Realtime stream error: {e}")

    async def _reconnect(self) -> bool:
        """
        Reopen the stream with the same session credentials.

        Returns:
            True once reconnected; False after the attempts are exhausted
        """
        self._ws = None
        self._response_active = False
        self._set_state(ConnectionState.CONNECTING)
        session = self._connection.session

        for attempt in range(1, self._max_reconnect_attempts + 1):
            self._connection.reconnect_attempts = attempt
            delay = attempt * self._reconnect_base_delay_s
            logger.warning(
                f"Reconnecting in {delay:.0f}s "
                f"(attempt {attempt}/{self._max_reconnect_attempts})"
            )
            await self._sleep(delay)

            try:
                ws = await self._open(session)
            except HANDSHAKE_ERRORS as e:
                logger.warning(f"Reconnect attempt {attempt} failed: {e}")
                continue

            self._ws = ws
            self._set_state(ConnectionState.CONNECTED)
            logger.info("Realtime stream reconnected")
            if self._last_config is not None:
                await self._write(self._last_config)
            return True

        self._set_state(ConnectionState.ERROR)
        logger.error(f"Giving up after {self._max_reconnect_attempts} reconnect attempts")
        self._emit(ErrorEvent(
            code="reconnect_failed",
            message=msg("error.reconnect_failed"),
            recoverable=False,
        ))
        return False

    # ========================================================================
    # Teardown
    # ========================================================================

    async def disconnect(self) -> None:
        if self._closing:
            return
        self._closing = True

        supervisor, self._supervisor = self._supervisor, None
        if supervisor is not None and not supervisor.done():
            supervisor.cancel()
            try:
                await supervisor
            except asyncio.CancelledError:
                pass

        ws, self._ws = self._ws, None
        if ws is not None:
            if self._state == ConnectionState.CONNECTED:
                text = self._protocol.encode(CloseSession())
                if text is not None:
                    try:
                        await ws.send(text)
                    except ConnectionClosed:
                        pass
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"Error closing websocket: {e}")

        self._response_active = False
        self._set_state(ConnectionState.DISCONNECTED)
        self._end_events()
        logger.info("Realtime transport disconnected")
