"""
Conversation Controller Module

Client-side state machine for a continuous, hands-free voice conversation.
Drives capture, playback and the realtime transport from normalized events.

Every input (transport events, captured audio, local transcripts, playback
drained signals, timer firings and user commands) goes through one
asyncio.Queue with a single consumer, so exactly one item is processed at a
time and transitions always see the current state.

States:
    INITIALIZING -> LISTENING -> PROCESSING -> AI_SPEAKING -> LISTENING ...
    any state -> ERROR on a fatal failure; ERROR -> INITIALIZING on retry
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from seavoice.config import ConversationConfig, VoiceSessionConfig
from seavoice.logger import get_logger
from seavoice.messages import msg

from .audio_io import AudioAdapter, AudioChunk, bytes_to_ms
from .errors import CapturePermissionDenied, NegotiationFailed, VoiceError
from .events import (
    AppendAudio,
    AssistantAudioChunk,
    AssistantAudioDone,
    AssistantResponseDone,
    AssistantResponseStarted,
    AssistantTranscriptDelta,
    AssistantTranscriptDone,
    CancelResponse,
    ClearAudio,
    CommitAudio,
    ConfigureSession,
    CreateResponse,
    ErrorEvent,
    RealtimeEvent,
    SessionConfigured,
    SessionReady,
    Truncate,
    UserSpeechStarted,
    UserSpeechStopped,
    UserTranscriptFinal,
    UserTranscriptPartial,
)
from .session import Session
from .timers import GenerationTimer, TimerFired
from .transcript import ConversationTurn, TranscriptAggregator
from .transport import Transport

logger = get_logger(__name__)


class DialogState(Enum):
    """Client-visible conversation state."""
    INITIALIZING = "initializing"
    LISTENING = "listening"
    PROCESSING = "processing"
    AI_SPEAKING = "aiSpeaking"
    ERROR = "error"


@dataclass(frozen=True)
class DialogSnapshot:
    """Read-only view handed to presentation listeners on every change."""
    state: DialogState
    status_message: str
    live_transcript: str
    transcribed_text: str
    assistant_text: str
    history: Tuple[ConversationTurn, ...]
    audio_level: float
    is_user_speaking: bool
    is_ai_speaking: bool
    is_paused: bool
    error_message: str


@dataclass
class ConversationContext:
    """
    Inputs for session negotiation.

    Attributes:
        auth_token: User token forwarded to the backend (None = anonymous)
        user_location: Human-readable location name
        coordinates: Optional list of [lat, lon] pairs
        conversation_id: Prior conversation to resume
        preload_weather: Ask the backend to preload weather
        check_health: Probe the backend before negotiating
    """
    auth_token: Optional[str] = None
    user_location: Optional[str] = None
    coordinates: Optional[Sequence[Sequence[float]]] = None
    conversation_id: Optional[str] = None
    preload_weather: bool = True
    check_health: bool = True


# ============================================================================
# Inbox Items (local inputs besides transport events and timers)
# ============================================================================

@dataclass(frozen=True)
class _Inbound:
    event: RealtimeEvent
    epoch: int


@dataclass(frozen=True)
class _TransportEnded:
    epoch: int


@dataclass(frozen=True)
class _CapturedAudio:
    chunk: AudioChunk


@dataclass(frozen=True)
class _CaptureFailed:
    error: VoiceError


@dataclass(frozen=True)
class _LocalTranscript:
    text: str
    is_final: bool


@dataclass(frozen=True)
class _LocalSpeechStarted:
    pass


@dataclass(frozen=True)
class _PlaybackDrained:
    pass


@dataclass(frozen=True)
class _Command:
    name: str
    created_at: float = field(default_factory=time.time)


Listener = Callable[[DialogSnapshot], None]


class ConversationController:
    """
    Voice conversation state machine.

    All collaborators are injected; the controller owns the transport
    connection for its lifetime and is the only component writing to it.

    Features:
    - Startup: health probe, negotiation, connect, configure, capture
    - Turn-taking from upstream VAD, transcripts or a local silence timeout
    - Barge-in with playback-accurate truncation
    - Automatic resume of listening after the assistant's audio drains
    - Pause/resume, cancel, retry and idempotent close

    Usage:
        controller = ConversationController(negotiator, transport, audio, voice_config)
        await controller.start()
        await controller.wait_for_state(DialogState.LISTENING, timeout=10)
        ...
        await controller.close()
    """

    def __init__(
        self,
        negotiator: Any,
        transport: Transport,
        audio: AudioAdapter,
        session_config: VoiceSessionConfig,
        config: Optional[ConversationConfig] = None,
        context: Optional[ConversationContext] = None,
        config_ack_timeout_s: float = 5.0,
    ):
        self._negotiator = negotiator
        self._transport = transport
        self._audio = audio
        self._session_config = session_config
        self._config = config or ConversationConfig()
        self._context = context or ConversationContext()
        self._config_ack_timeout_s = config_ack_timeout_s

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._transcript = TranscriptAggregator()
        self._listeners: List[Listener] = []

        # State
        self._state = DialogState.INITIALIZING
        self._generation = 0
        self._status = msg("status.initializing")
        self._error_message = ""
        self._paused = False
        self._user_speaking = False
        self._ai_speaking = False
        self._level = 0.0
        self._closed = False
        self._closed_event = asyncio.Event()
        # Set and replaced on every transition
        self._state_changed = asyncio.Event()

        # Current connection and response cycle
        self._session: Optional[Session] = None
        self._epoch = 0
        self._response_open = False
        self._awaiting_drain = False
        self._item_id: Optional[str] = None
        self._content_index = 0

        # Timers
        self._silence_timer = GenerationTimer("silence", self._post)
        self._drain_timer = GenerationTimer("drain", self._post)
        self._resume_timer = GenerationTimer("resume", self._post)

        # Tasks
        self._consumer_task: Optional[asyncio.Task] = None
        self._pump_task: Optional[asyncio.Task] = None

        # Statistics
        self._stats = {
            "responses": 0,
            "barge_ins": 0,
            "recoverable_errors": 0,
            "audio_frames_sent": 0,
            "audio_frames_dropped": 0,
            "startups": 0,
        }

        self._audio.set_drained_callback(self._on_playback_drained)

    # ========================================================================
    # Public API
    # ========================================================================

    async def start(self) -> None:
        """Start the consumer and run the startup sequence."""
        if self._closed or self._consumer_task is not None:
            return
        self._consumer_task = asyncio.create_task(self._consume())
        self._post(_Command("startup"))

    async def toggle_pause(self) -> None:
        self._post(_Command("toggle_pause"))

    async def cancel_conversation(self) -> None:
        self._post(_Command("cancel"))

    async def retry(self) -> None:
        self._post(_Command("retry"))

    async def close_dialog(self) -> None:
        self._post(_Command("close_dialog"))

    def submit_local_transcript(self, text: str, is_final: bool = False) -> None:
        """Feed a transcript from on-device recognition."""
        self._post(_LocalTranscript(text, is_final))

    def notify_local_speech_started(self) -> None:
        """Report speech detected by on-device VAD."""
        self._post(_LocalSpeechStarted())

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def wait_for_state(self, *states: DialogState, timeout: Optional[float] = None) -> bool:
        """Wait until the dialog reaches one of `states`; False on timeout."""
        async def _wait() -> None:
            while self._state not in states:
                await self._state_changed.wait()

        try:
            await asyncio.wait_for(_wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def wait_idle(self) -> None:
        """Wait until every queued input has been processed."""
        await self._inbox.join()

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    async def close(self) -> None:
        """
        Tear everything down. Idempotent.

        Order: timers, consumer, reconnect loop and transport reader, capture,
        playback, transport; only then the dialog is marked disconnected.
        """
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        logger.info("Closing voice conversation...")

        for timer in (self._silence_timer, self._drain_timer, self._resume_timer):
            timer.cancel()

        current = asyncio.current_task()
        consumer, self._consumer_task = self._consumer_task, None
        if consumer is not None and consumer is not current and not consumer.done():
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass

        self._drain_inbox()
        await self._cancel_pump()
        self._audio.stop_capture()
        self._audio.stop_playback()
        self._audio.set_drained_callback(None)
        await self._transport.disconnect()
        self._audio.close()

        self._user_speaking = False
        self._ai_speaking = False
        self._level = 0.0
        self._status = msg("status.disconnected")
        self._closed_event.set()
        self._notify()
        logger.info("Voice conversation closed")

    # ========================================================================
    # Read-only State
    # ========================================================================

    @property
    def dialog_state(self) -> DialogState:
        return self._state

    @property
    def status_message(self) -> str:
        return self._status

    @property
    def live_transcript(self) -> str:
        return self._transcript.live_transcript

    @property
    def transcribed_text(self) -> str:
        return self._transcript.transcribed_text

    @property
    def assistant_text(self) -> str:
        return self._transcript.assistant_text

    @property
    def history(self) -> Tuple[ConversationTurn, ...]:
        return self._transcript.history

    @property
    def audio_level(self) -> float:
        return self._level

    @property
    def is_user_speaking(self) -> bool:
        return self._user_speaking

    @property
    def is_ai_speaking(self) -> bool:
        return self._ai_speaking

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def error_message(self) -> str:
        return self._error_message

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def snapshot(self) -> DialogSnapshot:
        return DialogSnapshot(
            state=self._state,
            status_message=self._status,
            live_transcript=self.live_transcript,
            transcribed_text=self.transcribed_text,
            assistant_text=self.assistant_text,
            history=self.history,
            audio_level=self._level,
            is_user_speaking=self._user_speaking,
            is_ai_speaking=self._ai_speaking,
            is_paused=self._paused,
            error_message=self._error_message,
        )

    @property
    def stats(self) -> Dict[str, Any]:
        """Get controller statistics."""
        connection = self._transport.connection
        return {
            "state": self._state.value,
            "turn_count": self._transcript.turn_count,
            "conversation_id": self._session.conversation_id if self._session else None,
            "reconnect_attempts": connection.reconnect_attempts if connection else 0,
            **self._stats,
        }

    # ========================================================================
    # Event Loop
    # ========================================================================

    def _drain_inbox(self) -> None:
        while True:
            try:
                self._inbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._inbox.task_done()

    def _post(self, item: Any) -> None:
        if self._closed:
            return
        self._inbox.put_nowait(item)

    async def _consume(self) -> None:
        """Process inbox items one at a time."""
        while not self._closed:
            item = await self._inbox.get()
            try:
                if not self._closed:
                    await self._dispatch(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Error handling {type(item).__name__}: {e}")
                self._fail(msg("error.internal", detail=e))
            finally:
                self._inbox.task_done()

    async def _dispatch(self, item: Any) -> None:
        if isinstance(item, _Inbound):
            if item.epoch != self._epoch:
                logger.debug(f"Dropping {type(item.event).__name__} from a previous connection")
                return
            await self._handle_event(item.event)
        elif isinstance(item, _CapturedAudio):
            await self._handle_captured_audio(item.chunk)
        elif isinstance(item, TimerFired):
            await self._handle_timer(item)
        elif isinstance(item, _PlaybackDrained):
            self._handle_playback_drained()
        elif isinstance(item, _LocalTranscript):
            if item.is_final:
                await self._handle_user_final(item.text)
            else:
                self._handle_user_partial(item.text)
        elif isinstance(item, _LocalSpeechStarted):
            await self._handle_speech_started()
        elif isinstance(item, _CaptureFailed):
            self._fail_with(item.error)
        elif isinstance(item, _TransportEnded):
            self._handle_transport_ended(item.epoch)
        elif isinstance(item, _Command):
            await self._handle_command(item.name)
        else:
            logger.warning(f"Unknown inbox item: {item!r}")

    async def _handle_event(self, event: RealtimeEvent) -> None:
        if isinstance(event, AssistantAudioChunk):
            self._handle_audio_chunk(event)
        elif isinstance(event, AssistantTranscriptDelta):
            self._handle_transcript_delta(event)
        elif isinstance(event, UserTranscriptPartial):
            self._handle_user_partial(event.text)
        elif isinstance(event, UserTranscriptFinal):
            await self._handle_user_final(event.text)
        elif isinstance(event, UserSpeechStarted):
            await self._handle_speech_started()
        elif isinstance(event, UserSpeechStopped):
            await self._handle_speech_stopped()
        elif isinstance(event, AssistantResponseStarted):
            await self._handle_response_started()
        elif isinstance(event, AssistantTranscriptDone):
            if self._response_open:
                self._transcript.replace_assistant_text(event.text)
                self._notify()
        elif isinstance(event, AssistantAudioDone):
            if self._response_open:
                self._audio.end_of_stream()
        elif isinstance(event, AssistantResponseDone):
            self._handle_response_done(event)
        elif isinstance(event, ErrorEvent):
            self._handle_error_event(event)
        elif isinstance(event, SessionReady):
            logger.debug("Realtime session ready")
        elif isinstance(event, SessionConfigured):
            logger.debug("Realtime session configured")

    # ========================================================================
    # Startup
    # ========================================================================

    async def _run_startup(self) -> None:
        """Health probe, negotiate, connect, configure, then start listening."""
        self._stats["startups"] += 1
        self._error_message = ""
        self._transition(DialogState.INITIALIZING, msg("status.setting_up"))

        conversation_id = self._session.conversation_id if self._session else self._context.conversation_id

        try:
            if self._context.check_health:
                self._set_status(msg("status.checking_backend"))
                await asyncio.to_thread(self._negotiator.check_health)

            self._set_status(msg("status.connecting"))
            session = await asyncio.to_thread(
                self._negotiator.negotiate,
                auth_token=self._context.auth_token,
                user_location=self._context.user_location,
                coordinates=self._context.coordinates,
                conversation_id=conversation_id,
                preload_weather=self._context.preload_weather,
            )
            self._session = session

            self._epoch += 1
            await self._transport.connect(session)
            self._pump_task = asyncio.create_task(self._pump(self._epoch))

            self._set_status(msg("status.configuring"))
            await self._transport.send(ConfigureSession(self._session_config))
            if not await self._transport.wait_configured(self._config_ack_timeout_s):
                logger.warning(
                    f"No configuration acknowledgement within {self._config_ack_timeout_s:.1f}s; "
                    "continuing with server defaults"
                )
        except VoiceError as e:
            self._fail_with(e)
            return

        logger.info(f"Voice session ready (conversation {self._session.conversation_id})")
        self._set_status(msg("status.connected"))
        self._start_listening()

    async def _pump(self, epoch: int) -> None:
        """Forward transport events into the inbox."""
        try:
            async for event in self._transport.events():
                self._post(_Inbound(event, epoch))
        finally:
            self._post(_TransportEnded(epoch))

    async def _cancel_pump(self) -> None:
        pump, self._pump_task = self._pump_task, None
        if pump is not None and not pump.done():
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass

    async def _teardown_connection(self) -> None:
        """Drop the current connection before a retry."""
        self._epoch += 1
        await self._cancel_pump()
        self._audio.stop_capture()
        self._audio.stop_playback()
        await self._transport.disconnect()

    # ========================================================================
    # Listening
    # ========================================================================

    def _start_listening(self) -> None:
        """Enter LISTENING; restarts capture unless paused."""
        self._user_speaking = False
        self._ai_speaking = False
        self._response_open = False
        self._awaiting_drain = False
        self._transcript.start_listening_cycle()

        if self._paused:
            self._audio.stop_capture()
            self._transition(DialogState.LISTENING, msg("status.paused"))
            return

        self._transition(DialogState.LISTENING, msg("status.listening"))
        if self._audio.is_capturing:
            return
        if not self._audio.start_capture(self._on_captured, self._on_capture_error):
            self._fail_with(CapturePermissionDenied("Capture could not be started"))

    def _stop_listening(self) -> None:
        self._silence_timer.cancel()
        self._audio.stop_capture()
        self._user_speaking = False
        self._level = 0.0

    def _on_captured(self, chunk: AudioChunk) -> None:
        self._post(_CapturedAudio(chunk))

    def _on_capture_error(self, error: VoiceError) -> None:
        self._post(_CaptureFailed(error))

    def _on_playback_drained(self) -> None:
        self._post(_PlaybackDrained())

    async def _handle_captured_audio(self, chunk: AudioChunk) -> None:
        if self._state != DialogState.LISTENING or self._paused:
            self._stats["audio_frames_dropped"] += 1
            return
        if await self._transport.send(AppendAudio(chunk.data)):
            self._stats["audio_frames_sent"] += 1
        else:
            self._stats["audio_frames_dropped"] += 1
        self._level = self._audio.current_level
        self._notify()

    async def _handle_speech_started(self) -> None:
        if self._state == DialogState.AI_SPEAKING:
            await self._barge_in()
        elif self._state == DialogState.LISTENING and not self._paused:
            self._user_speaking = True
            self._notify()
        else:
            logger.debug(f"Ignoring speech start in {self._state.value}")

    async def _handle_speech_stopped(self) -> None:
        if self._state != DialogState.LISTENING or self._paused:
            logger.debug(f"Ignoring speech stop in {self._state.value}")
            return
        await self._end_user_turn()

    def _handle_user_partial(self, text: str) -> None:
        if self._state != DialogState.LISTENING or self._paused:
            return
        self._transcript.update_partial(text)
        if text.strip():
            self._user_speaking = True
            self._silence_timer.start(self._config.silence_timeout_ms / 1000, self._generation)
        self._notify()

    async def _handle_user_final(self, text: str) -> None:
        if not text.strip():
            logger.debug("Ignoring empty final transcript")
            return
        if self._state not in (DialogState.LISTENING, DialogState.PROCESSING, DialogState.AI_SPEAKING):
            return
        if self._state == DialogState.LISTENING and self._paused:
            return

        turn = self._transcript.seal_user(text)
        if turn is not None and self._state == DialogState.LISTENING:
            await self._end_user_turn()
        else:
            self._notify()

    async def _end_user_turn(self) -> None:
        """Leave LISTENING for PROCESSING and hand the turn to upstream."""
        self._stop_listening()
        self._transition(DialogState.PROCESSING, msg("status.processing"))

        # Without server VAD the client ends the turn itself
        if not self._session_config.server_vad:
            await self._transport.send(CommitAudio())
        if not (self._session_config.server_vad and self._session_config.create_response):
            await self._transport.send(CreateResponse())

    # ========================================================================
    # Assistant Response
    # ========================================================================

    async def _handle_response_started(self) -> None:
        if self._paused:
            await self._transport.send(CancelResponse())
            return
        if self._state not in (DialogState.LISTENING, DialogState.PROCESSING):
            logger.debug(f"Ignoring response start in {self._state.value}")
            return

        if self._state == DialogState.LISTENING:
            self._stop_listening()

        # Playback position is counted per response
        self._audio.stop_playback()
        self._response_open = True
        self._awaiting_drain = False
        self._item_id = None
        self._content_index = 0
        self._stats["responses"] += 1
        self._transcript.begin_assistant()
        self._transition(DialogState.PROCESSING, msg("status.thinking"))

    def _handle_transcript_delta(self, event: AssistantTranscriptDelta) -> None:
        if not self._response_open:
            return
        self._transcript.append_assistant(event.delta)
        self._notify()

    def _handle_audio_chunk(self, event: AssistantAudioChunk) -> None:
        if not self._response_open or self._awaiting_drain:
            return

        if event.item_id:
            self._item_id = event.item_id
            self._content_index = event.content_index
        self._audio.enqueue_playback(event.data)

        if self._state == DialogState.PROCESSING:
            self._ai_speaking = True
            self._transition(DialogState.AI_SPEAKING, msg("status.speaking"))

    def _handle_response_done(self, event: AssistantResponseDone) -> None:
        if self._response_open:
            self._response_open = False
            self._transcript.seal_assistant(truncated=event.status == "cancelled")
        elif self._state not in (DialogState.PROCESSING, DialogState.AI_SPEAKING) or self._awaiting_drain:
            logger.debug(f"Response done ({event.status}) outside a response cycle")
            return
        else:
            # Upstream finished the turn without a response, e.g. after a failed transcription
            logger.info(f"Turn ended without a response ({event.status})")

        self._awaiting_drain = True
        self._drain_timer.start(self._config.playback_drain_timeout_s, self._generation)
        self._notify()
        self._audio.end_of_stream()

    def _handle_playback_drained(self) -> None:
        if not self._awaiting_drain:
            return
        if self._audio.is_playing:
            # Signalled by an underrun before the last chunks arrived
            logger.debug("Ignoring drained signal with audio still queued")
            return
        self._finish_playback()

    def _finish_playback(self) -> None:
        """Playback of a finished response is over; resume after a short pause."""
        self._awaiting_drain = False
        self._drain_timer.cancel()
        self._ai_speaking = False
        if self._paused:
            self._start_listening()
            return
        self._resume_timer.start(self._config.resume_delay_ms / 1000, self._generation)
        self._notify()

    async def _barge_in(self) -> None:
        """
        The user spoke over the assistant.

        Playback is stopped before the cancel and the truncate are sent, so the
        truncation offset reflects what was actually heard.
        """
        played = self._audio.stop_playback()
        await self._transport.send(CancelResponse())
        audio_end_ms = bytes_to_ms(played)
        await self._transport.send(Truncate(self._item_id, self._content_index, audio_end_ms))
        self._transcript.seal_assistant(truncated=True)

        logger.info(f"Barge-in after {audio_end_ms}ms of assistant audio")
        self._stats["barge_ins"] += 1
        self._item_id = None
        self._start_listening()
        if self._state == DialogState.LISTENING:
            self._user_speaking = True
            self._notify()

    # ========================================================================
    # Timers
    # ========================================================================

    async def _handle_timer(self, fired: TimerFired) -> None:
        if fired.name == "silence":
            if not self._silence_timer.is_current(fired, self._generation):
                return
            self._silence_timer.cancel()
            if self._state == DialogState.LISTENING and self._transcript.live_transcript.strip():
                logger.debug("Silence timeout: ending user turn")
                self._transcript.seal_user()
                await self._end_user_turn()
        elif fired.name == "drain":
            if not self._drain_timer.is_current(fired, self._generation):
                return
            logger.warning(
                f"Playback did not drain within {self._config.playback_drain_timeout_s:.0f}s"
            )
            self._audio.stop_playback()
            self._finish_playback()
        elif fired.name == "resume":
            if not self._resume_timer.is_current(fired, self._generation):
                return
            self._resume_timer.cancel()
            self._start_listening()

    # ========================================================================
    # Errors
    # ========================================================================

    def _handle_error_event(self, event: ErrorEvent) -> None:
        if event.recoverable:
            self._stats["recoverable_errors"] += 1
            logger.warning(f"Ignoring recoverable error {event.code}: {event.message}")
            return
        logger.error(f"Realtime error {event.code}: {event.message}")
        self._fail(event.message or msg("error.unknown"))

    def _handle_transport_ended(self, epoch: int) -> None:
        if epoch != self._epoch or self._state == DialogState.ERROR:
            return
        logger.warning("Realtime event stream ended")
        self._fail(msg("error.connection_failed"))

    def _fail_with(self, error: VoiceError) -> None:
        if isinstance(error, NegotiationFailed):
            message = msg(error.message_key, status=error.http_status or "network error")
        else:
            message = msg(error.message_key, detail=error)
        self._fail(message)

    def _fail(self, message: str) -> None:
        """Enter ERROR with a user-visible message."""
        logger.error(f"Voice dialog error: {message}")
        self._stop_listening()
        self._audio.stop_playback()
        self._response_open = False
        self._awaiting_drain = False
        self._ai_speaking = False
        self._error_message = message
        self._transition(DialogState.ERROR, message)

    # ========================================================================
    # Commands
    # ========================================================================

    async def _handle_command(self, name: str) -> None:
        if name == "startup":
            await self._run_startup()
        elif name == "retry":
            if self._state != DialogState.ERROR:
                logger.debug(f"Retry ignored in {self._state.value}")
                return
            logger.info("Retrying voice session")
            await self._teardown_connection()
            await self._run_startup()
        elif name == "toggle_pause":
            await self._toggle_pause()
        elif name == "cancel":
            await self._cancel_conversation()
        elif name == "close_dialog":
            await self.close()

    async def _toggle_pause(self) -> None:
        if self._state == DialogState.ERROR:
            logger.debug("Pause ignored in error state")
            return

        self._paused = not self._paused
        logger.info("Conversation paused" if self._paused else "Conversation resumed")
        if self._state == DialogState.INITIALIZING:
            self._notify()
            return

        if self._paused:
            await self._discard_response()
            self._start_listening()
        elif self._state == DialogState.LISTENING:
            self._start_listening()

    async def _cancel_conversation(self) -> None:
        if self._state not in (DialogState.LISTENING, DialogState.PROCESSING, DialogState.AI_SPEAKING):
            return
        await self._discard_response()
        await self._transport.send(ClearAudio())
        self._start_listening()

    async def _discard_response(self) -> None:
        """Stop capture and drop any in-flight response."""
        self._stop_listening()
        self._audio.stop_playback()
        await self._transport.send(CancelResponse())
        if self._response_open:
            self._transcript.seal_assistant(truncated=True)
        self._response_open = False
        self._awaiting_drain = False
        self._ai_speaking = False

    # ========================================================================
    # Transitions and Notification
    # ========================================================================

    def _transition(self, state: DialogState, status: Optional[str] = None) -> None:
        """Enter a state; bumps the generation so pending timers go stale."""
        if state != self._state:
            logger.info(f"Dialog state: {self._state.value} -> {state.value}")
        self._state = state
        self._generation += 1
        changed, self._state_changed = self._state_changed, asyncio.Event()
        changed.set()
        for timer in (self._silence_timer, self._drain_timer, self._resume_timer):
            timer.cancel()
        if status is not None:
            self._status = status
        self._notify()

    def _set_status(self, status: str) -> None:
        self._status = status
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Listener error: {e}")
