"""
Simulation Module

Pluggable stand-ins for the network and the sound card, selected by the
composition root for offline runs and tests:

- ScriptedTransport: a Transport that answers user utterances with scripted
  maritime-safety responses (transcript deltas plus a PCM tone)
- MemoryAudioAdapter: an AudioAdapter that records playback in memory and
  drains on demand

The scripted replies are shared with the development server.
"""

import asyncio
import math
import time
import uuid
from typing import Callable, Iterator, List, Optional, Tuple

import numpy as np

from seavoice.logger import get_logger
from seavoice.messages import msg

from .audio_io import AudioAdapter, AudioChunk, AudioFormat, ChunkCallback, ErrorCallback, compute_level
from .events import (
    AppendAudio,
    AssistantAudioChunk,
    AssistantAudioDone,
    AssistantResponseDone,
    AssistantResponseStarted,
    AssistantTranscriptDelta,
    AssistantTranscriptDone,
    CancelResponse,
    CommitAudio,
    ConfigureSession,
    ErrorEvent,
    OutboundFrame,
    RealtimeEvent,
    SessionConfigured,
    SessionReady,
    UserSpeechStarted,
    UserSpeechStopped,
    UserTranscriptFinal,
    UserTranscriptPartial,
)
from .session import Session
from .transport import Connection, ConnectionState, Transport

logger = get_logger(__name__)


# ============================================================================
# Scripted Replies
# ============================================================================

SAFETY_EQUIPMENT_REPLY = (
    "For your vessel, you should have the following essential safety equipment: "
    "Life jackets for all passengers, fire extinguisher, first aid kit, "
    "flares and distress signals, VHF radio, navigation lights, "
    "anchor and line, and a throwable flotation device. "
    "Would you like more details about any of these items?"
)

# (keywords, reply) checked in order; the first match wins
SCRIPTED_REPLIES: List[Tuple[Tuple[str, ...], str]] = [
    (
        ("weather", "condition"),
        "Based on current conditions, the weather looks favorable for sailing today. "
        "Wind speeds are moderate at 10-15 knots from the southwest. "
        "Sea state is calm to moderate. However, always check the latest forecast before departure.",
    ),
    (
        ("emergency", "help", "sos"),
        "For maritime emergencies, immediately call Mayday on VHF Channel 16. "
        "State your vessel name, position, nature of distress, and number of people aboard. "
        "Activate your EPIRB if available. Stay calm and await rescue instructions.",
    ),
    (("safety", "equipment"), SAFETY_EQUIPMENT_REPLY),
    (
        ("navigation", "route"),
        "For safe navigation, always file a float plan with someone onshore. "
        "Check charts for hazards, maintain proper lookout, and follow right-of-way rules. "
        "Keep your navigation lights on from sunset to sunrise.",
    ),
    (
        ("hello", "hi"),
        "Hello! I'm your maritime safety assistant. I can help you with weather conditions, "
        "safety equipment, emergency procedures, navigation tips, and more. "
        "What would you like to know about?",
    ),
]

FALLBACK_REPLY = (
    "I'm here to help with maritime safety. You can ask me about weather conditions, "
    "safety equipment requirements, emergency procedures, navigation advice, "
    "or any other maritime safety topics. How can I assist you today?"
)

# Utterances used when audio arrives without any typed text
SIMULATED_USER_PHRASES = (
    "Hello, I need help with maritime safety.",
    "What are the weather conditions for sailing today?",
    "Can you help me with emergency procedures?",
    "What safety equipment should I have on my vessel?",
)


def scripted_reply(user_text: str) -> str:
    """Pick the scripted answer for a user utterance."""
    words = set(user_text.lower().replace("?", " ").replace(",", " ").replace(".", " ").split())
    lowered = user_text.lower()
    for keywords, reply in SCRIPTED_REPLIES:
        for keyword in keywords:
            # Short keywords must match whole words ("hi" is not "ship")
            if (len(keyword) <= 3 and keyword in words) or (len(keyword) > 3 and keyword in lowered):
                return reply
    return FALLBACK_REPLY


def tone_pcm(duration_ms: int, frequency: float = 440.0, amplitude: float = 0.2) -> bytes:
    """Generate a sine tone in the contractual PCM format."""
    count = AudioFormat.SAMPLE_RATE * duration_ms // 1000
    t = np.arange(count, dtype=np.float32) / AudioFormat.SAMPLE_RATE
    wave = amplitude * np.sin(2.0 * math.pi * frequency * t)
    return (wave * 32767.0).astype("<i2").tobytes()


def reply_segments(text: str, ms_per_word: int = 80) -> Iterator[Tuple[str, bytes]]:
    """Split a reply into (word, audio) pairs as a speaking voice would emit them."""
    for word in text.split():
        yield f"{word} ", tone_pcm(ms_per_word)


# ============================================================================
# Scripted Transport
# ============================================================================

class ScriptedTransport(Transport):
    """
    Offline Transport producing scripted conversations.

    Features:
    - Acknowledges ConfigureSession immediately (unless auto_configure=False)
    - Treats the Nth appended audio frame as the start of user speech
    - `say(text)` plays a full user utterance followed by a scripted answer
    - Honours cancels; records every frame written in `sent`

    Usage:
        transport = ScriptedTransport(step_delay_s=0.0)
        await transport.connect(session)
        await transport.say("What's the weather like?")
    """

    def __init__(
        self,
        step_delay_s: float = 0.08,
        auto_configure: bool = True,
        speech_after_chunks: int = 3,
        respond: bool = True,
    ):
        super().__init__()
        self.step_delay_s = step_delay_s
        self.auto_configure = auto_configure
        self.speech_after_chunks = speech_after_chunks
        self.respond = respond

        self.sent: List[OutboundFrame] = []
        self.connect_count = 0
        self.disconnect_count = 0

        self._audio_frames = 0
        self._response_task: Optional[asyncio.Task] = None
        self._phrase_index = 0

    async def connect(self, session: Session) -> Connection:
        self._reset(session)
        self._audio_frames = 0
        self.connect_count += 1
        self._set_state(ConnectionState.CONNECTED)
        self._emit(SessionReady(session_id=f"scripted_{uuid.uuid4().hex[:8]}"))
        logger.info("Scripted transport connected")
        return self._connection

    async def _write(self, frame: OutboundFrame) -> bool:
        self.sent.append(frame)

        if isinstance(frame, ConfigureSession):
            if self.auto_configure:
                self._emit(SessionConfigured())
        elif isinstance(frame, AppendAudio):
            self._audio_frames += 1
            if self._audio_frames == self.speech_after_chunks:
                self._emit(UserSpeechStarted())
        elif isinstance(frame, CommitAudio):
            self._audio_frames = 0
            if self.respond and not self.response_active:
                self._start_response(self._next_phrase())
        elif isinstance(frame, CancelResponse):
            self._cancel_response()
        return True

    def inject(self, event: RealtimeEvent) -> None:
        """Deliver an event as if it came from upstream."""
        self._emit(event)

    def drop(self) -> None:
        """Simulate an unexpected drop that cannot be recovered."""
        self._cancel_response()
        self._set_state(ConnectionState.ERROR)
        self._emit(ErrorEvent(code="reconnect_failed", message=msg("error.reconnect_failed")))

    async def say(self, text: str) -> None:
        """Simulate a complete spoken user utterance."""
        self._audio_frames = 0
        self._emit(UserSpeechStarted())
        words = text.split()
        for i in range(len(words)):
            await asyncio.sleep(self.step_delay_s)
            self._emit(UserTranscriptPartial(text=" ".join(words[: i + 1])))
        self._emit(UserSpeechStopped())
        self._emit(UserTranscriptFinal(text=text, item_id=f"item_{uuid.uuid4().hex[:8]}"))
        if self.respond:
            self._start_response(text)

    def _next_phrase(self) -> str:
        phrase = SIMULATED_USER_PHRASES[self._phrase_index % len(SIMULATED_USER_PHRASES)]
        self._phrase_index += 1
        self._emit(UserTranscriptFinal(text=phrase))
        return phrase

    def _start_response(self, user_text: str) -> None:
        self._cancel_response()
        self._response_task = asyncio.create_task(self._play_response(scripted_reply(user_text)))

    async def _play_response(self, reply: str) -> None:
        item_id = f"item_{uuid.uuid4().hex[:8]}"
        self._emit(AssistantResponseStarted(response_id=f"resp_{uuid.uuid4().hex[:8]}"))
        for word, audio in reply_segments(reply):
            await asyncio.sleep(self.step_delay_s)
            self._emit(AssistantTranscriptDelta(delta=word, item_id=item_id))
            self._emit(AssistantAudioChunk(data=audio, item_id=item_id))
        self._emit(AssistantAudioDone(item_id=item_id))
        self._emit(AssistantTranscriptDone(text=reply, item_id=item_id))
        self._emit(AssistantResponseDone())
        self._response_task = None

    def _cancel_response(self) -> None:
        task, self._response_task = self._response_task, None
        if task is not None and not task.done():
            task.cancel()
            self._emit(AssistantResponseDone(status="cancelled"))

    async def disconnect(self) -> None:
        if self._state == ConnectionState.DISCONNECTED:
            return
        task, self._response_task = self._response_task, None
        if task is not None and not task.done():
            task.cancel()
        self.disconnect_count += 1
        self._response_active = False
        self._set_state(ConnectionState.DISCONNECTED)
        self._end_events()
        logger.info("Scripted transport disconnected")


# ============================================================================
# In-Memory Audio
# ============================================================================

class MemoryAudioAdapter(AudioAdapter):
    """
    AudioAdapter without devices.

    Playback is recorded in `played` and only "plays" when `simulate_drain()`
    (or `simulate_playback(n)`) is called, unless auto_drain is set.
    Capture succeeds unless `grant_capture` is False; frames are fed with
    `feed(pcm)`.
    """

    def __init__(self, grant_capture: bool = True, auto_drain: bool = False):
        self.grant_capture = grant_capture
        self.auto_drain = auto_drain

        self.enqueued: List[bytes] = []
        self.played = bytearray()
        self.capture_starts = 0
        self.playback_stops = 0

        self._pending = bytearray()
        self._played_since_stop = 0
        self._on_chunk: Optional[ChunkCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._drained_callback: Optional[Callable[[], None]] = None
        self._capturing = False
        self._offset = 0
        self._level = 0.0

    def start_capture(self, on_chunk: ChunkCallback, on_error: Optional[ErrorCallback] = None) -> bool:
        if not self.grant_capture:
            return False
        self._on_chunk = on_chunk
        self._on_error = on_error
        self._capturing = True
        self._offset = 0
        self.capture_starts += 1
        return True

    def stop_capture(self) -> None:
        self._capturing = False
        self._level = 0.0

    def feed(self, pcm: bytes) -> bool:
        """Deliver one captured frame; False if capture is not running."""
        if not self._capturing or self._on_chunk is None:
            return False
        chunk = AudioChunk(data=pcm, offset=self._offset)
        self._offset += len(pcm)
        self._level = compute_level(pcm)
        self._on_chunk(chunk)
        return True

    def lose_device(self, error) -> None:
        """Simulate the input device disappearing."""
        self._capturing = False
        if self._on_error is not None:
            self._on_error(error)

    def enqueue_playback(self, data: bytes) -> None:
        self.enqueued.append(data)
        self._pending += data

    def end_of_stream(self) -> None:
        if self.auto_drain or not self._pending:
            self.simulate_drain()

    def simulate_playback(self, num_bytes: int) -> None:
        """Move bytes from the pending buffer to the played record."""
        taken = bytes(self._pending[:num_bytes])
        del self._pending[:num_bytes]
        self.played += taken
        self._played_since_stop += len(taken)

    def simulate_drain(self) -> None:
        """Play everything pending and report the buffer drained."""
        self.simulate_playback(len(self._pending))
        if self._drained_callback is not None:
            self._drained_callback()

    def stop_playback(self) -> int:
        played = self._played_since_stop
        self._pending.clear()
        self._played_since_stop = 0
        self.playback_stops += 1
        return played

    def set_drained_callback(self, callback: Optional[Callable[[], None]]) -> None:
        self._drained_callback = callback

    @property
    def pending_bytes(self) -> int:
        return len(self._pending)

    @property
    def current_level(self) -> float:
        return self._level

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    @property
    def is_playing(self) -> bool:
        return bool(self._pending)


# ============================================================================
# Offline Negotiation
# ============================================================================

class OfflineNegotiator:
    """Negotiator stand-in that issues local sessions without HTTP."""

    def __init__(self, expires_in: int = 600):
        self.expires_in = expires_in
        self.last_conversation_id: Optional[str] = None
        self.calls: List[dict] = []

    def check_health(self) -> None:
        return None

    def negotiate(
        self,
        auth_token: Optional[str] = None,
        user_location: Optional[str] = None,
        coordinates=None,
        conversation_id: Optional[str] = None,
        preload_weather: bool = True,
    ) -> Session:
        self.calls.append({
            "auth_token": auth_token,
            "user_location": user_location,
            "coordinates": coordinates,
            "conversation_id": conversation_id,
            "preload_weather": preload_weather,
        })
        conversation_id = conversation_id or f"conv_{uuid.uuid4().hex[:12]}"
        self.last_conversation_id = conversation_id
        token = uuid.uuid4().hex
        return Session(
            token=token,
            conversation_id=conversation_id,
            expires_at=time.time() + self.expires_in,
            stream_url=f"scripted://local/ws?token={token}",
        )
