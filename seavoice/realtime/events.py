"""
Event Vocabulary for the Realtime Voice Session

Two closed families of types cross the transport boundary:

- RealtimeEvent subclasses: the normalized inbound vocabulary. Every upstream
  message is translated into exactly one of these by a protocol codec before
  it reaches the conversation controller, so the controller never sees
  upstream type strings.
- OutboundFrame subclasses: what the controller asks the transport to send.
  The codec decides how (or whether) each frame is written on the wire.

Event Types:
- SessionReady / SessionConfigured: stream open, configuration acknowledged
- UserSpeechStarted / UserSpeechStopped: voice activity boundaries
- UserTranscriptPartial / UserTranscriptFinal: user speech transcription
- AssistantResponseStarted / AssistantResponseDone: one response cycle
- AssistantTranscriptDelta / AssistantTranscriptDone: assistant text
- AssistantAudioChunk / AssistantAudioDone: assistant PCM audio
- ErrorEvent: upstream or transport error with recoverability
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional

from seavoice.config import VoiceSessionConfig


class EventKind(Enum):
    """Tag of a normalized inbound event."""
    SESSION_READY = "sessionReady"
    SESSION_CONFIGURED = "sessionConfigured"
    USER_SPEECH_STARTED = "userSpeechStarted"
    USER_SPEECH_STOPPED = "userSpeechStopped"
    USER_TRANSCRIPT_PARTIAL = "userTranscriptPartial"
    USER_TRANSCRIPT_FINAL = "userTranscriptFinal"
    ASSISTANT_RESPONSE_STARTED = "assistantResponseStarted"
    ASSISTANT_TRANSCRIPT_DELTA = "assistantTranscriptDelta"
    ASSISTANT_TRANSCRIPT_DONE = "assistantTranscriptDone"
    ASSISTANT_AUDIO_CHUNK = "assistantAudioChunk"
    ASSISTANT_AUDIO_DONE = "assistantAudioDone"
    ASSISTANT_RESPONSE_DONE = "assistantResponseDone"
    ERROR = "error"


@dataclass(frozen=True)
class RealtimeEvent:
    """Base class for all normalized inbound events."""
    kind: ClassVar[EventKind]

    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    timestamp: float = field(default_factory=time.time)

    @property
    def age_ms(self) -> float:
        """Get event age in milliseconds."""
        return (time.time() - self.timestamp) * 1000


# ============================================================================
# Session Events
# ============================================================================

@dataclass(frozen=True)
class SessionReady(RealtimeEvent):
    """The stream is open and may carry frames."""
    kind: ClassVar[EventKind] = EventKind.SESSION_READY
    session_id: Optional[str] = None


@dataclass(frozen=True)
class SessionConfigured(RealtimeEvent):
    """Upstream acknowledged the session configuration."""
    kind: ClassVar[EventKind] = EventKind.SESSION_CONFIGURED


# ============================================================================
# User Speech Events
# ============================================================================

@dataclass(frozen=True)
class UserSpeechStarted(RealtimeEvent):
    """Voice activity detected in the user's audio."""
    kind: ClassVar[EventKind] = EventKind.USER_SPEECH_STARTED
    audio_start_ms: Optional[int] = None


@dataclass(frozen=True)
class UserSpeechStopped(RealtimeEvent):
    """The user stopped speaking."""
    kind: ClassVar[EventKind] = EventKind.USER_SPEECH_STOPPED
    audio_end_ms: Optional[int] = None


@dataclass(frozen=True)
class UserTranscriptPartial(RealtimeEvent):
    """Interim transcription of the current user utterance (full text so far)."""
    kind: ClassVar[EventKind] = EventKind.USER_TRANSCRIPT_PARTIAL
    text: str = ""


@dataclass(frozen=True)
class UserTranscriptFinal(RealtimeEvent):
    """Completed transcription of a user utterance."""
    kind: ClassVar[EventKind] = EventKind.USER_TRANSCRIPT_FINAL
    text: str = ""
    item_id: Optional[str] = None


# ============================================================================
# Assistant Response Events
# ============================================================================

@dataclass(frozen=True)
class AssistantResponseStarted(RealtimeEvent):
    """Upstream began generating a response."""
    kind: ClassVar[EventKind] = EventKind.ASSISTANT_RESPONSE_STARTED
    response_id: Optional[str] = None


@dataclass(frozen=True)
class AssistantTranscriptDelta(RealtimeEvent):
    """A piece of the assistant's spoken text."""
    kind: ClassVar[EventKind] = EventKind.ASSISTANT_TRANSCRIPT_DELTA
    delta: str = ""
    item_id: Optional[str] = None


@dataclass(frozen=True)
class AssistantTranscriptDone(RealtimeEvent):
    """The full text of the assistant's spoken output."""
    kind: ClassVar[EventKind] = EventKind.ASSISTANT_TRANSCRIPT_DONE
    text: str = ""
    item_id: Optional[str] = None


@dataclass(frozen=True)
class AssistantAudioChunk(RealtimeEvent):
    """Decoded PCM audio for playback."""
    kind: ClassVar[EventKind] = EventKind.ASSISTANT_AUDIO_CHUNK
    data: bytes = b""
    item_id: Optional[str] = None
    content_index: int = 0


@dataclass(frozen=True)
class AssistantAudioDone(RealtimeEvent):
    """No more audio will arrive for the current response item."""
    kind: ClassVar[EventKind] = EventKind.ASSISTANT_AUDIO_DONE
    item_id: Optional[str] = None


@dataclass(frozen=True)
class AssistantResponseDone(RealtimeEvent):
    """The response cycle finished (completed, cancelled or failed)."""
    kind: ClassVar[EventKind] = EventKind.ASSISTANT_RESPONSE_DONE
    response_id: Optional[str] = None
    status: str = "completed"


@dataclass(frozen=True)
class ErrorEvent(RealtimeEvent):
    """Upstream or transport error."""
    kind: ClassVar[EventKind] = EventKind.ERROR
    code: str = "unknown"
    message: str = ""
    recoverable: bool = False


# ============================================================================
# Outbound Frames
# ============================================================================

@dataclass(frozen=True)
class OutboundFrame:
    """Base class for frames the controller asks the transport to send."""


@dataclass(frozen=True)
class AppendAudio(OutboundFrame):
    """Captured user PCM audio."""
    data: bytes


@dataclass(frozen=True)
class CommitAudio(OutboundFrame):
    """Manual end of user turn; only meaningful without server VAD."""


@dataclass(frozen=True)
class ClearAudio(OutboundFrame):
    """Discard audio buffered upstream but not yet committed."""


@dataclass(frozen=True)
class CreateResponse(OutboundFrame):
    """Manual response trigger; only meaningful without auto-response."""


@dataclass(frozen=True)
class CancelResponse(OutboundFrame):
    """Stop the response currently being generated."""


@dataclass(frozen=True)
class Truncate(OutboundFrame):
    """Tell upstream how much of an assistant item was actually heard."""
    item_id: Optional[str]
    content_index: int
    audio_end_ms: int


@dataclass(frozen=True)
class ConfigureSession(OutboundFrame):
    """Session configuration issued once the stream is ready."""
    config: VoiceSessionConfig


@dataclass(frozen=True)
class CloseSession(OutboundFrame):
    """Graceful end of the session."""
