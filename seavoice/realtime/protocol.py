"""
Wire Protocol Codecs

Translates between the normalized event vocabulary and the JSON frames
spoken on the realtime stream. Two vocabularies are supported:

- BackendProtocol: the simplified bridge vocabulary served by the session
  backend (audio, commit, cancel, close / ready, audio, transcript, status...)
- OpenAIRealtimeProtocol: the upstream-native realtime vocabulary
  (session.update, input_audio_buffer.*, response.*, conversation.item.*)

This is the only module that reads or writes `type` strings. Unknown inbound
types decode to None and are logged at DEBUG; they are never errors.
"""

import base64
import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Union

from seavoice.config import VoiceSessionConfig
from seavoice.logger import get_logger

from .errors import is_recoverable
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
    CloseSession,
    CommitAudio,
    ConfigureSession,
    CreateResponse,
    ErrorEvent,
    OutboundFrame,
    RealtimeEvent,
    SessionConfigured,
    SessionReady,
    Truncate,
    UserSpeechStarted,
    UserSpeechStopped,
    UserTranscriptFinal,
    UserTranscriptPartial,
)

logger = get_logger(__name__)

Payload = Dict[str, Any]


def _b64decode(value: Optional[str]) -> bytes:
    if not value:
        return b""
    return base64.b64decode(value)


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _object(data: Payload, key: str) -> Payload:
    """Nested object field, or an empty dict if absent or not an object."""
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def session_update_payload(config: VoiceSessionConfig) -> Payload:
    """Build the provider session configuration block."""
    if config.server_vad:
        turn_detection: Optional[Payload] = {
            "type": "server_vad",
            "threshold": config.vad_threshold,
            "prefix_padding_ms": config.prefix_padding_ms,
            "silence_duration_ms": config.silence_duration_ms,
            "create_response": config.create_response,
        }
    else:
        turn_detection = None

    return {
        "modalities": ["text", "audio"],
        "instructions": config.system_prompt,
        "voice": config.voice,
        "input_audio_format": "pcm16",
        "output_audio_format": "pcm16",
        "input_audio_transcription": {"model": config.transcription_model},
        "turn_detection": turn_detection,
        "temperature": config.temperature,
        "max_response_output_tokens": config.max_response_tokens,
    }


class Protocol(ABC):
    """
    Codec between normalized events and one wire vocabulary.

    Subclasses implement `encode_payload` and register inbound handlers in
    `_handlers`; `encode` and `decode` deal with JSON framing.
    """

    name: str = ""

    # Whether the provider expects a configuration frame from the client.
    # When False, the backend configures the upstream session itself.
    client_configures: bool = True

    _handlers: Dict[str, Callable[[Payload], Optional[RealtimeEvent]]]

    def encode(self, frame: OutboundFrame) -> Optional[str]:
        """
        Serialize a frame to a JSON text message.

        Returns:
            The JSON text, or None when the vocabulary has no frame for it
        """
        payload = self.encode_payload(frame)
        if payload is None:
            return None
        return json.dumps(payload)

    @abstractmethod
    def encode_payload(self, frame: OutboundFrame) -> Optional[Payload]:
        """Build the JSON object for a frame, or None to send nothing."""

    def decode(self, raw: Union[str, bytes]) -> Optional[RealtimeEvent]:
        """
        Translate one inbound text message into a normalized event.

        Returns:
            The event, or None for unknown types and malformed messages
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed {self.name} message: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Dropping non-object {self.name} message")
            return None

        msg_type = data.get("type", "")
        handler = self._handlers.get(msg_type)
        if handler is None:
            logger.debug(f"Ignoring unknown {self.name} event: {msg_type!r}")
            return None

        try:
            return handler(data)
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            logger.warning(f"Dropping {self.name} {msg_type} message: {e}")
            return None

    @staticmethod
    def error_event(code: Optional[str], message: Optional[str]) -> ErrorEvent:
        code = code or "unknown"
        return ErrorEvent(
            code=code,
            message=message or "Unknown error",
            recoverable=is_recoverable(code),
        )


# ============================================================================
# Backend Bridge Vocabulary
# ============================================================================

class BackendProtocol(Protocol):
    """
    Simplified vocabulary served by the session backend.

    The backend owns the upstream session: it applies the configuration and
    truncation itself, so ConfigureSession and Truncate produce no frame, and
    `ready` doubles as the configuration acknowledgement.
    """

    name = "backend"
    client_configures = False

    def __init__(self):
        self._handlers = {
            "ready": self._on_ready,
            "audio": self._on_audio,
            "audio_done": lambda data: AssistantAudioDone(),
            "transcript": self._on_transcript,
            "transcript_delta": self._on_transcript_delta,
            "status": self._on_status,
            "transcription_failed": self._on_transcription_failed,
            "error": self._on_error,
        }

    def encode_payload(self, frame: OutboundFrame) -> Optional[Payload]:
        if isinstance(frame, AppendAudio):
            return {"type": "audio", "data": _b64encode(frame.data)}
        if isinstance(frame, CommitAudio):
            return {"type": "commit"}
        if isinstance(frame, CancelResponse):
            return {"type": "cancel"}
        if isinstance(frame, CloseSession):
            return {"type": "close"}
        # clear, create, truncate and configure are handled server-side
        logger.debug(f"No backend frame for {type(frame).__name__}")
        return None

    def _on_ready(self, data: Payload) -> RealtimeEvent:
        return SessionConfigured()

    def _on_audio(self, data: Payload) -> Optional[RealtimeEvent]:
        audio = _b64decode(data.get("data"))
        if not audio:
            return None
        return AssistantAudioChunk(data=audio)

    def _on_transcript(self, data: Payload) -> RealtimeEvent:
        text = data.get("text") or ""
        if (data.get("role") or "user") == "user":
            return UserTranscriptFinal(text=text)
        return AssistantTranscriptDone(text=text)

    def _on_transcript_delta(self, data: Payload) -> RealtimeEvent:
        delta = data.get("delta") or ""
        if data.get("role") == "user":
            return UserTranscriptPartial(text=delta)
        return AssistantTranscriptDelta(delta=delta)

    def _on_status(self, data: Payload) -> Optional[RealtimeEvent]:
        status = data.get("status") or ""
        if status == "speaking":
            return AssistantResponseStarted()
        if status == "listening":
            return AssistantResponseDone()
        if status == "user_speaking":
            return UserSpeechStarted()
        if status == "processing":
            return UserSpeechStopped()
        logger.debug(f"Ignoring backend status: {status!r}")
        return None

    def _on_transcription_failed(self, data: Payload) -> RealtimeEvent:
        message = data.get("message") or "Transcription failed"
        return ErrorEvent(code="transcription_failed", message=message, recoverable=True)

    def _on_error(self, data: Payload) -> RealtimeEvent:
        return self.error_event(data.get("code"), data.get("message"))


# ============================================================================
# Upstream-Native Vocabulary
# ============================================================================

class OpenAIRealtimeProtocol(Protocol):
    """Native realtime API vocabulary, including the GA output_audio aliases."""

    name = "openai"
    client_configures = True

    def __init__(self):
        assistant_audio_delta = self._on_audio_delta
        assistant_audio_done = lambda data: AssistantAudioDone(item_id=data.get("item_id"))
        transcript_delta = self._on_assistant_transcript_delta
        transcript_done = self._on_assistant_transcript_done

        self._handlers = {
            "session.created": lambda data: SessionReady(
                session_id=_object(data, "session").get("id")
            ),
            "session.updated": lambda data: SessionConfigured(),
            "input_audio_buffer.speech_started": lambda data: UserSpeechStarted(
                audio_start_ms=data.get("audio_start_ms")
            ),
            "input_audio_buffer.speech_stopped": lambda data: UserSpeechStopped(
                audio_end_ms=data.get("audio_end_ms")
            ),
            "conversation.item.input_audio_transcription.delta": self._on_user_transcript_delta,
            "conversation.item.input_audio_transcription.completed": self._on_user_transcript_completed,
            "conversation.item.input_audio_transcription.failed": self._on_transcription_failed,
            "response.created": lambda data: AssistantResponseStarted(
                response_id=_object(data, "response").get("id")
            ),
            "response.audio_transcript.delta": transcript_delta,
            "response.output_audio_transcript.delta": transcript_delta,
            "response.audio_transcript.done": transcript_done,
            "response.output_audio_transcript.done": transcript_done,
            "response.audio.delta": assistant_audio_delta,
            "response.output_audio.delta": assistant_audio_delta,
            "response.audio.done": assistant_audio_done,
            "response.output_audio.done": assistant_audio_done,
            "response.done": self._on_response_done,
            "error": self._on_error,
        }
        # Partial user transcripts arrive as deltas; keep the running text
        self._user_partial: Dict[str, str] = {}

    def encode_payload(self, frame: OutboundFrame) -> Optional[Payload]:
        if isinstance(frame, AppendAudio):
            return {"type": "input_audio_buffer.append", "audio": _b64encode(frame.data)}
        if isinstance(frame, CommitAudio):
            return {"type": "input_audio_buffer.commit"}
        if isinstance(frame, ClearAudio):
            return {"type": "input_audio_buffer.clear"}
        if isinstance(frame, CreateResponse):
            return {"type": "response.create"}
        if isinstance(frame, CancelResponse):
            return {"type": "response.cancel"}
        if isinstance(frame, Truncate):
            if not frame.item_id:
                logger.debug("Truncate without item id; nothing to send")
                return None
            return {
                "type": "conversation.item.truncate",
                "item_id": frame.item_id,
                "content_index": frame.content_index,
                "audio_end_ms": frame.audio_end_ms,
            }
        if isinstance(frame, ConfigureSession):
            return {"type": "session.update", "session": session_update_payload(frame.config)}
        if isinstance(frame, CloseSession):
            # The native API has no close frame; closing the socket ends it
            return None
        raise TypeError(f"Unsupported frame: {type(frame).__name__}")

    def _on_user_transcript_delta(self, data: Payload) -> RealtimeEvent:
        item_id = data.get("item_id") or ""
        text = self._user_partial.get(item_id, "") + (data.get("delta") or "")
        self._user_partial[item_id] = text
        return UserTranscriptPartial(text=text)

    def _on_user_transcript_completed(self, data: Payload) -> RealtimeEvent:
        item_id = data.get("item_id")
        self._user_partial.pop(item_id or "", None)
        return UserTranscriptFinal(text=data.get("transcript") or "", item_id=item_id)

    def _on_transcription_failed(self, data: Payload) -> RealtimeEvent:
        self._user_partial.pop(data.get("item_id") or "", None)
        error = _object(data, "error")
        return ErrorEvent(
            code="transcription_failed",
            message=error.get("message") or "Transcription failed",
            recoverable=True,
        )

    def _on_assistant_transcript_delta(self, data: Payload) -> RealtimeEvent:
        return AssistantTranscriptDelta(delta=data.get("delta") or "", item_id=data.get("item_id"))

    def _on_assistant_transcript_done(self, data: Payload) -> RealtimeEvent:
        return AssistantTranscriptDone(text=data.get("transcript") or "", item_id=data.get("item_id"))

    def _on_audio_delta(self, data: Payload) -> Optional[RealtimeEvent]:
        audio = _b64decode(data.get("delta"))
        if not audio:
            return None
        return AssistantAudioChunk(
            data=audio,
            item_id=data.get("item_id"),
            content_index=data.get("content_index") or 0,
        )

    def _on_response_done(self, data: Payload) -> RealtimeEvent:
        response = _object(data, "response")
        return AssistantResponseDone(
            response_id=response.get("id"),
            status=response.get("status") or "completed",
        )

    def _on_error(self, data: Payload) -> RealtimeEvent:
        error = _object(data, "error")
        return self.error_event(error.get("code"), error.get("message"))


def create_protocol(name: str) -> Protocol:
    """Return a codec instance by vocabulary name."""
    if name == BackendProtocol.name:
        return BackendProtocol()
    if name == OpenAIRealtimeProtocol.name:
        return OpenAIRealtimeProtocol()
    raise ValueError(f"Unknown realtime protocol: {name}")
