"""
Realtime Voice Conversation Module

This package provides the client core of a continuous voice conversation
with a realtime speech model, built on an event-driven architecture.

Architecture:
- Session Negotiator: HTTP health probe and session token exchange
- Protocol: Wire vocabulary codecs mapped to normalized events
- Transport: Websocket stream with reconnect and cancel guarding
- Audio I/O: Capture and buffered playback behind one adapter interface
- Transcript Aggregator: Streaming transcripts sealed into turns
- Conversation Controller: Single-consumer dialog state machine
- Simulation: Scripted transport and in-memory audio for offline runs

Design Goals:
- One owner for every piece of mutable state
- Injected collaborators, no global settings in the core
- Barge-in that truncates exactly what was heard

Usage:
    from seavoice.realtime import RealtimeVoiceAgent

    agent = RealtimeVoiceAgent()
    await agent.run()
"""

from .errors import (
    VoiceError,
    BackendUnavailable,
    NegotiationFailed,
    ConnectionFailed,
    CapturePermissionDenied,
    CaptureDeviceLost,
    PlaybackUnderrun,
    RECOVERABLE_ERROR_CODES,
    is_recoverable,
)
from .events import (
    EventKind,
    RealtimeEvent,
    SessionReady,
    SessionConfigured,
    UserSpeechStarted,
    UserSpeechStopped,
    UserTranscriptPartial,
    UserTranscriptFinal,
    AssistantResponseStarted,
    AssistantTranscriptDelta,
    AssistantTranscriptDone,
    AssistantAudioChunk,
    AssistantAudioDone,
    AssistantResponseDone,
    ErrorEvent,
    OutboundFrame,
    AppendAudio,
    CommitAudio,
    ClearAudio,
    CreateResponse,
    CancelResponse,
    Truncate,
    ConfigureSession,
    CloseSession,
)
from .protocol import Protocol, BackendProtocol, OpenAIRealtimeProtocol, create_protocol
from .session import Session, SessionNegotiator, SessionCreateRequest, SessionCreateResponse
from .audio_io import AudioAdapter, AudioChunk, AudioFormat, PlaybackBuffer, bytes_to_ms, ms_to_bytes
from .transport import Transport, WebSocketTransport, Connection, ConnectionState
from .transcript import TranscriptAggregator, ConversationTurn, Speaker
from .timers import GenerationTimer, TimerFired
from .simulation import ScriptedTransport, MemoryAudioAdapter, OfflineNegotiator
from .conversation_controller import (
    ConversationController,
    ConversationContext,
    DialogSnapshot,
    DialogState,
)
from .voice_agent import RealtimeVoiceAgent, VoiceAgentConfig, print_banner

__all__ = [
    # Errors
    "VoiceError",
    "BackendUnavailable",
    "NegotiationFailed",
    "ConnectionFailed",
    "CapturePermissionDenied",
    "CaptureDeviceLost",
    "PlaybackUnderrun",
    "RECOVERABLE_ERROR_CODES",
    "is_recoverable",
    # Events
    "EventKind",
    "RealtimeEvent",
    "SessionReady",
    "SessionConfigured",
    "UserSpeechStarted",
    "UserSpeechStopped",
    "UserTranscriptPartial",
    "UserTranscriptFinal",
    "AssistantResponseStarted",
    "AssistantTranscriptDelta",
    "AssistantTranscriptDone",
    "AssistantAudioChunk",
    "AssistantAudioDone",
    "AssistantResponseDone",
    "ErrorEvent",
    # Outbound frames
    "OutboundFrame",
    "AppendAudio",
    "CommitAudio",
    "ClearAudio",
    "CreateResponse",
    "CancelResponse",
    "Truncate",
    "ConfigureSession",
    "CloseSession",
    # Protocol
    "Protocol",
    "BackendProtocol",
    "OpenAIRealtimeProtocol",
    "create_protocol",
    # Session
    "Session",
    "SessionNegotiator",
    "SessionCreateRequest",
    "SessionCreateResponse",
    # Audio
    "AudioAdapter",
    "AudioChunk",
    "AudioFormat",
    "PlaybackBuffer",
    "bytes_to_ms",
    "ms_to_bytes",
    # Transport
    "Transport",
    "WebSocketTransport",
    "Connection",
    "ConnectionState",
    # Transcript
    "TranscriptAggregator",
    "ConversationTurn",
    "Speaker",
    # Timers
    "GenerationTimer",
    "TimerFired",
    # Simulation
    "ScriptedTransport",
    "MemoryAudioAdapter",
    "OfflineNegotiator",
    # Controller
    "ConversationController",
    "ConversationContext",
    "DialogSnapshot",
    "DialogState",
    # Voice Agent
    "RealtimeVoiceAgent",
    "VoiceAgentConfig",
    "print_banner",
]
