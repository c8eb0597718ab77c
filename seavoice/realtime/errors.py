"""
Error taxonomy for the voice session.

Local failures are raised as `VoiceError` subclasses and caught at the
boundary of the component that owns them. Upstream protocol errors are never
raised; the protocol codecs turn them into `ErrorEvent`s and `is_recoverable`
decides whether they are recoverable.
"""

from typing import Optional

# Upstream codes that are harmless races, not failures
RECOVERABLE_ERROR_CODES = frozenset({
    "response_cancel_not_active",
    "conversation_already_exists",
})


def is_recoverable(code: Optional[str]) -> bool:
    """Return True if an upstream error code must not break the dialog."""
    return code in RECOVERABLE_ERROR_CODES


class VoiceError(Exception):
    """Base class for all voice session failures."""

    message_key = "error.internal"


class BackendUnavailable(VoiceError):
    """The liveness probe failed; the server is down or unreachable."""

    message_key = "error.backend_unavailable"


class NegotiationFailed(VoiceError):
    """Session creation was rejected or could not be completed."""

    message_key = "error.negotiation_failed"

    def __init__(self, http_status: Optional[int], body: str = ""):
        self.http_status = http_status
        self.body = body
        super().__init__(f"Session negotiation failed: {http_status} - {body[:200]}")


class ConnectionFailed(VoiceError):
    """The realtime stream handshake failed."""

    message_key = "error.connection_failed"


class CapturePermissionDenied(VoiceError):
    """Microphone access was refused or no input device could be opened."""

    message_key = "error.capture_denied"


class CaptureDeviceLost(VoiceError):
    """The input device stopped delivering audio while capturing."""

    message_key = "error.capture_lost"


class PlaybackUnderrun(VoiceError):
    """The output device ran dry while audio was still expected."""

    message_key = "error.playback_failed"
