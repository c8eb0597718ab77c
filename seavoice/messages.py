"""User-facing status and error strings for the voice dialog.

The presentation layer shows these verbatim, so every message the
conversation controller surfaces is looked up here by key.
"""

from __future__ import annotations

_MESSAGES: dict[str, str] = {
    "status.initializing": "Initializing...",
    "status.setting_up": "Setting up voice assistant...",
    "status.checking_backend": "Checking server...",
    "status.connecting": "Connecting to AI...",
    "status.configuring": "Configuring voice assistant...",
    "status.connected": "Connected",
    "status.listening": "Listening...",
    "status.processing": "Processing...",
    "status.thinking": "Thinking...",
    "status.speaking": "Speaking...",
    "status.paused": "Paused - Tap to resume",
    "status.disconnected": "Disconnected",
    "error.backend_unavailable": "Server is not reachable. Please check the connection and try again.",
    "error.negotiation_failed": "The server rejected the voice session request ({status}).",
    "error.connection_failed": "Failed to connect to AI service. Please check your internet connection.",
    "error.capture_denied": "Failed to initialize audio. Please check microphone permissions.",
    "error.capture_lost": "The microphone stopped responding.",
    "error.playback_failed": "Audio playback failed.",
    "error.reconnect_failed": "Connection lost. Tap retry to reconnect.",
    "error.unknown": "Unknown error occurred",
    "error.internal": "Something went wrong: {detail}",
}


def msg(key: str, **params: object) -> str:
    """Return a message by key, or the key itself if not found."""
    text = _MESSAGES.get(key, key)
    if params:
        try:
            return text.format(**params)
        except (KeyError, IndexError):
            return text
    return text
