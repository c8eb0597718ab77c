"""
SeaVoice - Source Package

Client core of a hands-free maritime safety voice assistant.

This package provides:
- Session negotiation with the voice backend
- A realtime transport speaking the backend or OpenAI Realtime vocabulary
- A conversation state machine with barge-in and automatic turn-taking
- Device and in-memory audio adapters
- CLI and a local development server
"""

__version__ = "1.0.0"

from seavoice.config import settings

__all__ = ["settings", "__version__"]
