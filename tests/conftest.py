"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import asyncio
import os
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

# Set test environment
os.environ["APP_ENV"] = "test"
os.environ["BACKEND_URL"] = "http://backend.test:8000"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("AUTH_TOKEN", None)
os.environ.pop("REALTIME_PROTOCOL", None)

from seavoice.config import ConversationConfig, VoiceSessionConfig
from seavoice.realtime.conversation_controller import ConversationContext, ConversationController
from seavoice.realtime.session import Session
from seavoice.realtime.simulation import MemoryAudioAdapter, OfflineNegotiator, ScriptedTransport


async def settle(rounds: int = 5) -> None:
    """Let pending tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def session():
    """A live session pointing at a test endpoint."""
    import time

    return Session(
        token="tok_123",
        conversation_id="conv_abc",
        expires_at=time.time() + 600,
        stream_url="ws://backend.test:8000/ws?token=tok_123",
    )


@pytest.fixture
def voice_config():
    """Server-VAD voice configuration with server-created responses."""
    return VoiceSessionConfig(
        voice="alloy",
        vad_threshold=0.4,
        prefix_padding_ms=200,
        silence_duration_ms=400,
        create_response=True,
        server_vad=True,
    )


@pytest.fixture
def fast_conversation():
    """Short timers so tests don't wait on product timings."""
    return ConversationConfig(
        silence_timeout_ms=50,
        resume_delay_ms=20,
        playback_drain_timeout_s=0.5,
    )


@pytest.fixture
def negotiator():
    return OfflineNegotiator()


@pytest.fixture
def transport():
    """Scripted transport that only reacts to injected events."""
    return ScriptedTransport(step_delay_s=0.0, respond=False)


@pytest.fixture
def audio():
    return MemoryAudioAdapter()


@pytest_asyncio.fixture
async def make_controller(negotiator, transport, audio, voice_config, fast_conversation):
    """Factory building a controller over the scripted collaborators."""
    created = []

    def _make(**overrides):
        kwargs = dict(
            negotiator=negotiator,
            transport=transport,
            audio=audio,
            session_config=voice_config,
            config=fast_conversation,
            context=ConversationContext(user_location="Key West, FL", check_health=False),
            config_ack_timeout_s=0.2,
        )
        kwargs.update(overrides)
        controller = ConversationController(**kwargs)
        created.append(controller)
        return controller

    yield _make

    for controller in created:
        await controller.close()


@pytest.fixture
def mock_http():
    """Mock requests.Session for the negotiator."""
    return MagicMock()
