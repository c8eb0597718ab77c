"""
Tests for the Voice Agent wiring and the CLI parser
"""

import asyncio

import pytest

from seavoice.cli import _parse_coordinates, create_parser
from seavoice.realtime.conversation_controller import DialogState
from seavoice.realtime.simulation import MemoryAudioAdapter, OfflineNegotiator, ScriptedTransport
from seavoice.realtime.transcript import Speaker
from seavoice.realtime.voice_agent import RealtimeVoiceAgent, VoiceAgentConfig


async def wait_until(predicate, timeout=3.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout=timeout)


class TestSimulatedAgent:
    """Tests for the offline agent."""

    def test_build_uses_offline_collaborators(self):
        agent = RealtimeVoiceAgent(VoiceAgentConfig(simulated=True, user_location="Tampa, FL"))
        controller = agent.build_controller()

        assert isinstance(agent.negotiator, OfflineNegotiator)
        assert isinstance(agent.transport, ScriptedTransport)
        assert isinstance(agent.audio, MemoryAudioAdapter)
        assert agent.build_controller() is controller
        assert agent.state == DialogState.INITIALIZING

    def test_status_before_build(self):
        agent = RealtimeVoiceAgent(VoiceAgentConfig(simulated=True))
        assert agent.state is None
        assert agent.turn_count == 0
        assert agent.stats == {}

    @pytest.mark.asyncio
    async def test_scripted_conversation(self):
        snapshots = []
        agent = RealtimeVoiceAgent(
            VoiceAgentConfig(simulated=True, user_location="Tampa, FL", simulated_step_delay_s=0.0),
            on_change=snapshots.append,
        )
        controller = await agent.start()
        try:
            assert await controller.wait_for_state(DialogState.LISTENING, timeout=3)
            assert agent.negotiator.calls[0]["user_location"] == "Tampa, FL"

            await agent.transport.say("Is it safe to sail today?")
            await wait_until(lambda: agent.turn_count == 2 and agent.state == DialogState.LISTENING)

            roles = [turn.role for turn in controller.history]
            assert roles == [Speaker.USER, Speaker.ASSISTANT]
            assert controller.history[0].text == "Is it safe to sail today?"
            assert agent.stats["responses"] == 1
            assert any(s.state == DialogState.AI_SPEAKING for s in snapshots)
        finally:
            await agent.stop()

        assert controller.is_closed
        assert agent.transport.disconnect_count == 1


class TestCli:
    """Tests for argument parsing."""

    def test_parse_coordinates(self):
        assert _parse_coordinates(["24.55,-81.78", "25.7,-80.2"]) == [[24.55, -81.78], [25.7, -80.2]]
        assert _parse_coordinates(None) is None

    def test_voice_chat_arguments(self):
        args = create_parser().parse_args([
            "voice-chat", "--location", "Key West, FL",
            "--coord", "24.55,-81.78", "--conversation", "conv_1",
        ])

        assert args.command == "voice-chat"
        assert args.location == "Key West, FL"
        assert args.coord == ["24.55,-81.78"]
        assert args.conversation == "conv_1"

    def test_serve_dev_defaults(self):
        args = create_parser().parse_args(["serve-dev"])
        assert args.host == "127.0.0.1"
        assert args.port == 8000

    def test_verbose_flag(self):
        args = create_parser().parse_args(["-v", "simulate", "--delay", "0"])
        assert args.verbose
        assert args.delay == 0.0
