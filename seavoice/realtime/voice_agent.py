"""
Voice Agent Module

Composition root for the voice conversation. Builds the negotiator,
transport, audio adapter and controller once and wires them together by
injection. No other module reads global settings.

Designed so the same controller runs against real devices and a websocket,
or fully offline against scripted stand-ins.
"""

import asyncio
import signal
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from seavoice.config import Settings, VoiceSessionConfig, settings
from seavoice.logger import get_logger

from .audio_io import AudioAdapter
from .conversation_controller import (
    ConversationContext,
    ConversationController,
    DialogSnapshot,
    DialogState,
)
from .protocol import create_protocol
from .session import SessionNegotiator
from .simulation import MemoryAudioAdapter, OfflineNegotiator, ScriptedTransport
from .transport import Transport, WebSocketTransport

logger = get_logger(__name__)


@dataclass
class VoiceAgentConfig:
    """Configuration for the voice agent."""
    # Run against scripted stand-ins instead of devices and the network
    simulated: bool = False

    # Session inputs
    user_location: Optional[str] = None
    coordinates: Optional[list] = None
    conversation_id: Optional[str] = None

    # Voice session sent upstream
    voice: VoiceSessionConfig = field(default_factory=VoiceSessionConfig.maritime_safety)

    # Pacing of scripted responses in simulated mode
    simulated_step_delay_s: float = 0.08


class RealtimeVoiceAgent:
    """
    Hands-free voice conversation with the maritime safety assistant.

    Features:
    - Real mode: HTTP negotiation, websocket stream, sounddevice audio
    - Simulated mode: offline negotiation, scripted replies, in-memory audio
    - Clean shutdown on Ctrl+C / SIGTERM

    Usage:
        agent = RealtimeVoiceAgent()
        await agent.run()

    Or offline:
        agent = RealtimeVoiceAgent(VoiceAgentConfig(simulated=True))
        await agent.run()
    """

    def __init__(
        self,
        config: Optional[VoiceAgentConfig] = None,
        app_settings: Optional[Settings] = None,
        on_change: Optional[Callable[[DialogSnapshot], None]] = None,
    ):
        """
        Initialize voice agent.

        Args:
            config: Agent configuration
            app_settings: Settings to build from (defaults to the global settings)
            on_change: Listener receiving a snapshot on every dialog change
        """
        self._config = config or VoiceAgentConfig()
        self._settings = app_settings or settings
        self._on_change = on_change

        self.negotiator: Any = None
        self.transport: Optional[Transport] = None
        self.audio: Optional[AudioAdapter] = None
        self._controller: Optional[ConversationController] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    # ========================================================================
    # Construction
    # ========================================================================

    def build_controller(self) -> ConversationController:
        """Create the controller and its collaborators. Builds once."""
        if self._controller is not None:
            return self._controller

        s = self._settings
        if self._config.simulated:
            self.negotiator = OfflineNegotiator()
            self.transport = ScriptedTransport(step_delay_s=self._config.simulated_step_delay_s)
            self.audio = MemoryAudioAdapter(auto_drain=True)
            check_health = False
        else:
            self.negotiator = SessionNegotiator(
                s.backend.base_url,
                health_timeout_s=s.backend.health_timeout_s,
                session_timeout_s=s.backend.session_timeout_s,
            )
            self.transport = WebSocketTransport(
                create_protocol(s.realtime.protocol),
                connect_timeout_s=s.realtime.connect_timeout_s,
                max_reconnect_attempts=s.realtime.reconnect_max_attempts,
                reconnect_base_delay_s=s.realtime.reconnect_base_delay_s,
            )
            self.audio = self._create_device_audio()
            check_health = s.backend.health_check_enabled

        context = ConversationContext(
            auth_token=s.backend.auth_token,
            user_location=self._config.user_location or s.backend.user_location,
            coordinates=self._config.coordinates,
            conversation_id=self._config.conversation_id,
            preload_weather=s.backend.preload_weather,
            check_health=check_health,
        )

        self._controller = ConversationController(
            negotiator=self.negotiator,
            transport=self.transport,
            audio=self.audio,
            session_config=self._config.voice,
            config=s.conversation,
            context=context,
            config_ack_timeout_s=s.realtime.config_ack_timeout_s,
        )
        if self._on_change is not None:
            self._controller.add_listener(self._on_change)
        return self._controller

    def _create_device_audio(self) -> AudioAdapter:
        # Imported here so simulated runs work without PortAudio
        from .device_audio import SoundDeviceAudioAdapter

        audio = self._settings.audio
        return SoundDeviceAudioAdapter(
            chunk_ms=audio.chunk_ms,
            playback_buffer_ms=audio.playback_buffer_ms,
            input_device=audio.input_device,
            output_device=audio.output_device,
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> ConversationController:
        """Build (if needed) and start the controller."""
        controller = self.build_controller()
        await controller.start()
        return controller

    async def run(self) -> None:
        """
        Run the conversation until closed or interrupted.

        Installs SIGINT/SIGTERM handlers that close the dialog.
        """
        self._shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        controller = await self.start()
        logger.info("Voice agent running - speak to interact, Ctrl+C to exit")

        closed = asyncio.create_task(controller.wait_closed())
        shutdown = asyncio.create_task(self._shutdown_event.wait())
        try:
            await asyncio.wait({closed, shutdown}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            logger.info("Voice agent cancelled")
        finally:
            for task in (closed, shutdown):
                task.cancel()
            await self.stop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except NotImplementedError:
                    pass

    async def stop(self) -> None:
        """Close the dialog and release the negotiator."""
        if self._controller is None:
            return

        logger.debug("Stopping voice agent...")
        try:
            await self._controller.close()
        except Exception as e:
            logger.error(f"Error closing controller: {e}")

        if isinstance(self.negotiator, SessionNegotiator):
            self.negotiator.close()
        logger.info("Voice agent stopped")

    def _signal_handler(self) -> None:
        """Handle shutdown signals."""
        logger.info("Shutdown signal received")
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    # ========================================================================
    # Status
    # ========================================================================

    @property
    def controller(self) -> Optional[ConversationController]:
        return self._controller

    @property
    def state(self) -> Optional[DialogState]:
        """Current dialog state, or None before the controller is built."""
        return self._controller.dialog_state if self._controller else None

    @property
    def turn_count(self) -> int:
        return len(self._controller.history) if self._controller else 0

    @property
    def stats(self) -> Dict[str, Any]:
        """Get agent statistics."""
        return self._controller.stats if self._controller else {}


def print_banner(simulated: bool = False) -> None:
    """Print agent startup banner."""
    print("\n" + "=" * 60)
    print("🌊  SeaVoice - Maritime Safety Voice Assistant")
    print("=" * 60)
    print(f"Mode: {'simulated (offline)' if simulated else 'live'}")
    print("Features:")
    print("  • Hands-free conversation")
    print("  • Barge-in support (interrupt anytime)")
    print("  • Weather, safety and navigation guidance")
    print("-" * 60)
    print("Controls:")
    print("  • Speak naturally to interact")
    print("  • Press Ctrl+C to end the conversation")
    print("-" * 60)
