#!/usr/bin/env python3
"""
SeaVoice - Command Line Interface

CLI for the maritime safety voice assistant client.

Commands:
    health      - Probe the session backend
    session     - Negotiate a session and print it
    voice-chat  - Start a hands-free voice conversation (microphone + speaker)
    simulate    - Run a conversation offline; typed lines act as utterances
    serve-dev   - Run the local development bridge server

Usage:
    seavoice health
    seavoice session --location "Miami, FL"
    seavoice voice-chat
    seavoice simulate
    seavoice serve-dev --port 8000

For help on a specific command:
    seavoice <command> --help
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from seavoice.config import settings
from seavoice.logger import get_logger, init_logging

logger = get_logger(__name__)


def _parse_coordinates(values: Optional[List[str]]) -> Optional[List[List[float]]]:
    """Parse "lat,lon" strings."""
    if not values:
        return None
    pairs = []
    for value in values:
        lat, _, lon = value.partition(",")
        pairs.append([float(lat), float(lon)])
    return pairs


def cmd_health(args: argparse.Namespace) -> int:
    """Check that the session backend is reachable."""
    from seavoice.realtime.errors import BackendUnavailable
    from seavoice.realtime.session import SessionNegotiator

    negotiator = SessionNegotiator(
        settings.backend.base_url,
        health_timeout_s=settings.backend.health_timeout_s,
    )
    try:
        negotiator.check_health()
        print(f"✅ Backend healthy: {settings.backend.base_url}")
        return 0
    except BackendUnavailable as e:
        print(f"❌ Backend unavailable: {e}")
        return 1
    finally:
        negotiator.close()


def cmd_session(args: argparse.Namespace) -> int:
    """Negotiate a session and print its details."""
    from seavoice.realtime.errors import NegotiationFailed
    from seavoice.realtime.session import SessionNegotiator

    negotiator = SessionNegotiator(
        settings.backend.base_url,
        health_timeout_s=settings.backend.health_timeout_s,
        session_timeout_s=settings.backend.session_timeout_s,
    )
    try:
        session = negotiator.negotiate(
            auth_token=settings.backend.auth_token,
            user_location=args.location or settings.backend.user_location,
            coordinates=_parse_coordinates(args.coord),
            conversation_id=args.conversation,
            preload_weather=settings.backend.preload_weather,
        )
    except NegotiationFailed as e:
        print(f"❌ {e}")
        return 1
    finally:
        negotiator.close()

    print("\n🔑 Session")
    print("-" * 50)
    print(f"   Conversation: {session.conversation_id}")
    print(f"   Stream URL:   {session.stream_url}")
    print(f"   Expires in:   {session.seconds_remaining:.0f}s")
    return 0


def _print_turn_log(agent) -> None:
    """Print the conversation history and statistics after a run."""
    controller = agent.controller
    if controller is None:
        return
    print("\n" + "-" * 60)
    print("📜 Conversation:")
    for turn in controller.history:
        print(f"   {turn.role.value:>9}: {turn.text}")
    stats = agent.stats
    print("📊 Session Statistics:")
    print(f"   Turns: {stats.get('turn_count', 0)}")
    print(f"   Responses: {stats.get('responses', 0)}")
    print(f"   Barge-ins: {stats.get('barge_ins', 0)}")
    print()


def cmd_voice_chat(args: argparse.Namespace) -> int:
    """
    Start a hands-free voice conversation.

    Streams microphone audio to the realtime endpoint and plays the
    assistant's voice; speaking over the assistant interrupts it.
    """
    from seavoice.realtime.voice_agent import RealtimeVoiceAgent, VoiceAgentConfig, print_banner

    print_banner()
    try:
        settings.validate_all()
    except ValueError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    def on_change(snapshot) -> None:
        logger.debug(f"[{snapshot.state.value}] {snapshot.status_message}")

    config = VoiceAgentConfig(
        user_location=args.location,
        coordinates=_parse_coordinates(args.coord),
        conversation_id=args.conversation,
        voice=settings.voice,
    )
    agent = RealtimeVoiceAgent(config, on_change=on_change)

    try:
        asyncio.run(agent.run())
        _print_turn_log(agent)
        return 0
    except KeyboardInterrupt:
        print("\n\n👋 Voice chat interrupted.")
        return 0
    except Exception as e:
        print(f"❌ Voice chat failed: {e}")
        logger.exception("Voice chat error")
        return 1


async def _simulate(args: argparse.Namespace) -> int:
    from seavoice.realtime.conversation_controller import DialogState
    from seavoice.realtime.voice_agent import RealtimeVoiceAgent, VoiceAgentConfig

    last_status = {"text": ""}

    def on_change(snapshot) -> None:
        if snapshot.status_message != last_status["text"]:
            last_status["text"] = snapshot.status_message
            print(f"   [{snapshot.status_message}]")

    agent = RealtimeVoiceAgent(
        VoiceAgentConfig(simulated=True, simulated_step_delay_s=args.delay),
        on_change=on_change,
    )
    controller = await agent.start()
    try:
        if not await controller.wait_for_state(DialogState.LISTENING, DialogState.ERROR, timeout=10):
            print("❌ Simulated session did not start")
            return 1

        while True:
            try:
                line = await asyncio.to_thread(input, "\n🗣️  You: ")
            except EOFError:
                break
            line = line.strip()
            if line.lower() in ("quit", "exit", "bye"):
                break
            if line.lower() == "pause":
                await controller.toggle_pause()
                continue
            if not line:
                continue

            await agent.transport.say(line)
            await controller.wait_for_state(DialogState.AI_SPEAKING, DialogState.ERROR, timeout=10)
            await controller.wait_for_state(DialogState.LISTENING, DialogState.ERROR, timeout=60)
            print(f"🤖 Assistant: {controller.assistant_text}")
            if controller.dialog_state == DialogState.ERROR:
                print(f"❌ {controller.error_message}")
                return 1
    finally:
        await agent.stop()
        _print_turn_log(agent)
    return 0


def cmd_simulate(args: argparse.Namespace) -> int:
    """Run an offline conversation against the scripted transport."""
    print("\n🌊 SeaVoice simulation (type 'pause' to toggle pause, 'quit' to exit)")
    print("-" * 60)
    try:
        return asyncio.run(_simulate(args))
    except KeyboardInterrupt:
        print("\n\n👋 Simulation interrupted.")
        return 0


def cmd_serve_dev(args: argparse.Namespace) -> int:
    """Run the development bridge server."""
    import uvicorn

    from seavoice.devserver import create_app

    print(f"\n🛠️  Development bridge on http://{args.host}:{args.port}")
    uvicorn.run(create_app(step_delay_s=args.delay), host=args.host, port=args.port)
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all commands."""
    parser = argparse.ArgumentParser(
        prog="seavoice",
        description="Maritime safety voice assistant client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Check the backend:
    seavoice health

  Talk to the assistant:
    seavoice voice-chat --location "Key West, FL" --coord 24.55,-81.78

  Offline:
    seavoice simulate
    seavoice serve-dev
        """
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Health command
    health_parser = subparsers.add_parser(
        "health",
        help="Probe the session backend"
    )
    health_parser.set_defaults(func=cmd_health)

    # Session arguments shared by session and voice-chat
    def add_session_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--location", "-l",
            help="Human-readable location name"
        )
        sub.add_argument(
            "--coord",
            action="append",
            metavar="LAT,LON",
            help="Coordinate pair; repeat for a route"
        )
        sub.add_argument(
            "--conversation",
            help="Conversation id to resume"
        )

    # Session command
    session_parser = subparsers.add_parser(
        "session",
        help="Negotiate a session and print it"
    )
    add_session_args(session_parser)
    session_parser.set_defaults(func=cmd_session)

    # Voice chat command
    voice_parser = subparsers.add_parser(
        "voice-chat",
        help="Start a hands-free voice conversation"
    )
    add_session_args(voice_parser)
    voice_parser.set_defaults(func=cmd_voice_chat)

    # Simulate command
    simulate_parser = subparsers.add_parser(
        "simulate",
        help="Run an offline scripted conversation"
    )
    simulate_parser.add_argument(
        "--delay",
        type=float,
        default=0.05,
        help="Seconds between scripted words (default: 0.05)"
    )
    simulate_parser.set_defaults(func=cmd_simulate)

    # Development server command
    serve_parser = subparsers.add_parser(
        "serve-dev",
        help="Run the local development bridge server"
    )
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", "-p", type=int, default=8000, help="Port (default: 8000)")
    serve_parser.add_argument(
        "--delay",
        type=float,
        default=0.05,
        help="Seconds between reply words (default: 0.05)"
    )
    serve_parser.set_defaults(func=cmd_serve_dev)

    return parser


def main() -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    init_logging("DEBUG" if args.verbose else None)

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
