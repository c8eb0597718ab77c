"""
Test Package Initialization

This package contains the unit and scenario tests for the SeaVoice
voice client.

Test Structure:
- test_config.py: Settings and message catalog tests
- test_realtime.py: Event vocabulary, wire codecs, transcripts and timers
- test_session.py: Health probe and session negotiation tests
- test_audio_io.py: PCM helpers, playback buffer and in-memory audio
- test_transport.py: Websocket transport, cancel guard and reconnect tests
- test_conversation_controller.py: Dialog state machine scenarios
- test_devserver.py: Development bridge server tests
- test_voice_agent.py: Agent wiring and CLI parser tests

Run tests with:
    pytest tests/ -v
"""
