"""
Tests for Configuration Module

Tests the Settings and configuration management.
"""

import os
import pytest
from unittest.mock import patch


class TestGetEnv:
    """Tests for environment variable helpers."""

    def test_get_env_with_default(self):
        """Test getting env var with default."""
        from seavoice.config import get_env

        result = get_env("NONEXISTENT_VAR", "default_value")
        assert result == "default_value"

    def test_get_env_existing(self):
        """Test getting existing env var."""
        from seavoice.config import get_env

        with patch.dict(os.environ, {"TEST_VAR": "test_value"}):
            result = get_env("TEST_VAR")
            assert result == "test_value"

    def test_get_env_required_missing(self):
        """Test required env var raises error when missing."""
        from seavoice.config import get_env

        with pytest.raises(ValueError):
            get_env("DEFINITELY_NOT_SET", required=True)


class TestGetEnvTyped:
    """Tests for typed environment variable helpers."""

    def test_get_env_int(self):
        """Test getting int from env."""
        from seavoice.config import get_env_int

        with patch.dict(os.environ, {"INT_VAR": "42"}):
            result = get_env_int("INT_VAR", 0)
            assert result == 42
            assert isinstance(result, int)

    def test_get_env_float(self):
        """Test getting float from env."""
        from seavoice.config import get_env_float

        with patch.dict(os.environ, {"FLOAT_VAR": "3.14"}):
            result = get_env_float("FLOAT_VAR", 0.0)
            assert result == 3.14
            assert isinstance(result, float)

    def test_get_env_bool_true(self):
        """Test getting bool true from env."""
        from seavoice.config import get_env_bool

        for true_value in ["true", "True", "TRUE", "1", "yes", "on"]:
            with patch.dict(os.environ, {"BOOL_VAR": true_value}):
                assert get_env_bool("BOOL_VAR", False) is True

    def test_get_env_bool_false(self):
        """Test getting bool false from env."""
        from seavoice.config import get_env_bool

        for false_value in ["false", "False", "0", "no", "off"]:
            with patch.dict(os.environ, {"BOOL_VAR": false_value}):
                assert get_env_bool("BOOL_VAR", True) is False


class TestBackendConfig:
    """Tests for session backend configuration."""

    def test_base_url_from_env(self):
        """Trailing slashes are stripped from the backend address."""
        from seavoice.config import BackendConfig

        with patch.dict(os.environ, {"BACKEND_URL": "https://api.example.com/"}):
            config = BackendConfig()
            assert config.base_url == "https://api.example.com"
            assert config.validate() is True

    def test_invalid_scheme(self):
        from seavoice.config import BackendConfig

        config = BackendConfig(base_url="ftp://example.com")
        with pytest.raises(ValueError):
            config.validate()

    def test_empty_auth_token_is_none(self):
        """Anonymous sessions send no token."""
        from seavoice.config import BackendConfig

        with patch.dict(os.environ, {"AUTH_TOKEN": ""}):
            assert BackendConfig().auth_token is None


class TestRealtimeConfig:
    """Tests for realtime transport configuration."""

    def test_defaults(self):
        from seavoice.config import RealtimeConfig

        config = RealtimeConfig()
        assert config.protocol == "backend"
        assert config.connect_timeout_s == 10.0
        assert config.config_ack_timeout_s == 5.0
        assert config.reconnect_max_attempts == 3
        assert config.reconnect_base_delay_s == 2.0

    def test_unknown_protocol(self):
        from seavoice.config import RealtimeConfig

        with pytest.raises(ValueError):
            RealtimeConfig(protocol="sip").validate()


class TestVoiceSessionConfig:
    """Tests for the voice session configuration."""

    def test_maritime_defaults(self):
        """Noisy-environment tuning values."""
        from seavoice.config import VoiceSessionConfig
        from seavoice.prompts import MARITIME_SAFETY_PROMPT

        config = VoiceSessionConfig.maritime_safety()
        assert config.system_prompt == MARITIME_SAFETY_PROMPT
        assert config.vad_threshold == 0.4
        assert config.prefix_padding_ms == 200
        assert config.silence_duration_ms == 400
        assert config.create_response is True
        assert config.validate() is True

    def test_default_preset(self):
        from seavoice.config import VoiceSessionConfig

        config = VoiceSessionConfig.default()
        assert config.voice == "coral"
        assert config.silence_duration_ms == 500

    def test_invalid_voice(self):
        from seavoice.config import VoiceSessionConfig

        with pytest.raises(ValueError):
            VoiceSessionConfig(voice="robot").validate()

    def test_invalid_threshold(self):
        from seavoice.config import VoiceSessionConfig

        with pytest.raises(ValueError):
            VoiceSessionConfig(vad_threshold=1.5).validate()


class TestAudioConfig:
    """Tests for audio configuration."""

    def test_contract_format(self):
        """24 kHz mono 16-bit is 48 bytes per millisecond."""
        from seavoice.config import AudioConfig

        config = AudioConfig(chunk_ms=100)
        assert config.bytes_per_ms == 48
        assert config.chunk_bytes == 4800

    def test_invalid_chunk(self):
        from seavoice.config import AudioConfig

        with pytest.raises(ValueError):
            AudioConfig(chunk_ms=0).validate()


class TestSettings:
    """Tests for the main settings container."""

    def test_environment(self):
        from seavoice.config import Settings

        s = Settings()
        assert s.app_env == "test"
        assert s.is_development is False
        assert s.is_production is False

    def test_validate_all(self):
        from seavoice.config import Settings

        assert Settings().validate_all() is True

    def test_conversation_timings(self):
        from seavoice.config import ConversationConfig

        config = ConversationConfig()
        assert config.silence_timeout_ms == 1500
        assert config.resume_delay_ms == 300


class TestMessages:
    """Tests for user-facing message lookup."""

    def test_known_key(self):
        from seavoice.messages import msg

        assert msg("status.listening") == "Listening..."

    def test_parameters(self):
        from seavoice.messages import msg

        assert "503" in msg("error.negotiation_failed", status=503)

    def test_unknown_key_returns_key(self):
        from seavoice.messages import msg

        assert msg("nope.missing") == "nope.missing"
