"""
Configuration Management Module

This module handles all application configuration using environment variables
with sensible defaults. It follows the 12-factor app methodology for configuration.

Usage:
    from seavoice.config import settings
    print(settings.backend.base_url)

Environment variables are loaded from .env file (if present) and can be
overridden by system environment variables.

The numeric voice defaults (VAD threshold, silence duration, padding, backoff)
are product-tuning values. The realtime core never reads this module directly;
the composition root passes these sections into each component.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from seavoice.prompts import DEFAULT_SYSTEM_PROMPT, MARITIME_SAFETY_PROMPT

# Load environment variables from .env file
# This should be called before accessing any environment variables
load_dotenv()


def get_env(key: str, default: str = "", required: bool = False) -> str:
    """
    Get an environment variable with optional default and validation.

    Args:
        key: The environment variable name
        default: Default value if not set
        required: If True, raises ValueError when not set

    Returns:
        The environment variable value or default

    Raises:
        ValueError: If required=True and the variable is not set
    """
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable '{key}' is not set")
    return value


def get_env_int(key: str, default: int) -> int:
    """Get an environment variable as integer."""
    return int(get_env(key, str(default)))


def get_env_float(key: str, default: float) -> float:
    """Get an environment variable as float."""
    return float(get_env(key, str(default)))


def get_env_bool(key: str, default: bool) -> bool:
    """Get an environment variable as boolean."""
    value = get_env(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


# Voices accepted by the upstream realtime provider
VOICE_OPTIONS = (
    "alloy",
    "ash",
    "ballad",
    "coral",
    "echo",
    "fable",
    "nova",
    "onyx",
    "sage",
    "shimmer",
    "verse",
)

REALTIME_PROTOCOLS = ("backend", "openai")


@dataclass
class BackendConfig:
    """
    Session backend configuration.

    Attributes:
        base_url: HTTP base address of the session backend
        auth_token: User token forwarded to the backend for external APIs
        user_location: Default location name sent with each negotiation
        health_timeout_s: Timeout for the liveness probe
        session_timeout_s: Timeout for the session-creation request
        health_check_enabled: Probe /health before negotiating
        preload_weather: Ask the backend to preload weather into the session
    """
    base_url: str = field(
        default_factory=lambda: get_env("BACKEND_URL", "http://127.0.0.1:8000").rstrip("/")
    )
    auth_token: Optional[str] = field(default_factory=lambda: get_env("AUTH_TOKEN") or None)
    user_location: Optional[str] = field(default_factory=lambda: get_env("USER_LOCATION") or None)
    health_timeout_s: float = field(default_factory=lambda: get_env_float("HEALTH_TIMEOUT_S", 5.0))
    session_timeout_s: float = field(default_factory=lambda: get_env_float("SESSION_TIMEOUT_S", 10.0))
    health_check_enabled: bool = field(default_factory=lambda: get_env_bool("HEALTH_CHECK_ENABLED", True))
    preload_weather: bool = field(default_factory=lambda: get_env_bool("PRELOAD_WEATHER", True))

    def validate(self) -> bool:
        """Validate backend settings."""
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError("BACKEND_URL must start with http:// or https://")
        return True


@dataclass
class RealtimeConfig:
    """
    Realtime transport configuration.

    Attributes:
        protocol: Wire vocabulary spoken on the stream ("backend" or "openai")
        connect_timeout_s: Websocket handshake timeout
        config_ack_timeout_s: Bounded wait for the configuration acknowledgement
        reconnect_max_attempts: Automatic reconnect attempts after an unexpected drop
        reconnect_base_delay_s: Delay multiplier; attempt N waits N * base seconds
    """
    protocol: str = field(default_factory=lambda: get_env("REALTIME_PROTOCOL", "backend"))
    connect_timeout_s: float = field(default_factory=lambda: get_env_float("CONNECT_TIMEOUT_S", 10.0))
    config_ack_timeout_s: float = field(default_factory=lambda: get_env_float("CONFIG_ACK_TIMEOUT_S", 5.0))
    reconnect_max_attempts: int = field(default_factory=lambda: get_env_int("RECONNECT_MAX_ATTEMPTS", 3))
    reconnect_base_delay_s: float = field(default_factory=lambda: get_env_float("RECONNECT_BASE_DELAY_S", 2.0))

    def validate(self) -> bool:
        """Validate realtime settings."""
        if self.protocol not in REALTIME_PROTOCOLS:
            raise ValueError(f"REALTIME_PROTOCOL must be one of {REALTIME_PROTOCOLS}")
        if self.reconnect_max_attempts < 0:
            raise ValueError("RECONNECT_MAX_ATTEMPTS cannot be negative")
        if self.config_ack_timeout_s <= 0:
            raise ValueError("CONFIG_ACK_TIMEOUT_S must be positive")
        return True


@dataclass
class VoiceSessionConfig:
    """
    Configuration sent to the upstream provider once the stream is ready.

    Attributes:
        system_prompt: Instructions defining the assistant's behavior
        voice: Voice identity for synthesized speech
        vad_threshold: Server VAD sensitivity (lower = more sensitive)
        prefix_padding_ms: Audio kept before detected speech start
        silence_duration_ms: Trailing silence that ends a user turn
        create_response: Let the server start a response when speech stops
        server_vad: Whether server-side turn detection is enabled at all
        temperature: Sampling temperature
        max_response_tokens: Upper bound on response length
        transcription_model: Model used for input audio transcription
    """
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    voice: str = field(default_factory=lambda: get_env("VOICE_NAME", "alloy"))
    vad_threshold: float = field(default_factory=lambda: get_env_float("VAD_THRESHOLD", 0.4))
    prefix_padding_ms: int = field(default_factory=lambda: get_env_int("VAD_PREFIX_PADDING_MS", 200))
    silence_duration_ms: int = field(default_factory=lambda: get_env_int("VAD_SILENCE_DURATION_MS", 400))
    create_response: bool = field(default_factory=lambda: get_env_bool("VAD_CREATE_RESPONSE", True))
    server_vad: bool = field(default_factory=lambda: get_env_bool("SERVER_VAD_ENABLED", True))
    temperature: float = field(default_factory=lambda: get_env_float("LLM_TEMPERATURE", 0.6))
    max_response_tokens: int = field(default_factory=lambda: get_env_int("MAX_RESPONSE_TOKENS", 1024))
    transcription_model: str = field(default_factory=lambda: get_env("TRANSCRIPTION_MODEL", "whisper-1"))

    @classmethod
    def maritime_safety(cls) -> "VoiceSessionConfig":
        """Configuration tuned for noisy boat environments."""
        return cls(system_prompt=MARITIME_SAFETY_PROMPT)

    @classmethod
    def default(cls) -> "VoiceSessionConfig":
        """Minimal general-purpose configuration."""
        return cls(
            system_prompt=DEFAULT_SYSTEM_PROMPT,
            voice="coral",
            vad_threshold=0.5,
            prefix_padding_ms=300,
            silence_duration_ms=500,
            temperature=0.7,
        )

    def validate(self) -> bool:
        """Validate voice session settings."""
        if self.voice not in VOICE_OPTIONS:
            raise ValueError(f"VOICE_NAME must be one of {VOICE_OPTIONS}")
        if not 0.0 <= self.vad_threshold <= 1.0:
            raise ValueError("VAD_THRESHOLD must be between 0.0 and 1.0")
        if self.prefix_padding_ms < 0 or self.silence_duration_ms < 0:
            raise ValueError("VAD padding and silence durations cannot be negative")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError("LLM_TEMPERATURE must be between 0.0 and 2.0")
        if self.max_response_tokens <= 0:
            raise ValueError("MAX_RESPONSE_TOKENS must be positive")
        return True


@dataclass
class AudioConfig:
    """
    Audio I/O configuration.

    The PCM format (24 kHz, mono, 16-bit) is fixed by the upstream contract
    and is not read from the environment.

    Attributes:
        sample_rate: Samples per second
        channels: Channel count
        sample_width: Bytes per sample
        chunk_ms: Capture frame duration
        playback_buffer_ms: Buffered audio required before playback starts
        input_device: Optional sounddevice input device name or index
        output_device: Optional sounddevice output device name or index
    """
    sample_rate: int = 24000
    channels: int = 1
    sample_width: int = 2
    chunk_ms: int = field(default_factory=lambda: get_env_int("AUDIO_CHUNK_MS", 100))
    playback_buffer_ms: int = field(default_factory=lambda: get_env_int("PLAYBACK_BUFFER_MS", 50))
    input_device: Optional[str] = field(default_factory=lambda: get_env("AUDIO_INPUT_DEVICE") or None)
    output_device: Optional[str] = field(default_factory=lambda: get_env("AUDIO_OUTPUT_DEVICE") or None)

    @property
    def bytes_per_ms(self) -> int:
        """PCM bytes per millisecond of audio."""
        return self.sample_rate * self.channels * self.sample_width // 1000

    @property
    def chunk_bytes(self) -> int:
        """Size of one capture frame in bytes."""
        return self.bytes_per_ms * self.chunk_ms

    def validate(self) -> bool:
        """Validate audio settings."""
        if self.chunk_ms <= 0:
            raise ValueError("AUDIO_CHUNK_MS must be positive")
        if self.playback_buffer_ms < 0:
            raise ValueError("PLAYBACK_BUFFER_MS cannot be negative")
        return True


@dataclass
class ConversationConfig:
    """
    Conversation state machine timing.

    Attributes:
        silence_timeout_ms: Quiet period after the last transcript update that ends a turn
        resume_delay_ms: Pause after the assistant finishes before capture restarts
        playback_drain_timeout_s: Longest wait for playback to drain after a response
    """
    silence_timeout_ms: int = field(default_factory=lambda: get_env_int("SILENCE_TIMEOUT_MS", 1500))
    resume_delay_ms: int = field(default_factory=lambda: get_env_int("RESUME_DELAY_MS", 300))
    playback_drain_timeout_s: float = field(
        default_factory=lambda: get_env_float("PLAYBACK_DRAIN_TIMEOUT_S", 30.0)
    )


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        file: Optional log file path
    """
    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE") or None)


@dataclass
class Settings:
    """
    Main settings container aggregating all configuration sections.

    This is the primary configuration interface for the application.
    Access via the singleton `settings` instance.

    Example:
        from seavoice.config import settings

        settings.validate_all()
        url = settings.backend.base_url
        timeout = settings.realtime.config_ack_timeout_s
    """
    backend: BackendConfig = field(default_factory=BackendConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    voice: VoiceSessionConfig = field(default_factory=VoiceSessionConfig.maritime_safety)
    audio: AudioConfig = field(default_factory=AudioConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Application-level settings
    app_env: str = field(default_factory=lambda: get_env("APP_ENV", "development"))

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    def validate_all(self) -> bool:
        """
        Validate all configuration sections.

        Returns:
            True if all validations pass

        Raises:
            ValueError: If any validation fails
        """
        self.backend.validate()
        self.realtime.validate()
        self.voice.validate()
        self.audio.validate()
        return True


# Singleton settings instance
# Import this in other modules: from seavoice.config import settings
settings = Settings()
