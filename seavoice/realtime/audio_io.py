"""
Audio I/O Module

Microphone capture and speaker playback for the voice session:
- Fixed-size PCM capture frames (16-bit signed, mono, 24 kHz)
- Jitter-absorbing playback buffer with an atomic stop for barge-in
- Advisory signal level for visualization

The adapter knows nothing about the protocol. Audio-thread callbacks are
handed to the asyncio loop; the conversation controller is the only consumer.
The PortAudio implementation lives in device_audio.
"""

import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Optional

import numpy as np

from seavoice.logger import get_logger

from .errors import VoiceError

logger = get_logger(__name__)


class AudioFormat:
    """PCM format fixed by the upstream contract."""
    SAMPLE_RATE = 24000
    CHANNELS = 1
    SAMPLE_WIDTH = 2  # int16
    DTYPE = "int16"
    BYTES_PER_MS = SAMPLE_RATE * CHANNELS * SAMPLE_WIDTH // 1000  # 48


def bytes_to_ms(num_bytes: int) -> int:
    """Convert a PCM byte count to whole milliseconds."""
    return num_bytes // AudioFormat.BYTES_PER_MS


def ms_to_bytes(ms: int) -> int:
    """Convert milliseconds to a PCM byte count."""
    return ms * AudioFormat.BYTES_PER_MS


@dataclass(frozen=True)
class AudioChunk:
    """
    Captured PCM frame.

    Attributes:
        data: Raw little-endian int16 samples
        offset: Byte offset of this frame in the capture run
        timestamp: Capture time
    """
    data: bytes
    offset: int = 0
    timestamp: float = field(default_factory=time.time)

    @property
    def duration_ms(self) -> int:
        return bytes_to_ms(len(self.data))


def compute_level(pcm: bytes) -> float:
    """
    Normalized signal level of a PCM frame.

    RMS in dBFS mapped linearly from [-60, 0] dB to [0.0, 1.0].
    """
    if len(pcm) < AudioFormat.SAMPLE_WIDTH:
        return 0.0

    usable = len(pcm) - len(pcm) % AudioFormat.SAMPLE_WIDTH
    samples = np.frombuffer(pcm[:usable], dtype=np.int16).astype(np.float32) / 32768.0
    rms = float(np.sqrt(np.mean(samples * samples)))
    if rms <= 0.0:
        return 0.0

    db = 20.0 * np.log10(rms)
    return float(min(1.0, max(0.0, (db + 60.0) / 60.0)))


class PlaybackBuffer:
    """
    Thread-safe playback jitter buffer.

    Audible output starts only once `start_threshold` bytes are buffered (or
    `end_of_stream()` is called), then drains continuously. `stop()` halts and
    discards atomically, so a half-drained buffer never resumes.

    The drained callback fires once per playback run, from the reading
    thread, when the buffer empties after playing.
    """

    def __init__(
        self,
        start_threshold: int = ms_to_bytes(50),
        on_drained: Optional[Callable[[], None]] = None,
    ):
        self.start_threshold = start_threshold
        self._on_drained = on_drained

        self._lock = threading.Lock()
        self._chunks: Deque[bytes] = deque()
        self._buffered = 0
        self._bytes_played = 0
        self._playing = False

    def set_drained_callback(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_drained = callback

    def enqueue(self, data: bytes) -> None:
        if not data:
            return
        with self._lock:
            self._chunks.append(data)
            self._buffered += len(data)
            if not self._playing and self._buffered >= self.start_threshold:
                self._playing = True

    def end_of_stream(self) -> None:
        """No more audio is expected: play the tail even below the threshold."""
        fire = False
        with self._lock:
            if self._buffered > 0:
                self._playing = True
            elif not self._playing:
                fire = True
        if fire:
            self._fire_drained()

    def read(self, size: int) -> bytes:
        """
        Take up to `size` bytes for the output device.

        Always returns exactly `size` bytes; the remainder is silence.
        """
        drained = False
        with self._lock:
            if not self._playing:
                return b"\x00" * size

            out = bytearray()
            while self._chunks and len(out) < size:
                chunk = self._chunks[0]
                take = min(size - len(out), len(chunk))
                out += chunk[:take]
                if take < len(chunk):
                    self._chunks[0] = chunk[take:]
                else:
                    self._chunks.popleft()

            self._buffered -= len(out)
            self._bytes_played += len(out)
            if self._buffered == 0:
                self._playing = False
                drained = True

        if drained:
            self._fire_drained()
        if len(out) < size:
            out += b"\x00" * (size - len(out))
        return bytes(out)

    def stop(self) -> int:
        """
        Halt playback and discard everything buffered.

        Returns:
            Bytes actually played since the previous stop
        """
        with self._lock:
            played = self._bytes_played
            self._chunks.clear()
            self._buffered = 0
            self._bytes_played = 0
            self._playing = False
        return played

    def _fire_drained(self) -> None:
        callback = self._on_drained
        if callback is not None:
            callback()

    @property
    def bytes_played(self) -> int:
        with self._lock:
            return self._bytes_played

    @property
    def buffered_bytes(self) -> int:
        with self._lock:
            return self._buffered

    @property
    def buffered_ms(self) -> int:
        return bytes_to_ms(self.buffered_bytes)

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self._playing


ChunkCallback = Callable[[AudioChunk], None]
ErrorCallback = Callable[[VoiceError], None]


class AudioAdapter(ABC):
    """
    Capture and playback interface used by the conversation controller.

    Callbacks passed in are always invoked on the event loop thread.
    """

    @abstractmethod
    def start_capture(
        self,
        on_chunk: ChunkCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> bool:
        """
        Start microphone capture.

        Returns:
            False if the device could not be opened or permission is denied
        """

    @abstractmethod
    def stop_capture(self) -> None:
        """Stop microphone capture. Safe to call when not capturing."""

    @abstractmethod
    def enqueue_playback(self, data: bytes) -> None:
        """Queue PCM audio for playback."""

    @abstractmethod
    def end_of_stream(self) -> None:
        """Play out the buffered tail; signal drained if nothing is buffered."""

    @abstractmethod
    def stop_playback(self) -> int:
        """Discard unplayed audio immediately and return bytes actually played."""

    @abstractmethod
    def set_drained_callback(self, callback: Optional[Callable[[], None]]) -> None:
        """Register the callback fired when buffered playback has drained."""

    @property
    @abstractmethod
    def current_level(self) -> float:
        """Latest normalized input level (0.0 - 1.0)."""

    @property
    @abstractmethod
    def is_capturing(self) -> bool:
        ...

    @property
    @abstractmethod
    def is_playing(self) -> bool:
        """Audio is queued or being played out."""

    def close(self) -> None:
        """Release devices."""
        self.stop_capture()
        self.stop_playback()

