"""
Sound Device Audio Module

Reference AudioAdapter on PortAudio (sounddevice) raw int16 streams.
Kept apart from audio_io so the realtime core imports without a PortAudio
library present; the composition root loads it only for real audio.
"""

import asyncio
from typing import Callable, Optional, Union

import sounddevice as sd

from seavoice.logger import get_logger

from .audio_io import (
    AudioAdapter,
    AudioChunk,
    AudioFormat,
    ChunkCallback,
    ErrorCallback,
    PlaybackBuffer,
    compute_level,
    ms_to_bytes,
)
from .errors import CaptureDeviceLost, PlaybackUnderrun

logger = get_logger(__name__)


DeviceSpec = Optional[Union[int, str]]


class SoundDeviceAudioAdapter(AudioAdapter):
    """
    Reference adapter on PortAudio raw streams.

    Features:
    - Raw int16 input stream delivering chunk_ms frames
    - Lazily opened output stream fed from a PlaybackBuffer
    - Device loss and an unusable speaker reported through on_error

    Usage:
        audio = SoundDeviceAudioAdapter(chunk_ms=100)
        if not audio.start_capture(on_chunk):
            ...  # permission or device failure
    """

    def __init__(
        self,
        chunk_ms: int = 100,
        playback_buffer_ms: int = 50,
        input_device: DeviceSpec = None,
        output_device: DeviceSpec = None,
    ):
        self._chunk_frames = AudioFormat.SAMPLE_RATE * chunk_ms // 1000
        self._input_device = _parse_device(input_device)
        self._output_device = _parse_device(output_device)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._input: Optional[sd.RawInputStream] = None
        self._output: Optional[sd.RawOutputStream] = None
        self._playback = PlaybackBuffer(start_threshold=ms_to_bytes(playback_buffer_ms))
        self._playback.set_drained_callback(self._on_playback_drained)
        self._drained_callback: Optional[Callable[[], None]] = None

        self._on_chunk: Optional[ChunkCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._capturing = False
        self._capture_offset = 0
        self._level = 0.0

    # ========================================================================
    # Capture
    # ========================================================================

    def start_capture(
        self,
        on_chunk: ChunkCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> bool:
        if self._capturing:
            return True

        self._loop = asyncio.get_running_loop()
        self._on_chunk = on_chunk
        self._on_error = on_error
        self._capture_offset = 0

        try:
            self._input = sd.RawInputStream(
                samplerate=AudioFormat.SAMPLE_RATE,
                channels=AudioFormat.CHANNELS,
                dtype=AudioFormat.DTYPE,
                blocksize=self._chunk_frames,
                device=self._input_device,
                callback=self._input_callback,
                finished_callback=self._input_finished,
            )
            self._capturing = True
            self._input.start()
        except (sd.PortAudioError, ValueError, OSError) as e:
            logger.error(f"Failed to open microphone: {e}")
            self._capturing = False
            self._input = None
            return False

        logger.info("Microphone capture started")
        return True

    def stop_capture(self) -> None:
        if not self._capturing and self._input is None:
            return

        self._capturing = False
        stream, self._input = self._input, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError as e:
                logger.debug(f"Error closing input stream: {e}")
        self._level = 0.0
        logger.debug("Microphone capture stopped")

    def _input_callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug(f"Input status: {status}")
        if not self._capturing or self._loop is None:
            return

        data = bytes(indata)
        chunk = AudioChunk(data=data, offset=self._capture_offset)
        self._capture_offset += len(data)
        self._level = compute_level(data)

        on_chunk = self._on_chunk
        if on_chunk is not None:
            self._loop.call_soon_threadsafe(on_chunk, chunk)

    def _input_finished(self) -> None:
        # Reached only when the stream ends without stop_capture()
        if not self._capturing or self._loop is None:
            return
        self._capturing = False
        logger.error("Microphone stream ended unexpectedly")
        on_error = self._on_error
        if on_error is not None:
            self._loop.call_soon_threadsafe(on_error, CaptureDeviceLost("Input stream finished"))

    # ========================================================================
    # Playback
    # ========================================================================

    def enqueue_playback(self, data: bytes) -> None:
        if not self._ensure_output():
            return
        self._playback.enqueue(data)

    def end_of_stream(self) -> None:
        self._playback.end_of_stream()

    def stop_playback(self) -> int:
        return self._playback.stop()

    def set_drained_callback(self, callback: Optional[Callable[[], None]]) -> None:
        self._drained_callback = callback

    def _ensure_output(self) -> bool:
        if self._output is not None:
            return True
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        try:
            self._output = sd.RawOutputStream(
                samplerate=AudioFormat.SAMPLE_RATE,
                channels=AudioFormat.CHANNELS,
                dtype=AudioFormat.DTYPE,
                blocksize=self._chunk_frames // 2,
                device=self._output_device,
                callback=self._output_callback,
            )
            self._output.start()
        except (sd.PortAudioError, ValueError, OSError) as e:
            logger.error(f"Failed to open speaker: {e}")
            self._output = None
            on_error = self._on_error
            if on_error is not None:
                on_error(PlaybackUnderrun(f"Output stream unavailable: {e}"))
            return False
        return True

    def _output_callback(self, outdata, frames, time_info, status) -> None:
        if status.output_underflow and self._playback.buffered_bytes > 0:
            logger.warning("Output underflow with audio still buffered")
        outdata[:] = self._playback.read(len(outdata))

    def _on_playback_drained(self) -> None:
        callback = self._drained_callback
        if callback is None or self._loop is None:
            return
        # end_of_stream() may fire this on the loop thread itself
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            callback()
        else:
            self._loop.call_soon_threadsafe(callback)

    # ========================================================================
    # State
    # ========================================================================

    @property
    def current_level(self) -> float:
        return self._level

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    @property
    def is_playing(self) -> bool:
        return self._playback.is_playing or self._playback.buffered_bytes > 0

    def close(self) -> None:
        self.stop_capture()
        self.stop_playback()
        stream, self._output = self._output, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError as e:
                logger.debug(f"Error closing output stream: {e}")


def _parse_device(device: DeviceSpec) -> DeviceSpec:
    """Accept device indices given as strings from the environment."""
    if isinstance(device, str) and device.isdigit():
        return int(device)
    return device
