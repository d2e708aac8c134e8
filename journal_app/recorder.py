"""Microphone capture with live spectrum analysis."""

import asyncio
import logging
import threading
from enum import Enum
from typing import AsyncIterator, Protocol

import numpy as np
import sounddevice

from journal_app._types import PCM_MIME_TYPE, EncodedAudio, RecordingSession
from journal_app.errors import DeviceUnavailable

logger = logging.getLogger(__name__)


class _RecorderState(Enum):
    """Internal recorder state machine."""

    IDLE = "idle"
    RECORDING = "recording"


class CaptureTap(Protocol):
    """Read-only consumer of raw capture blocks.

    ``feed`` is called on the audio thread with an int16 array shaped
    (frames, channels). Implementations must not mutate it.
    """

    def feed(self, block: np.ndarray) -> None: ...


class ChunkAccumulator:
    """Appends PCM16 blocks to a session in arrival order."""

    def __init__(self, session: RecordingSession):
        self.session = session

    def feed(self, block: np.ndarray) -> None:
        data = block.tobytes()
        if not data:
            return
        self.session.chunks.append(data)
        self.session.frames += len(block)


class SpectrumAnalyser:
    """Byte frequency magnitudes over the most recent window of samples.

    Mirrors the usual browser analyser behaviour: Blackman window, temporal
    smoothing, and decibels in [min_db, max_db] mapped linearly to 0-255.
    """

    def __init__(
        self,
        fft_size: int = 256,
        smoothing: float = 0.8,
        min_db: float = -100.0,
        max_db: float = -30.0,
    ):
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError("fft_size must be a power of two >= 32")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError("smoothing must be in [0, 1)")
        if min_db >= max_db:
            raise ValueError("min_db must be lower than max_db")

        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self._window = np.blackman(fft_size)
        self._lock = threading.Lock()
        self.reset()

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def reset(self) -> None:
        with self._lock:
            self._samples = np.zeros(self.fft_size, dtype=np.float32)
        self._smoothed = np.zeros(self.bin_count)

    def feed(self, block: np.ndarray) -> None:
        mono = block.astype(np.float32)
        if mono.ndim > 1:
            mono = mono.mean(axis=1)
        if np.issubdtype(block.dtype, np.integer):
            mono /= 32768.0

        with self._lock:
            if len(mono) >= self.fft_size:
                self._samples = mono[-self.fft_size :].copy()
            else:
                self._samples = np.concatenate([self._samples[len(mono) :], mono])

    def frequency_frame(self) -> np.ndarray:
        """Compute one frame of ``bin_count`` uint8 magnitudes."""
        with self._lock:
            samples = self._samples.copy()

        spectrum = np.abs(np.fft.rfft(samples * self._window))[: self.bin_count]
        spectrum /= self.fft_size
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * spectrum

        db = 20.0 * np.log10(np.maximum(self._smoothed, 1e-12))
        scaled = 255.0 * (db - self.min_db) / (self.max_db - self.min_db)
        return np.clip(scaled, 0, 255).astype(np.uint8)


class AudioRecorder:
    """Owns the microphone stream for one recording session at a time.

    The raw stream is fanned out to independent taps: the session chunk
    accumulator, the spectrum analyser, and any registered extra taps.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_size: int = 1024,
        device: int | str | None = None,
        fft_size: int = 256,
    ):
        """Initialize audio recorder.

        Args:
            sample_rate: Sample rate in Hz
            channels: Number of channels
            chunk_size: Frames per callback block
            device: Audio device index or name (None for default)
            fft_size: Transform window of the spectrum analyser
        """
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if channels not in (1, 2):
            raise ValueError("channels must be 1 or 2")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_size = chunk_size
        self.device = device
        self.analyser = SpectrumAnalyser(fft_size=fft_size)

        self._state = _RecorderState.IDLE
        self._session: RecordingSession | None = None
        self._accumulator: ChunkAccumulator | None = None
        self._taps: list[CaptureTap] = []

        logger.info(
            "AudioRecorder initialized: %d Hz, %d channels, device=%s",
            sample_rate,
            channels,
            device if device is not None else "default",
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def is_recording(self) -> bool:
        return self._state == _RecorderState.RECORDING

    @property
    def session(self) -> RecordingSession | None:
        return self._session

    def add_tap(self, tap: CaptureTap) -> None:
        self._taps.append(tap)

    def remove_tap(self, tap: CaptureTap) -> None:
        if tap in self._taps:
            self._taps.remove(tap)

    def start(self) -> RecordingSession:
        """Acquire the microphone and begin a new session.

        Returns:
            The live RecordingSession handle

        Raises:
            RuntimeError: If a session is already active
            DeviceUnavailable: If the microphone cannot be opened
        """
        if self._state != _RecorderState.IDLE:
            raise RuntimeError(
                f"Cannot start recording: recorder in {self._state.value} state"
            )

        resolved_device = resolve_input_device(self.device)
        session = RecordingSession(sample_rate=self.sample_rate, channels=self.channels)
        self.analyser.reset()
        self._session = session
        self._accumulator = ChunkAccumulator(session)

        stream = None
        try:
            stream = sounddevice.InputStream(
                device=resolved_device,
                samplerate=self.sample_rate,
                channels=self.channels,
                blocksize=self.chunk_size,
                callback=self._callback,
                dtype="int16",
            )
            session.stream = stream
            stream.start()
        except Exception as e:
            logger.error("Failed to open microphone: %s", e)
            if stream is not None:
                _close_stream(stream)
            self._release_session()
            raise DeviceUnavailable(f"Microphone unavailable: {e}") from e

        self._state = _RecorderState.RECORDING
        logger.info(
            "Recording session %s started (sample_rate=%d, channels=%d, device=%s)",
            session.session_id,
            self.sample_rate,
            self.channels,
            resolved_device if resolved_device is not None else "default",
        )
        return session

    def stop(self, session: RecordingSession | None = None) -> EncodedAudio | None:
        """Stop the active session and return its audio.

        Stopping without an active session, or with a handle that is not the
        active one, is a no-op.

        Returns:
            EncodedAudio holding the concatenated chunks (empty if no block
            arrived), or None
        """
        active = self._session
        if self._state != _RecorderState.RECORDING or active is None:
            logger.warning("stop() called while not recording, ignoring")
            return None
        if session is not None and session is not active:
            logger.warning("stop() called with stale session %s, ignoring", session.session_id)
            return None

        try:
            _close_stream(active.stream)
        finally:
            self._release_session()

        audio = EncodedAudio(
            data=b"".join(active.chunks),
            mime_type=PCM_MIME_TYPE,
            sample_rate=self.sample_rate,
            channels=self.channels,
        )
        logger.info(
            "Recording session %s stopped: %d chunks, %d bytes, %.1fs",
            active.session_id,
            len(active.chunks),
            len(audio.data),
            active.elapsed,
        )
        return audio

    def close(self) -> None:
        """Release the stream and discard any active session."""
        if self._session is not None and self._session.stream is not None:
            _close_stream(self._session.stream)
        self._release_session()

    async def frequency_frames(self, refresh_hz: float = 30.0) -> AsyncIterator[np.ndarray]:
        """Yield one spectrum frame per refresh tick while recording."""
        interval = 1.0 / refresh_hz
        while self.is_recording:
            yield self.analyser.frequency_frame()
            await asyncio.sleep(interval)

    def _release_session(self) -> None:
        if self._session is not None:
            self._session.stream = None
        self._session = None
        self._accumulator = None
        self._state = _RecorderState.IDLE

    def _callback(self, indata, frames, time_info, status):
        """Stream callback invoked on the audio thread."""
        if status:
            logger.warning("Audio stream status: %s", status)

        accumulator = self._accumulator
        if accumulator is None:
            return

        block = indata.copy()
        accumulator.feed(block)
        self.analyser.feed(block)
        for tap in list(self._taps):
            try:
                tap.feed(block)
            except Exception as e:
                logger.warning("Capture tap %r failed: %s", tap, e)


def _close_stream(stream) -> None:
    """Stop and close a stream; the device is released even if stop fails."""
    try:
        stream.stop()
    except Exception as e:
        logger.warning("Error stopping stream: %s", e)
    try:
        stream.close()
    except Exception as e:
        logger.warning("Error closing stream: %s", e)


def resolve_input_device(selection: int | str | None) -> int | None:
    """Resolve a configured device index or name to a sounddevice index.

    Exact name matches win over partial ones; unknown names fall back to the
    default input.
    """
    if selection is None or isinstance(selection, int):
        return selection

    try:
        device_list = sounddevice.query_devices()
        if isinstance(device_list, dict):
            device_list = [device_list]
    except Exception as e:
        logger.warning(
            "Unable to enumerate audio devices for '%s': %s; using default", selection, e
        )
        return None

    target = selection.strip().lower()
    partial_match: int | None = None
    available: list[str] = []

    for idx, dev_info in enumerate(device_list):
        if dev_info.get("max_input_channels", 0) <= 0:
            continue

        name = dev_info.get("name", f"Device {idx}")
        available.append(f"[{idx}] {name}")
        normalized = name.strip().lower()
        if normalized == target:
            logger.debug("Resolved audio device '%s' to index %d", selection, idx)
            return idx
        if partial_match is None and target in normalized:
            partial_match = idx

    if partial_match is not None:
        logger.debug("Resolved audio device '%s' to index %d (partial)", selection, partial_match)
        return partial_match

    logger.warning(
        "Audio device '%s' not found. Using default input. Available devices: %s",
        selection,
        "; ".join(available) if available else "none",
    )
    return None
