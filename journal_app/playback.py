"""PCM16 decoding and speech playback."""

import asyncio
import logging
import wave
from pathlib import Path

import numpy as np
import sounddevice

from journal_app._types import AudioSamples

logger = logging.getLogger(__name__)

TTS_SAMPLE_RATE = 24000
TTS_CHANNELS = 1


def decode_pcm16(data: bytes, sample_rate: int, channel_count: int) -> AudioSamples:
    """Decode interleaved signed 16-bit little-endian PCM.

    Each sample is divided by 32768 so values fall in [-1.0, 1.0). A trailing
    partial frame is dropped.

    Args:
        data: Raw PCM bytes
        sample_rate: Sample rate in Hz
        channel_count: Number of interleaved channels

    Returns:
        AudioSamples with one float32 array per channel
    """
    if sample_rate <= 0:
        raise ValueError("sample_rate must be positive")
    if channel_count <= 0:
        raise ValueError("channel_count must be positive")

    frame_count = len(data) // 2 // channel_count
    usable = frame_count * channel_count * 2
    if usable != len(data):
        logger.debug("Dropping %d trailing bytes of partial frame", len(data) - usable)

    pcm = np.frombuffer(data[:usable], dtype="<i2").reshape(frame_count, channel_count)
    channels = [
        pcm[:, channel].astype(np.float32) / np.float32(32768.0)
        for channel in range(channel_count)
    ]
    return AudioSamples(sample_rate=sample_rate, channels=channels)


def load_wav(path: Path) -> AudioSamples:
    """Read a 16-bit PCM WAV file into samples.

    Raises:
        RuntimeError: If the file is missing or not 16-bit PCM WAV
    """
    try:
        with wave.open(str(path), "rb") as wf:
            if wf.getsampwidth() != 2:
                raise RuntimeError(f"Unsupported sample width in {path}: {wf.getsampwidth()}")
            sample_rate = wf.getframerate()
            channels = wf.getnchannels()
            data = wf.readframes(wf.getnframes())
    except (OSError, EOFError, wave.Error) as e:
        raise RuntimeError(f"Cannot read recording {path}: {e}") from e
    return decode_pcm16(data, sample_rate, channels)


def encode_pcm16(samples: np.ndarray) -> bytes:
    """Quantize float samples in [-1, 1] to little-endian PCM16 bytes."""
    scaled = np.clip(np.round(np.asarray(samples, dtype=np.float64) * 32768.0), -32768, 32767)
    return scaled.astype("<i2").tobytes()


class SpeechPlayer:
    """Plays synthesized speech on the default output device.

    Only one clip plays at a time; overlapping requests are refused.
    """

    def __init__(self, device: int | str | None = None):
        self.device = device
        self._active = False

    @property
    def is_playing(self) -> bool:
        return self._active

    async def play(self, samples: AudioSamples) -> None:
        """Play samples and return once playback has finished.

        Raises:
            RuntimeError: If a clip is already playing
        """
        if self._active:
            raise RuntimeError("Speech playback already in progress")

        self._active = True
        try:
            logger.info(
                "Playing %.2fs of audio at %d Hz", samples.duration, samples.sample_rate
            )
            await asyncio.get_running_loop().run_in_executor(None, self._play_sync, samples)
        finally:
            self._active = False

    def _play_sync(self, samples: AudioSamples) -> None:
        sounddevice.play(samples.interleaved(), samplerate=samples.sample_rate, device=self.device)
        sounddevice.wait()
