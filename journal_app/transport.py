"""Transfer encoding of captured audio for JSON request payloads."""

import base64
import binascii
import io
import logging
import mimetypes
import wave
from pathlib import Path

from journal_app._types import PCM_MIME_TYPE, EncodedAudio

logger = logging.getLogger(__name__)

WAV_MIME_TYPE = "audio/wav"

# Names mimetypes does not know, or reports inconsistently across platforms.
_EXTENSION_MIME_TYPES = {
    ".wav": WAV_MIME_TYPE,
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".opus": "audio/ogg",
    ".m4a": "audio/mp4",
    ".flac": "audio/flac",
    ".mp3": "audio/mpeg",
    ".aac": "audio/aac",
}


def encode(audio: EncodedAudio) -> str:
    """Base64-encode the audio bytes."""
    return base64.b64encode(audio.data).decode("ascii")


def decode(text: str) -> bytes:
    """Inverse of ``encode``.

    Raises:
        ValueError: If the text is not valid base64
    """
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def to_container(audio: EncodedAudio) -> EncodedAudio:
    """Wrap raw PCM16 captures in a WAV header; other audio passes through."""
    if audio.mime_type != PCM_MIME_TYPE:
        return audio
    if not audio.sample_rate or not audio.channels:
        raise ValueError("Raw PCM audio requires sample_rate and channels")

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(audio.channels)
        wav_file.setsampwidth(2)
        wav_file.setframerate(audio.sample_rate)
        wav_file.writeframes(audio.data)

    return EncodedAudio(
        data=buffer.getvalue(),
        mime_type=WAV_MIME_TYPE,
        sample_rate=audio.sample_rate,
        channels=audio.channels,
    )


def inline_audio_part(audio: EncodedAudio) -> dict:
    """Build the inline-data request part for a piece of audio."""
    payload = to_container(audio)
    logger.debug(
        "Encoding %d bytes of %s for transfer", len(payload.data), payload.mime_type
    )
    return {"inlineData": {"mimeType": payload.mime_type, "data": encode(payload)}}


def guess_mime_type(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in _EXTENSION_MIME_TYPES:
        return _EXTENSION_MIME_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "audio/webm"


def load_audio_file(path: Path) -> EncodedAudio:
    """Read a recording from disk.

    Raises:
        RuntimeError: If the file is missing or empty
    """
    path = Path(path)
    if not path.exists():
        raise RuntimeError(f"Audio file not found: {path}")

    data = path.read_bytes()
    if not data:
        raise RuntimeError(f"Audio file is empty: {path}")

    mime_type = guess_mime_type(path)
    logger.info("Loaded %s (%d bytes, %s)", path, len(data), mime_type)
    return EncodedAudio(data=data, mime_type=mime_type)


def save_session_audio(audio: EncodedAudio, directory: Path, name: str) -> Path:
    """Write a session recording so it can be replayed during this run."""
    payload = to_container(audio)
    extension = mimetypes.guess_extension(payload.mime_type) or ".bin"
    if payload.mime_type == WAV_MIME_TYPE:
        extension = ".wav"

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / f"{name}{extension}"
    target.write_bytes(payload.data)
    logger.debug("Session audio written to %s", target)
    return target
