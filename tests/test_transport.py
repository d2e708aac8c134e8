"""Tests for audio transfer encoding."""

import base64
import io
import wave
from pathlib import Path

import pytest

from journal_app import transport
from journal_app._types import PCM_MIME_TYPE, EncodedAudio


class TestBase64:
    """Tests for encode/decode."""

    @pytest.mark.parametrize("size", [0, 1, 2, 3, 1_000_003])
    def test_decode_inverts_encode(self, size):
        """Test decode(encode(b)) == b for empty and large buffers."""
        data = bytes(i % 251 for i in range(size))
        audio = EncodedAudio(data, "audio/webm")
        assert transport.decode(transport.encode(audio)) == data

    def test_encode_is_standard_base64(self):
        """Test the encoding matches standard base64."""
        audio = EncodedAudio(b"\xff\x00abc", "audio/webm")
        assert transport.encode(audio) == base64.b64encode(b"\xff\x00abc").decode()

    def test_decode_rejects_garbage(self):
        """Test invalid base64 raises ValueError."""
        with pytest.raises(ValueError, match="Invalid base64"):
            transport.decode("not base64!!")


class TestContainer:
    """Tests for PCM container wrapping."""

    def test_pcm_wrapped_in_wav(self):
        """Test raw PCM gains a WAV header with the same frames."""
        pcm = b"\x01\x00\x02\x00" * 100
        audio = EncodedAudio(pcm, PCM_MIME_TYPE, sample_rate=16000, channels=1)

        wrapped = transport.to_container(audio)

        assert wrapped.mime_type == transport.WAV_MIME_TYPE
        with wave.open(io.BytesIO(wrapped.data), "rb") as wav_file:
            assert wav_file.getframerate() == 16000
            assert wav_file.getnchannels() == 1
            assert wav_file.getsampwidth() == 2
            assert wav_file.readframes(wav_file.getnframes()) == pcm

    def test_container_audio_unchanged(self):
        """Test already-containerized audio passes through."""
        audio = EncodedAudio(b"webm", "audio/webm")
        assert transport.to_container(audio) is audio

    def test_pcm_requires_format(self):
        """Test PCM without a sample rate cannot be wrapped."""
        with pytest.raises(ValueError):
            transport.to_container(EncodedAudio(b"\x00\x00", PCM_MIME_TYPE))

    def test_inline_part(self):
        """Test the inline request part carries MIME type and base64 data."""
        part = transport.inline_audio_part(EncodedAudio(b"abc", "audio/ogg"))
        assert part == {"inlineData": {"mimeType": "audio/ogg", "data": "YWJj"}}


class TestFiles:
    """Tests for loading and saving recordings."""

    def test_load_audio_file(self, tmp_path):
        """Test a file is loaded with a MIME type guessed from its name."""
        path = tmp_path / "entry.webm"
        path.write_bytes(b"\x1a\x45\xdf\xa3")

        audio = transport.load_audio_file(path)

        assert audio.mime_type == "audio/webm"
        assert audio.data == b"\x1a\x45\xdf\xa3"

    def test_load_missing_file(self, tmp_path):
        """Test a missing file raises RuntimeError."""
        with pytest.raises(RuntimeError, match="not found"):
            transport.load_audio_file(tmp_path / "missing.wav")

    def test_load_empty_file(self, tmp_path):
        """Test an empty file raises RuntimeError."""
        path = tmp_path / "empty.wav"
        path.write_bytes(b"")
        with pytest.raises(RuntimeError, match="empty"):
            transport.load_audio_file(path)

    def test_save_session_audio(self, tmp_path):
        """Test PCM captures are written as WAV files."""
        audio = EncodedAudio(b"\x00\x00" * 10, PCM_MIME_TYPE, sample_rate=16000, channels=1)
        target = transport.save_session_audio(audio, tmp_path / "sessions", "abc")
        assert target == Path(tmp_path / "sessions" / "abc.wav")
        assert target.read_bytes().startswith(b"RIFF")

    @pytest.mark.parametrize(
        "name,expected",
        [("a.wav", "audio/wav"), ("a.M4A", "audio/mp4"), ("a.opus", "audio/ogg")],
    )
    def test_guess_mime_type(self, name, expected):
        """Test common recording extensions map to MIME types."""
        assert transport.guess_mime_type(Path(name)) == expected
