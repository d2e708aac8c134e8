"""Tests for the Gemini REST client."""

import base64
import json

import httpx
import pytest

from journal_app._types import PCM_MIME_TYPE, EncodedAudio
from journal_app.errors import TransportFailure
from journal_app.gemini_client import (
    GeminiClient,
    build_analysis_body,
    build_exercise_body,
    build_speech_body,
    response_audio,
    response_text,
)
from journal_app.validator import ANALYSIS_SCHEMA


def _envelope(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _client(handler) -> GeminiClient:
    return GeminiClient(
        api_key="test-key",
        base_url="https://example.test/v1beta",
        transport=httpx.MockTransport(handler),
    )


class TestGeminiClientInit:
    """Tests for GeminiClient initialization."""

    def test_requires_api_key(self):
        """Test an empty API key is rejected."""
        with pytest.raises(ValueError, match="api_key is required"):
            GeminiClient(api_key="")

    def test_lazy_client(self):
        """Test no HTTP client exists before the first request."""
        client = GeminiClient(api_key="k")
        assert client._client is None


class TestGenerateContent:
    """Tests for generate_content."""

    @pytest.mark.asyncio
    async def test_posts_to_model_endpoint(self):
        """Test the request targets the model and carries the key header."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-goog-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_envelope(json.dumps({"ok": True})))

        client = _client(handler)
        try:
            envelope = await client.generate_content("gemini-2.5-flash", {"contents": []})
        finally:
            await client.shutdown()

        assert seen["url"] == "https://example.test/v1beta/models/gemini-2.5-flash:generateContent"
        assert seen["key"] == "test-key"
        assert seen["body"] == {"contents": []}
        assert response_text(envelope) == '{"ok": true}'

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,message",
        [
            (401, "Invalid Gemini API key"),
            (403, "Invalid Gemini API key"),
            (429, "rate limit"),
            (503, "server error"),
        ],
    )
    async def test_status_mapping(self, status, message):
        """Test HTTP errors map to TransportFailure with the status code."""
        client = _client(
            lambda request: httpx.Response(
                status, json={"error": {"message": "Quota exhausted for project"}}
            )
        )
        try:
            with pytest.raises(TransportFailure, match=message) as exc_info:
                await client.generate_content("m", {})
        finally:
            await client.shutdown()
        assert exc_info.value.status_code == status
        assert str(exc_info.value).endswith(": Quota exhausted for project")

    @pytest.mark.asyncio
    async def test_client_error_includes_detail(self):
        """Test other 4xx errors carry the service's message."""
        client = _client(
            lambda request: httpx.Response(400, json={"error": {"message": "Bad audio"}})
        )
        try:
            with pytest.raises(TransportFailure, match="Bad audio"):
                await client.generate_content("m", {})
        finally:
            await client.shutdown()

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Test connection failures become TransportFailure."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        try:
            with pytest.raises(TransportFailure, match="Network error"):
                await client.generate_content("m", {})
        finally:
            await client.shutdown()

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test timeouts become TransportFailure."""

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = _client(handler)
        try:
            with pytest.raises(TransportFailure, match="timed out"):
                await client.generate_content("m", {})
        finally:
            await client.shutdown()

    @pytest.mark.asyncio
    async def test_non_json_envelope(self):
        """Test a non-JSON 200 body is a transport failure."""
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        try:
            with pytest.raises(TransportFailure, match="not JSON"):
                await client.generate_content("m", {})
        finally:
            await client.shutdown()

    @pytest.mark.asyncio
    async def test_single_attempt(self):
        """Test failed requests are not retried."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        client = _client(handler)
        try:
            with pytest.raises(TransportFailure):
                await client.generate_content("m", {})
        finally:
            await client.shutdown()
        assert len(calls) == 1


class TestRequestBodies:
    """Tests for request body builders."""

    def test_analysis_body(self):
        """Test the analysis body carries audio, prompt and schema."""
        audio = EncodedAudio(b"\x00\x01" * 8, PCM_MIME_TYPE, sample_rate=16000, channels=1)
        body = build_analysis_body(audio)

        parts = body["contents"][0]["parts"]
        assert parts[0]["inlineData"]["mimeType"] == "audio/wav"
        assert base64.b64decode(parts[0]["inlineData"]["data"]).startswith(b"RIFF")
        assert "text" in parts[1]
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert body["generationConfig"]["responseSchema"] is ANALYSIS_SCHEMA
        assert "Journal Éloquent" in body["systemInstruction"]["parts"][0]["text"]

    def test_exercise_body_includes_goal(self):
        """Test the exercise body embeds the goal sentence."""
        goal = "Répétez: Je suis convaincu de mon succès."
        body = build_exercise_body(EncodedAudio(b"x", "audio/webm"), goal)
        assert goal in body["systemInstruction"]["parts"][0]["text"]

    def test_speech_body(self):
        """Test the speech body asks for audio with the chosen voice."""
        body = build_speech_body("Bonjour", "Kore")
        config = body["generationConfig"]
        assert config["responseModalities"] == ["AUDIO"]
        assert config["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]["voiceName"] == "Kore"
        assert body["contents"][0]["parts"] == [{"text": "Bonjour"}]


class TestResponseHelpers:
    """Tests for envelope parsing helpers."""

    def test_text_skips_thoughts(self):
        """Test thought parts are excluded from the payload text."""
        envelope = {
            "candidates": [
                {"content": {"parts": [{"text": "hmm", "thought": True}, {"text": "{}"}]}}
            ]
        }
        assert response_text(envelope) == "{}"

    def test_text_missing(self):
        """Test an envelope without candidates yields None."""
        assert response_text({"promptFeedback": {"blockReason": "SAFETY"}}) is None
        assert response_text({"candidates": [{"content": {"parts": []}}]}) is None

    def test_audio(self):
        """Test inline audio data is extracted."""
        envelope = {
            "candidates": [
                {"content": {"parts": [{"inlineData": {"mimeType": "audio/L16", "data": "AAA="}}]}}
            ]
        }
        assert response_audio(envelope) == "AAA="

    def test_audio_missing(self):
        """Test an envelope without inline data yields None."""
        assert response_audio(_envelope("text only")) is None
        assert response_audio({}) is None
