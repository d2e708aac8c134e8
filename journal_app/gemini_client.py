"""Async REST client for the Gemini ``generateContent`` endpoint."""

import asyncio
import logging
import time

import httpx

from journal_app._types import EncodedAudio
from journal_app.errors import TransportFailure
from journal_app.prompts import (
    ANALYSIS_PROMPT,
    ANALYSIS_SYSTEM_INSTRUCTION,
    EXERCISE_PROMPT,
    exercise_system_instruction,
)
from journal_app.transport import inline_audio_part
from journal_app.validator import ANALYSIS_SCHEMA, EXERCISE_FEEDBACK_SCHEMA

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiClient:
    """Thin wrapper around ``httpx.AsyncClient`` for one API key.

    The HTTP client is created lazily on the first request. Every call is a
    single round-trip: failures are mapped to TransportFailure and never
    retried here.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            api_key: Gemini API key
            base_url: API root, without trailing slash
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used to stub the service)
        """
        if not api_key:
            raise ValueError("api_key is required")

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        logger.info("GeminiClient initialized: base_url=%s, timeout=%.1fs", self.base_url, timeout)

    async def _ensure_client_initialized(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
                    headers={"x-goog-api-key": self.api_key},
                    timeout=httpx.Timeout(self.timeout),
                    transport=self._transport,
                )
                logger.debug("HTTP client created")
            return self._client

    async def generate_content(self, model: str, body: dict) -> dict:
        """POST a request body and return the decoded response envelope.

        Raises:
            TransportFailure: On network errors, timeouts, non-2xx statuses or
                a response that is not JSON
        """
        client = await self._ensure_client_initialized()
        url = f"/models/{model}:generateContent"

        logger.info("Sending request to %s", model)
        start_time = time.perf_counter()
        try:
            response = await client.post(url, json=body)
        except httpx.TimeoutException as e:
            logger.error("Request to %s timed out after %.1fs", model, self.timeout)
            raise TransportFailure(f"Request timed out after {self.timeout} seconds") from e
        except httpx.RequestError as e:
            logger.error("Network error calling %s: %s", model, e)
            raise TransportFailure(f"Network error: {e}") from e

        duration = time.perf_counter() - start_time
        logger.info("Response from %s: status=%d in %.2fs", model, response.status_code, duration)

        if response.status_code >= 300:
            raise _status_failure(response)

        try:
            return response.json()
        except ValueError as e:
            logger.error("Response envelope is not JSON: %s", response.text[:200])
            raise TransportFailure("Service returned a response that is not JSON") from e

    async def shutdown(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("HTTP client closed")


def _status_failure(response: httpx.Response) -> TransportFailure:
    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        detail = body["error"].get("message", "")
    else:
        detail = response.text[:500]

    logger.error("Gemini HTTP %d: %s", status, detail)
    if status in (401, 403):
        message = "Invalid Gemini API key"
    elif status == 429:
        message = "Gemini API rate limit exceeded"
    elif status >= 500:
        message = f"Gemini server error: {status}"
    else:
        message = f"Gemini API error ({status})"
    if detail:
        message = f"{message}: {detail}"
    return TransportFailure(message, status_code=status)


def build_analysis_body(audio: EncodedAudio) -> dict:
    return {
        "systemInstruction": {"parts": [{"text": ANALYSIS_SYSTEM_INSTRUCTION}]},
        "contents": [
            {
                "role": "user",
                "parts": [inline_audio_part(audio), {"text": ANALYSIS_PROMPT}],
            }
        ],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": ANALYSIS_SCHEMA,
        },
    }


def build_exercise_body(audio: EncodedAudio, goal_text: str) -> dict:
    return {
        "systemInstruction": {"parts": [{"text": exercise_system_instruction(goal_text)}]},
        "contents": [
            {
                "role": "user",
                "parts": [inline_audio_part(audio), {"text": EXERCISE_PROMPT}],
            }
        ],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": EXERCISE_FEEDBACK_SCHEMA,
        },
    }


def build_speech_body(text: str, voice: str) -> dict:
    return {
        "contents": [{"role": "user", "parts": [{"text": text}]}],
        "generationConfig": {
            "responseModalities": ["AUDIO"],
            "speechConfig": {
                "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}},
            },
        },
    }


def _first_candidate_parts(envelope: dict) -> list[dict]:
    candidates = envelope.get("candidates") or []
    if not candidates:
        block_reason = (envelope.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            logger.warning("Request blocked by the service: %s", block_reason)
        return []
    content = candidates[0].get("content") or {}
    return content.get("parts") or []


def response_text(envelope: dict) -> str | None:
    """Concatenated text parts of the first candidate, or None."""
    texts = [
        part["text"]
        for part in _first_candidate_parts(envelope)
        if isinstance(part.get("text"), str) and not part.get("thought")
    ]
    return "".join(texts) or None


def response_audio(envelope: dict) -> str | None:
    """Base64 audio of the first inline-data part, or None."""
    for part in _first_candidate_parts(envelope):
        inline = part.get("inlineData") or {}
        if inline.get("data"):
            return inline["data"]
    return None
