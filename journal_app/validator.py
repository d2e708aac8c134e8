"""Response schemas and structural validation of analysis payloads.

Each structured request variant has one schema, written in the service's
``Schema`` dialect. The same dict is sent as ``responseSchema`` and used
here to check the returned payload, so the two cannot drift apart.

Validation only asserts presence, JSON type and declared enum membership.
Values are never clamped or coerced; range checks belong to consumers.
"""

import json
import logging
from typing import Any

from journal_app._types import Pace
from journal_app.errors import EmptyResponse, MalformedResponse

logger = logging.getLogger(__name__)

ANALYSIS_SCHEMA: dict = {
    "type": "OBJECT",
    "properties": {
        "transcription": {
            "type": "STRING",
            "description": "The full verbatim transcription of the audio in French.",
        },
        "summary": {
            "type": "STRING",
            "description": "A concise 1-sentence summary of the entry.",
        },
        "mood": {
            "type": "STRING",
            "description": "The emotional tone of the speaker.",
        },
        "tags": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "3-5 relevant semantic tags.",
        },
        "metrics": {
            "type": "OBJECT",
            "properties": {
                "clarity": {"type": "INTEGER"},
                "assertiveness": {"type": "INTEGER"},
                "vocabularyRichness": {"type": "INTEGER"},
                "pace": {"type": "STRING", "enum": [p.value for p in Pace]},
            },
            "required": ["clarity", "assertiveness", "vocabularyRichness", "pace"],
        },
        "deepAnalysis": {
            "type": "STRING",
            "description": (
                "A comprehensive, multi-paragraph literary critique of the speaker's "
                "style, rhetoric, and emotional coherence. Markdown formatted."
            ),
        },
        "suggestions": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "original": {"type": "STRING"},
                    "improved": {"type": "STRING"},
                    "reason": {"type": "STRING"},
                },
                "required": ["original", "improved", "reason"],
            },
        },
        "eloquenceTip": {
            "type": "OBJECT",
            "description": "A focused micro-lesson based on the most obvious mistake.",
            "properties": {
                "focusPoint": {
                    "type": "STRING",
                    "description": "Title of the lesson (e.g., 'La voix passive').",
                },
                "explanation": {
                    "type": "STRING",
                    "description": "Why this matters, in one sentence.",
                },
                "exampleOriginal": {
                    "type": "STRING",
                    "description": "A short snippet from the transcript containing the issue.",
                },
                "exampleImproved": {
                    "type": "STRING",
                    "description": "The same snippet rewritten.",
                },
                "instruction": {
                    "type": "STRING",
                    "description": "The exact sentence the user must record to practise.",
                },
            },
            "required": [
                "focusPoint",
                "explanation",
                "exampleOriginal",
                "exampleImproved",
                "instruction",
            ],
        },
    },
    "required": [
        "transcription",
        "summary",
        "mood",
        "tags",
        "metrics",
        "deepAnalysis",
        "suggestions",
        "eloquenceTip",
    ],
}

EXERCISE_FEEDBACK_SCHEMA: dict = {
    "type": "OBJECT",
    "properties": {
        "transcription": {"type": "STRING"},
        "success": {"type": "BOOLEAN"},
        "score": {"type": "INTEGER", "description": "Score out of 10"},
        "critique": {"type": "STRING", "description": "Feedback on the attempt."},
    },
    "required": ["transcription", "success", "score", "critique"],
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


_TYPE_CHECKS = {
    "STRING": lambda v: isinstance(v, str),
    "INTEGER": _is_number,
    "NUMBER": _is_number,
    "BOOLEAN": lambda v: isinstance(v, bool),
    "ARRAY": lambda v: isinstance(v, list),
    "OBJECT": lambda v: isinstance(v, dict),
}


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def validate_payload(payload: Any, schema: dict, path: str = "") -> None:
    """Check a decoded payload against a schema.

    Raises:
        MalformedResponse: On the first missing or mistyped field
    """
    expected = schema["type"]
    if not _TYPE_CHECKS[expected](payload):
        where = path or "<root>"
        raise MalformedResponse(
            f"Field '{where}' should be {expected.lower()}, got {type(payload).__name__}",
            field=where,
        )

    if "enum" in schema and payload not in schema["enum"]:
        raise MalformedResponse(
            f"Field '{path}' has unexpected value {payload!r}", field=path
        )

    if expected == "OBJECT":
        properties = schema.get("properties", {})
        for key in schema.get("required", []):
            if payload.get(key) is None:
                field = _join(path, key)
                raise MalformedResponse(f"Missing required field '{field}'", field=field)
        for key, sub_schema in properties.items():
            if payload.get(key) is not None:
                validate_payload(payload[key], sub_schema, _join(path, key))

    elif expected == "ARRAY" and "items" in schema:
        for idx, item in enumerate(payload):
            validate_payload(item, schema["items"], f"{path}[{idx}]")


def parse_payload(text: str | None, schema: dict) -> dict:
    """Decode the service's JSON text and validate it.

    Raises:
        EmptyResponse: If there is no payload text
        MalformedResponse: If the text is not JSON or fails validation
    """
    if text is None or not text.strip():
        raise EmptyResponse("Analysis service returned no payload")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error("Payload is not valid JSON: %s", e)
        raise MalformedResponse(f"Payload is not valid JSON: {e}") from e

    try:
        validate_payload(payload, schema)
    except MalformedResponse as e:
        logger.error("Payload rejected: %s", e)
        raise

    return payload
