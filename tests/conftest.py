"""Shared fixtures for journal tests."""

import copy
import json

import pytest

ANALYSIS_PAYLOAD = {
    "transcription": "Aujourd'hui j'ai parlé avec mon équipe du projet.",
    "summary": "Une réunion d'équipe constructive.",
    "mood": "Serein",
    "tags": ["travail", "équipe", "projet"],
    "metrics": {
        "clarity": 82,
        "assertiveness": 91,
        "vocabularyRichness": 60,
        "pace": "Good",
    },
    "deepAnalysis": "Le discours est structuré mais manque de relief.",
    "suggestions": [
        {
            "original": "j'ai parlé avec mon équipe",
            "improved": "j'ai réuni mon équipe",
            "reason": "Un verbe plus actif.",
        }
    ],
    "eloquenceTip": {
        "focusPoint": "Les tics de langage",
        "explanation": "Ils diluent le propos.",
        "exampleOriginal": "Euh, je pense que",
        "exampleImproved": "Je suis convaincu que",
        "instruction": "Répétez: Je suis convaincu de mon succès.",
    },
}

FEEDBACK_PAYLOAD = {
    "transcription": "Je suis convaincu de mon succès.",
    "success": True,
    "score": 9,
    "critique": "Très affirmé.",
}


def envelope_for(payload) -> dict:
    """Wrap a payload the way generateContent returns structured text."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


@pytest.fixture
def analysis_payload():
    """Fresh copy of a complete analysis payload."""
    return copy.deepcopy(ANALYSIS_PAYLOAD)


@pytest.fixture
def feedback_payload():
    """Fresh copy of an exercise feedback payload."""
    return copy.deepcopy(FEEDBACK_PAYLOAD)


@pytest.fixture
def make_envelope():
    """Factory wrapping payloads in a generateContent response envelope."""
    return envelope_for
