"""Shared types and dataclasses for cross-module use."""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import numpy as np

PCM_MIME_TYPE = "audio/pcm"

_REMINDER_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass(frozen=True)
class EncodedAudio:
    """Immutable audio payload tagged with its MIME type.

    Raw microphone captures use ``audio/pcm`` and carry the sample rate and
    channel count needed to wrap them in a container later.
    """

    data: bytes
    mime_type: str
    sample_rate: int | None = None
    channels: int | None = None

    @property
    def duration(self) -> float | None:
        """Duration in seconds for raw PCM16 captures, None otherwise."""
        if self.mime_type != PCM_MIME_TYPE or not self.sample_rate or not self.channels:
            return None
        return len(self.data) / (2 * self.channels * self.sample_rate)


@dataclass
class RecordingSession:
    """State of one live microphone capture.

    The session exclusively owns the input stream. Chunks are appended in
    arrival order by the audio callback and never reordered.
    """

    sample_rate: int
    channels: int
    stream: Any = None
    chunks: list[bytes] = field(default_factory=list)
    frames: int = 0
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def elapsed(self) -> float:
        """Seconds of audio received so far."""
        return self.frames / self.sample_rate

    @property
    def byte_count(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)


# Request variants sent to the analysis service.


@dataclass(frozen=True)
class AnalysisRequest:
    """Base class of the three remote request shapes."""


@dataclass(frozen=True)
class FullAnalysis(AnalysisRequest):
    audio: EncodedAudio


@dataclass(frozen=True)
class ExerciseEvaluation(AnalysisRequest):
    audio: EncodedAudio
    goal_text: str


@dataclass(frozen=True)
class SpeechSynthesis(AnalysisRequest):
    text: str


class Pace(str, Enum):
    """Speaking pace as judged by the analysis service."""

    TOO_SLOW = "Too Slow"
    GOOD = "Good"
    TOO_FAST = "Too Fast"


@dataclass
class EloquenceMetrics:
    """Scores on a 0-100 scale plus a pace label."""

    clarity: int
    assertiveness: int
    vocabulary_richness: int
    pace: Pace

    def to_dict(self) -> dict:
        return {
            "clarity": self.clarity,
            "assertiveness": self.assertiveness,
            "vocabularyRichness": self.vocabulary_richness,
            "pace": self.pace.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EloquenceMetrics":
        return cls(
            clarity=data.get("clarity", 0),
            assertiveness=data.get("assertiveness", 0),
            vocabulary_richness=data.get("vocabularyRichness", 0),
            pace=Pace(data.get("pace", Pace.GOOD.value)),
        )


@dataclass
class ImprovementSuggestion:
    original: str
    improved: str
    reason: str

    def to_dict(self) -> dict:
        return {"original": self.original, "improved": self.improved, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: dict) -> "ImprovementSuggestion":
        return cls(
            original=data["original"],
            improved=data["improved"],
            reason=data["reason"],
        )


@dataclass
class EloquenceExercise:
    """Focused micro-lesson built around a single weakness of the entry."""

    focus_point: str
    explanation: str
    example_original: str
    example_improved: str
    instruction: str

    @property
    def goal_text(self) -> str:
        return self.instruction

    def to_dict(self) -> dict:
        return {
            "focusPoint": self.focus_point,
            "explanation": self.explanation,
            "exampleOriginal": self.example_original,
            "exampleImproved": self.example_improved,
            "instruction": self.instruction,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EloquenceExercise":
        return cls(
            focus_point=data["focusPoint"],
            explanation=data["explanation"],
            example_original=data["exampleOriginal"],
            example_improved=data["exampleImproved"],
            instruction=data["instruction"],
        )


@dataclass
class LegacyTip:
    """Plain-text tip stored by older versions of the journal."""

    text: str

    @property
    def goal_text(self) -> str:
        return self.text

    def to_dict(self) -> str:
        return self.text


EloquenceTip = EloquenceExercise | LegacyTip


def normalize_tip(value: Any) -> EloquenceTip:
    """Convert a stored or received tip into one of its two variants.

    Raises:
        ValueError: If the value is neither a string nor an object
    """
    if isinstance(value, (EloquenceExercise, LegacyTip)):
        return value
    if isinstance(value, str):
        return LegacyTip(text=value)
    if isinstance(value, dict):
        return EloquenceExercise.from_dict(value)
    raise ValueError(f"Unsupported eloquence tip type: {type(value).__name__}")


@dataclass
class AnalysisResult:
    """Structured critique of one spoken entry."""

    transcription: str
    summary: str
    mood: str
    tags: list[str]
    metrics: EloquenceMetrics
    deep_analysis: str
    suggestions: list[ImprovementSuggestion]
    eloquence_tip: EloquenceTip

    def to_dict(self) -> dict:
        return {
            "transcription": self.transcription,
            "summary": self.summary,
            "mood": self.mood,
            "tags": list(self.tags),
            "metrics": self.metrics.to_dict(),
            "deepAnalysis": self.deep_analysis,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "eloquenceTip": self.eloquence_tip.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisResult":
        """Build from a validated payload or a stored record.

        Stored records written by older versions may lack ``transcription``
        and carry a plain-string tip.
        """
        return cls(
            transcription=data.get("transcription", ""),
            summary=data["summary"],
            mood=data["mood"],
            tags=list(data.get("tags", [])),
            metrics=EloquenceMetrics.from_dict(data["metrics"]),
            deep_analysis=data.get("deepAnalysis", ""),
            suggestions=[
                ImprovementSuggestion.from_dict(s) for s in data.get("suggestions", [])
            ],
            eloquence_tip=normalize_tip(data.get("eloquenceTip", "")),
        )


@dataclass
class ExerciseFeedback:
    """Evaluation of one practice attempt."""

    transcription: str
    success: bool
    score: int
    critique: str

    def to_dict(self) -> dict:
        return {
            "transcription": self.transcription,
            "success": self.success,
            "score": self.score,
            "critique": self.critique,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExerciseFeedback":
        return cls(
            transcription=data["transcription"],
            success=data["success"],
            score=data["score"],
            critique=data["critique"],
        )


@dataclass
class JournalEntry:
    """One journal session.

    ``audio_path`` points at the session recording and is not persisted.
    """

    transcription: str
    analysis: AnalysisResult | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    audio_path: str | None = None
    is_processing: bool = False
    exercise_feedback: ExerciseFeedback | None = None

    @property
    def created_at(self) -> datetime:
        """Creation time as naive local time (stored UTC stamps are converted)."""
        moment = datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))
        if moment.tzinfo is not None:
            moment = moment.astimezone().replace(tzinfo=None)
        return moment

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "date": self.timestamp,
            "transcription": self.transcription,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "isProcessing": self.is_processing,
        }
        if self.exercise_feedback is not None:
            data["exerciseFeedback"] = self.exercise_feedback.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "JournalEntry":
        analysis = data.get("analysis")
        feedback = data.get("exerciseFeedback")
        return cls(
            id=str(data["id"]),
            timestamp=data["date"],
            transcription=data.get("transcription", ""),
            analysis=AnalysisResult.from_dict(analysis) if analysis else None,
            is_processing=bool(data.get("isProcessing", False)),
            exercise_feedback=ExerciseFeedback.from_dict(feedback) if feedback else None,
        )


@dataclass
class AppSettings:
    """User preferences for the daily reminder."""

    reminder_enabled: bool = False
    reminder_time: str = "20:00"

    def __post_init__(self) -> None:
        if not isinstance(self.reminder_time, str) or not _REMINDER_TIME_RE.match(
            self.reminder_time
        ):
            raise ValueError(
                f"reminder_time must use 24h HH:MM format, got {self.reminder_time!r}"
            )

    def to_dict(self) -> dict:
        return {
            "reminderEnabled": self.reminder_enabled,
            "reminderTime": self.reminder_time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AppSettings":
        return cls(
            reminder_enabled=bool(data.get("reminderEnabled", False)),
            reminder_time=data.get("reminderTime", "20:00"),
        )


@dataclass
class AudioSamples:
    """Decoded audio ready for playback, one float32 array per channel."""

    sample_rate: int
    channels: list[np.ndarray]

    @property
    def frame_count(self) -> int:
        return len(self.channels[0]) if self.channels else 0

    @property
    def duration(self) -> float:
        return self.frame_count / self.sample_rate

    def interleaved(self) -> np.ndarray:
        """Return samples shaped (frames, channels) as expected by sounddevice."""
        if not self.channels:
            return np.zeros((0, 1), dtype=np.float32)
        return np.stack(self.channels, axis=1)
