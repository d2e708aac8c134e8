"""Remote analysis calls and the journal pipeline built on them."""

import logging
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path

from journal_app import transport
from journal_app._types import (
    AnalysisRequest,
    AnalysisResult,
    AudioSamples,
    EncodedAudio,
    ExerciseEvaluation,
    ExerciseFeedback,
    FullAnalysis,
    JournalEntry,
    SpeechSynthesis,
)
from journal_app.errors import MalformedResponse, NoAudioReturned
from journal_app.gemini_client import (
    GeminiClient,
    build_analysis_body,
    build_exercise_body,
    build_speech_body,
    response_audio,
    response_text,
)
from journal_app.playback import (
    TTS_CHANNELS,
    TTS_SAMPLE_RATE,
    SpeechPlayer,
    decode_pcm16,
    load_wav,
)
from journal_app.store import EntryStore
from journal_app.validator import ANALYSIS_SCHEMA, EXERCISE_FEEDBACK_SCHEMA, parse_payload

logger = logging.getLogger(__name__)


class CallState(Enum):
    """State of the most recent remote call."""

    IDLE = "idle"
    SENDING = "sending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class AnalysisOrchestrator:
    """Issues the three structured requests to the analysis service.

    Only one call may be in flight per instance; callers must serialize.
    Each call is a single round-trip with no automatic retry.
    """

    def __init__(
        self,
        client: GeminiClient,
        analysis_model: str = "gemini-2.5-flash",
        tts_model: str = "gemini-2.5-flash-preview-tts",
        voice: str = "Kore",
    ):
        self.client = client
        self.analysis_model = analysis_model
        self.tts_model = tts_model
        self.voice = voice
        self.state = CallState.IDLE
        self.last_error: Exception | None = None

    @property
    def busy(self) -> bool:
        return self.state == CallState.SENDING

    @asynccontextmanager
    async def _call(self, name: str):
        if self.busy:
            raise RuntimeError(f"Cannot start {name}: another request is in flight")

        self.state = CallState.IDLE
        self.last_error = None
        logger.info("State transition: IDLE -> SENDING (%s)", name)
        self.state = CallState.SENDING
        try:
            yield
        except Exception as e:
            self.state = CallState.FAILED
            self.last_error = e
            logger.error("%s failed (%s: %s)", name.capitalize(), type(e).__name__, e)
            raise
        else:
            self.state = CallState.SUCCEEDED
            logger.info("State transition: SENDING -> SUCCEEDED (%s)", name)
        finally:
            if self.state == CallState.SENDING:
                self.state = CallState.FAILED

    async def analyze_entry(self, audio: EncodedAudio) -> AnalysisResult:
        """Transcribe and critique one journal recording.

        Raises:
            TransportFailure: On network or service errors
            EmptyResponse: If the service returned no payload
            MalformedResponse: If the payload is not a complete AnalysisResult
        """
        async with self._call("entry analysis"):
            envelope = await self.client.generate_content(
                self.analysis_model, build_analysis_body(audio)
            )
            payload = parse_payload(response_text(envelope), ANALYSIS_SCHEMA)
            return AnalysisResult.from_dict(payload)

    async def evaluate_exercise(self, audio: EncodedAudio, goal_text: str) -> ExerciseFeedback:
        """Judge a practice attempt against the sentence the user was asked to say.

        Raises:
            ValueError: If goal_text is empty
            TransportFailure, EmptyResponse, MalformedResponse: As for analyze_entry
        """
        if not goal_text.strip():
            raise ValueError("goal_text must not be empty")

        async with self._call("exercise evaluation"):
            envelope = await self.client.generate_content(
                self.analysis_model, build_exercise_body(audio, goal_text)
            )
            payload = parse_payload(response_text(envelope), EXERCISE_FEEDBACK_SCHEMA)
            return ExerciseFeedback.from_dict(payload)

    async def synthesize_speech(self, text: str) -> AudioSamples:
        """Have the service read ``text`` aloud and decode the returned PCM.

        Raises:
            ValueError: If text is empty
            TransportFailure: On network or service errors
            NoAudioReturned: If the response carries no audio
            MalformedResponse: If the audio is not valid base64
        """
        if not text.strip():
            raise ValueError("text must not be empty")

        async with self._call("speech synthesis"):
            envelope = await self.client.generate_content(
                self.tts_model, build_speech_body(text, self.voice)
            )
            encoded = response_audio(envelope)
            if not encoded:
                raise NoAudioReturned("No audio data returned")

            try:
                pcm = transport.decode(encoded)
            except ValueError as e:
                raise MalformedResponse(str(e), field="inlineData.data") from e

            samples = decode_pcm16(pcm, TTS_SAMPLE_RATE, TTS_CHANNELS)
            logger.debug("Decoded %d frames of speech", samples.frame_count)
            return samples

    async def submit(self, request: AnalysisRequest):
        """Dispatch a tagged request to the matching operation."""
        if isinstance(request, FullAnalysis):
            return await self.analyze_entry(request.audio)
        if isinstance(request, ExerciseEvaluation):
            return await self.evaluate_exercise(request.audio, request.goal_text)
        if isinstance(request, SpeechSynthesis):
            return await self.synthesize_speech(request.text)
        raise TypeError(f"Unsupported request type: {type(request).__name__}")

    async def shutdown(self) -> None:
        await self.client.shutdown()


class JournalPipeline:
    """Turns finished recordings into stored journal entries.

    The store is only touched after a call fully succeeds, so a failed
    analysis never leaves a partial entry behind.
    """

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator,
        store: EntryStore,
        player: SpeechPlayer | None = None,
        audio_dir: Path | None = None,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.player = player
        self.audio_dir = audio_dir

    @property
    def is_processing(self) -> bool:
        return self.orchestrator.busy

    async def process_recording(self, audio: EncodedAudio) -> JournalEntry:
        """Analyse a recording and append the resulting entry.

        Raises:
            ValueError: If the recording is empty
            JournalError: If the analysis fails; the store is left unchanged
        """
        if not audio.data:
            raise ValueError("Cannot analyse an empty recording")

        result = await self.orchestrator.analyze_entry(audio)

        entry = JournalEntry(transcription=result.transcription, analysis=result)
        if self.audio_dir is not None:
            entry.audio_path = str(transport.save_session_audio(audio, self.audio_dir, entry.id))
        self.store.add(entry)
        logger.info("Journal entry %s created (mood=%s)", entry.id, result.mood)
        return entry

    async def practice(self, entry_id: str, audio: EncodedAudio) -> ExerciseFeedback:
        """Evaluate a practice attempt for an entry's micro-exercise.

        Raises:
            KeyError: If the entry does not exist
            ValueError: If the entry has no analysis
            JournalError: If the evaluation fails
        """
        entry = self.store.get(entry_id)
        if entry is None:
            raise KeyError(entry_id)
        if entry.analysis is None:
            raise ValueError(f"Entry {entry_id} has no analysis to practise")

        goal_text = entry.analysis.eloquence_tip.goal_text
        feedback = await self.orchestrator.evaluate_exercise(audio, goal_text)
        self.store.record_feedback(entry_id, feedback)
        return feedback

    async def speak(self, text: str) -> AudioSamples:
        """Synthesize ``text`` and play it.

        Raises:
            RuntimeError: If no player is configured or one is already playing
        """
        player = self._idle_player()
        samples = await self.orchestrator.synthesize_speech(text)
        await player.play(samples)
        return samples

    async def replay(self, entry: JournalEntry) -> AudioSamples:
        """Play back the recording an entry was made from.

        Only entries created during this run carry a recording.

        Raises:
            RuntimeError: If the entry has no readable recording or no idle player
        """
        if not entry.audio_path:
            raise RuntimeError(f"No recording kept for entry {entry.id}")
        player = self._idle_player()
        samples = load_wav(Path(entry.audio_path))
        await player.play(samples)
        return samples

    def _idle_player(self) -> SpeechPlayer:
        if self.player is None:
            raise RuntimeError("No speech player configured")
        if self.player.is_playing:
            raise RuntimeError("Speech playback already in progress")
        return self.player
