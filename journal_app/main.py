"""Typer CLI entrypoint for the eloquent journal."""

import asyncio
import json
import logging
import sys
import tempfile
import threading
from pathlib import Path

import typer

from journal_app._types import AppSettings, EloquenceExercise, EncodedAudio, JournalEntry
from journal_app.config import Config, ConfigError, discover_audio_devices, load_config
from journal_app.errors import DeviceUnavailable, JournalError
from journal_app.gemini_client import GeminiClient
from journal_app.orchestrator import AnalysisOrchestrator, JournalPipeline
from journal_app.playback import SpeechPlayer
from journal_app.recorder import AudioRecorder
from journal_app.reminder import ReminderPoller
from journal_app.store import EntryStore, SettingsStore
from journal_app.transport import load_audio_file
from journal_app.visualizer import TerminalVisualizer, format_time

app = typer.Typer(help="Voice journal with a demanding but kind speaking coach")

logger = logging.getLogger(__name__)

MSG_MIC_UNAVAILABLE = "Impossible d'accéder au microphone. Veuillez vérifier vos permissions."
MSG_ANALYSIS_FAILED = "Une erreur est survenue lors de l'analyse. Veuillez réessayer."
MSG_EXERCISE_FAILED = "Erreur lors de l'analyse de l'exercice."
MSG_TTS_FAILED = "Impossible de lire l'audio pour le moment."
MSG_EMPTY_RECORDING = "Aucun son n'a été enregistré."
MSG_REPLAY_FAILED = "Impossible de relire l'enregistrement."


def _setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Setup logging configuration.

    ``debug`` also lets the HTTP client libraries log below WARNING.
    """
    level = logging.DEBUG if verbose or debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger().setLevel(level)
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.NOTSET if debug else logging.WARNING)


def _load(config: Path | None, verbose: bool) -> Config:
    _setup_logging(verbose)
    try:
        cfg = load_config(config)
        cfg.validate()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    if cfg.general.verbose or cfg.general.debug:
        _setup_logging(verbose or cfg.general.verbose, cfg.general.debug)
    return cfg


def _open_store(cfg: Config) -> EntryStore:
    return EntryStore(cfg.storage.path)


def _require_api_key(cfg: Config) -> str:
    try:
        return cfg.require_api_key()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)


def _build_pipeline(
    cfg: Config, store: EntryStore, audio_dir: Path | None = None
) -> JournalPipeline:
    api_key = _require_api_key(cfg)
    client = GeminiClient(
        api_key=api_key,
        base_url=cfg.gemini.base_url,
        timeout=cfg.gemini.timeout,
    )
    orchestrator = AnalysisOrchestrator(
        client,
        analysis_model=cfg.gemini.analysis_model,
        tts_model=cfg.gemini.tts_model,
        voice=cfg.gemini.voice,
    )
    return JournalPipeline(
        orchestrator,
        store,
        player=SpeechPlayer(),
        audio_dir=audio_dir,
    )


def _build_recorder(cfg: Config) -> AudioRecorder:
    return AudioRecorder(
        sample_rate=cfg.audio.sample_rate,
        channels=cfg.audio.channels,
        chunk_size=cfg.audio.chunk_size,
        device=cfg.audio.device,
        fft_size=cfg.visualizer.fft_size,
    )


def _wait_for_enter(loop: asyncio.AbstractEventLoop) -> asyncio.Future:
    """Future resolved when the user presses Enter.

    stdin is read on a daemon thread so an unanswered prompt never blocks exit.
    """
    future = loop.create_future()

    def _resolve() -> None:
        if not future.done():
            future.set_result(None)

    def _reader() -> None:
        sys.stdin.readline()
        if not loop.is_closed():
            loop.call_soon_threadsafe(_resolve)

    threading.Thread(target=_reader, name="enter-reader", daemon=True).start()
    return future


async def _capture(recorder: AudioRecorder, cfg: Config, show_visualizer: bool) -> EncodedAudio:
    """Record until Enter is pressed or the maximum duration is reached."""
    loop = asyncio.get_running_loop()
    with recorder:
        session = recorder.start()
        typer.echo("Parlez librement. Ne cherchez pas la perfection. (Entrée pour terminer)")

        visual_task = None
        if show_visualizer:
            visualizer = TerminalVisualizer(sys.stderr, width=cfg.visualizer.width)
            visual_task = asyncio.create_task(
                visualizer.run(
                    recorder.frequency_frames(cfg.visualizer.refresh_hz),
                    lambda: session.elapsed,
                )
            )

        enter = _wait_for_enter(loop)
        done, _ = await asyncio.wait({enter}, timeout=cfg.audio.max_duration)

        audio = recorder.stop(session)
        if visual_task is not None:
            await visual_task

        if not done:
            # the reader thread still owns stdin until its line arrives
            typer.echo(
                f"Durée maximale atteinte ({format_time(cfg.audio.max_duration)}). "
                "Appuyez sur Entrée pour continuer."
            )
            await enter

    if audio is not None:
        typer.echo(f"Enregistrement terminé : {format_time(audio.duration or 0)}")
    return audio


def _record_audio(cfg: Config, show_visualizer: bool) -> EncodedAudio:
    recorder = _build_recorder(cfg)
    try:
        return asyncio.run(_capture(recorder, cfg, show_visualizer))
    except DeviceUnavailable as e:
        logger.error("Microphone error: %s", e)
        typer.echo(MSG_MIC_UNAVAILABLE, err=True)
        raise typer.Exit(1)
    except RuntimeError as e:
        logger.error("Recording failed: %s", e)
        typer.echo(f"Enregistrement impossible : {e}", err=True)
        raise typer.Exit(1)


async def _run_with_pipeline(pipeline: JournalPipeline, coro_factory):
    try:
        return await coro_factory(pipeline)
    finally:
        await pipeline.orchestrator.shutdown()


def _analyse_and_store(
    cfg: Config, audio: EncodedAudio, as_json: bool, audio_dir: Path | None = None
) -> tuple[JournalPipeline, JournalEntry]:
    store = _open_store(cfg)
    pipeline = _build_pipeline(cfg, store, audio_dir)
    typer.echo("Analyse en cours... Le miroir bienveillant vous écoute.")
    try:
        entry = asyncio.run(
            _run_with_pipeline(pipeline, lambda p: p.process_recording(audio))
        )
    except (JournalError, ValueError) as e:
        logger.error("Analysis failed: %s", e)
        typer.echo(f"{MSG_ANALYSIS_FAILED} ({e})", err=True)
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(entry.to_dict(), ensure_ascii=False, indent=2))
    else:
        _print_entry(entry, store)
    return pipeline, entry


def _replay(pipeline: JournalPipeline, entry: JournalEntry) -> None:
    try:
        asyncio.run(pipeline.replay(entry))
    except RuntimeError as e:
        logger.error("Replay failed: %s", e)
        typer.echo(MSG_REPLAY_FAILED, err=True)
        raise typer.Exit(1)


def _require_audio(audio: EncodedAudio | None) -> EncodedAudio:
    if audio is None:
        raise typer.Exit(1)
    if not audio.data:
        typer.echo(MSG_EMPTY_RECORDING, err=True)
        raise typer.Exit(1)
    return audio


def _resolve_entry(store: EntryStore, entry_id: str) -> JournalEntry:
    try:
        entry = store.find(entry_id)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    if entry is None:
        typer.echo(f"Entrée introuvable : {entry_id}", err=True)
        raise typer.Exit(1)
    return entry


def _entry_line(entry: JournalEntry) -> str:
    date = entry.created_at.strftime("%Y-%m-%d %H:%M")
    if entry.analysis is None:
        return f"{entry.id[:8]}  {date}  {entry.transcription[:60]}"
    tags = ", ".join(entry.analysis.tags[:3])
    return f"{entry.id[:8]}  {date}  [{entry.analysis.mood}] {entry.analysis.summary}  ({tags})"


def _print_entries(entries: list[JournalEntry], as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps([e.to_dict() for e in entries], ensure_ascii=False, indent=2))
        return
    if not entries:
        typer.echo("Aucune entrée.")
        return
    for entry in entries:
        typer.echo(_entry_line(entry))


def _print_tip(entry: JournalEntry) -> None:
    tip = entry.analysis.eloquence_tip
    if isinstance(tip, EloquenceExercise):
        typer.echo(f"Exercice : {tip.focus_point}")
        typer.echo(f"  {tip.explanation}")
        typer.echo(f"  Avant : « {tip.example_original} »")
        typer.echo(f"  Après : « {tip.example_improved} »")
        typer.echo(f"  Consigne : {tip.instruction}")
    else:
        typer.echo(f"Conseil : {tip.text}")


def _print_entry(entry: JournalEntry, store: EntryStore) -> None:
    typer.echo(f"Entrée {entry.id}  ({entry.created_at.strftime('%A %d %B %Y %H:%M')})")
    analysis = entry.analysis
    if analysis is None:
        typer.echo(entry.transcription)
        return

    metrics = analysis.metrics
    typer.echo(f"Humeur : {analysis.mood}")
    typer.echo(f"Résumé : {analysis.summary}")
    typer.echo(f"Tags : {', '.join(analysis.tags)}")
    typer.echo(
        f"Clarté {metrics.clarity}/100 · Affirmation {metrics.assertiveness}/100 · "
        f"Vocabulaire {metrics.vocabulary_richness}/100 · Rythme {metrics.pace.value}"
    )
    typer.echo("")
    typer.echo("Transcription :")
    typer.echo(entry.transcription)
    typer.echo("")
    typer.echo("Analyse :")
    typer.echo(analysis.deep_analysis)
    if analysis.suggestions:
        typer.echo("")
        typer.echo("Suggestions :")
        for idx, suggestion in enumerate(analysis.suggestions, start=1):
            typer.echo(f"  {idx}. « {suggestion.original} » → « {suggestion.improved} »")
            typer.echo(f"     {suggestion.reason}")
    typer.echo("")
    _print_tip(entry)

    if entry.exercise_feedback is not None:
        feedback = entry.exercise_feedback
        typer.echo(f"Dernier essai : {feedback.score}/10 · {feedback.critique}")

    history = store.progression(entry.id)
    if len(history) >= 2:
        typer.echo("")
        typer.echo("Progression (clarté / affirmation) :")
        for item in history:
            day = item.created_at.strftime("%a %d/%m")
            typer.echo(
                f"  {day}  {item.analysis.metrics.clarity:3d} / "
                f"{item.analysis.metrics.assertiveness:3d}"
            )


@app.command()
def record(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    no_visualizer: bool = typer.Option(
        False, "--no-visualizer", help="Do not draw the live spectrum"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Submit without confirmation"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of text"
    ),
) -> None:
    """Record a journal entry and have it analysed."""
    cfg = _load(config, verbose)
    _require_api_key(cfg)

    audio = _require_audio(_record_audio(cfg, cfg.visualizer.enabled and not no_visualizer))

    if not yes and not typer.confirm("Envoyer cet enregistrement pour analyse ?", default=True):
        typer.echo("Enregistrement abandonné.")
        return

    with tempfile.TemporaryDirectory(prefix="eloquent-journal-") as session_dir:
        pipeline, entry = _analyse_and_store(cfg, audio, json_output, Path(session_dir))
        if not yes and not json_output and typer.confirm(
            "Réécouter l'enregistrement ?", default=False
        ):
            _replay(pipeline, entry)


@app.command()
def analyze(
    audio_file: Path = typer.Argument(..., help="Recording to analyse"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of text"
    ),
) -> None:
    """Analyse an existing recording and add it to the journal."""
    cfg = _load(config, verbose)
    try:
        audio = load_audio_file(audio_file)
    except RuntimeError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    _analyse_and_store(cfg, audio, json_output)


@app.command("list")
def list_entries(
    limit: int = typer.Option(3, "--limit", "-n", help="Number of recent entries to show"),
    show_all: bool = typer.Option(False, "--all", "-a", help="Show every entry"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of text"
    ),
) -> None:
    """List the most recent journal entries, newest first."""
    cfg = _load(config, verbose)
    store = _open_store(cfg)
    _print_entries(store.entries() if show_all else store.recent(limit), json_output)


@app.command()
def search(
    query: str = typer.Argument(..., help="Text to look for"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of text"
    ),
) -> None:
    """Search transcriptions, summaries and tags."""
    cfg = _load(config, verbose)
    _print_entries(_open_store(cfg).search(query), json_output)


@app.command()
def show(
    entry_id: str = typer.Argument(..., help="Entry id or unique prefix"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of text"
    ),
) -> None:
    """Show an entry with its full analysis."""
    cfg = _load(config, verbose)
    store = _open_store(cfg)
    entry = _resolve_entry(store, entry_id)
    if json_output:
        typer.echo(json.dumps(entry.to_dict(), ensure_ascii=False, indent=2))
    else:
        _print_entry(entry, store)


@app.command()
def practice(
    entry_id: str = typer.Argument(..., help="Entry id or unique prefix"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    no_visualizer: bool = typer.Option(False, "--no-visualizer"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Submit without confirmation"),
) -> None:
    """Record an attempt at an entry's micro-exercise and get feedback."""
    cfg = _load(config, verbose)
    store = _open_store(cfg)
    entry = _resolve_entry(store, entry_id)
    if entry.analysis is None:
        typer.echo("Cette entrée n'a pas d'analyse.", err=True)
        raise typer.Exit(1)

    pipeline = _build_pipeline(cfg, store)
    _print_tip(entry)

    audio = _require_audio(_record_audio(cfg, cfg.visualizer.enabled and not no_visualizer))
    if not yes and not typer.confirm("Envoyer cet essai ?", default=True):
        typer.echo("Essai abandonné.")
        return

    try:
        feedback = asyncio.run(
            _run_with_pipeline(pipeline, lambda p: p.practice(entry.id, audio))
        )
    except (JournalError, ValueError) as e:
        logger.error("Exercise evaluation failed: %s", e)
        typer.echo(f"{MSG_EXERCISE_FAILED} ({e})", err=True)
        raise typer.Exit(1)

    verdict = "Réussi" if feedback.success else "À retravailler"
    typer.echo(f"Score : {feedback.score}/10 · {verdict}")
    typer.echo(f"Vous avez dit : « {feedback.transcription} »")
    typer.echo(feedback.critique)


@app.command()
def speak(
    entry_id: str = typer.Argument(..., help="Entry id or unique prefix"),
    suggestion: int | None = typer.Option(
        None, "--suggestion", "-s", help="Read suggestion N instead of the exercise"
    ),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Hear the improved sentence read aloud."""
    cfg = _load(config, verbose)
    store = _open_store(cfg)
    entry = _resolve_entry(store, entry_id)
    if entry.analysis is None:
        typer.echo("Cette entrée n'a pas d'analyse.", err=True)
        raise typer.Exit(1)

    if suggestion is not None:
        suggestions = entry.analysis.suggestions
        if not 1 <= suggestion <= len(suggestions):
            typer.echo(f"Suggestion {suggestion} inexistante.", err=True)
            raise typer.Exit(1)
        text = suggestions[suggestion - 1].improved
    else:
        tip = entry.analysis.eloquence_tip
        text = tip.example_improved if isinstance(tip, EloquenceExercise) else tip.goal_text

    pipeline = _build_pipeline(cfg, store)
    try:
        asyncio.run(_run_with_pipeline(pipeline, lambda p: p.speak(text)))
    except (JournalError, RuntimeError, ValueError) as e:
        logger.error("Speech synthesis failed: %s", e)
        typer.echo(MSG_TTS_FAILED, err=True)
        raise typer.Exit(1)


@app.command()
def settings(
    enable: bool | None = typer.Option(
        None, "--enable/--disable", help="Turn the daily reminder on or off"
    ),
    time: str | None = typer.Option(None, "--time", help="Reminder time (HH:MM, 24h)"),
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of text"
    ),
) -> None:
    """Show or change reminder settings."""
    cfg = _load(config, verbose)
    settings_store = SettingsStore(cfg.storage.path)
    current = settings_store.load()

    if enable is not None or time is not None:
        try:
            current = AppSettings(
                reminder_enabled=current.reminder_enabled if enable is None else enable,
                reminder_time=current.reminder_time if time is None else time,
            )
        except ValueError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(1)
        settings_store.save(current)

    if json_output:
        typer.echo(json.dumps(current.to_dict(), indent=2))
    elif current.reminder_enabled:
        typer.echo(f"Rappel quotidien activé à {current.reminder_time}.")
    else:
        typer.echo("Rappel quotidien désactivé.")


@app.command()
def remind(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Run the daily reminder in the foreground."""
    cfg = _load(config, verbose)

    def _notify(title: str, message: str) -> None:
        typer.echo(f"\a{title} : {message}")

    poller = ReminderPoller(
        SettingsStore(cfg.storage.path),
        notify=_notify,
        interval=cfg.reminder.poll_interval,
    )
    try:
        asyncio.run(poller.run())
    except KeyboardInterrupt:
        logger.info("Reminder interrupted by user")


@app.command()
def list_audio(
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of text"
    ),
) -> None:
    """List available audio input devices."""
    _setup_logging(verbose)
    try:
        devices = discover_audio_devices()
        if not devices:
            logger.warning("No audio devices found")
            return

        if json_output:
            typer.echo(json.dumps(devices, indent=2))
        else:
            typer.echo("Available audio devices:")
            for dev in devices:
                typer.echo(
                    f"  [{dev['index']}] {dev['name']} "
                    f"({dev['channels']}ch, {dev['sample_rate']}Hz)"
                )
    except Exception as e:
        logger.error("Error listing audio devices: %s", e)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
