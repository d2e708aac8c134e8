"""Local JSON persistence of journal entries and settings."""

import json
import logging
import os
import tempfile
from datetime import date
from pathlib import Path

from journal_app._types import AppSettings, ExerciseFeedback, JournalEntry

logger = logging.getLogger(__name__)

ENTRIES_FILE = "entries.json"
SETTINGS_FILE = "settings.json"
STATE_FILE = "state.json"


def _atomic_write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, ensure_ascii=False, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def _read_json(path: Path):
    """Read a JSON file; a corrupt file is moved aside and None returned."""
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        backup = path.with_name(path.name + ".corrupt")
        logger.error("Failed to load %s (%s); moving it to %s", path, e, backup)
        os.replace(path, backup)
        return None


class EntryStore:
    """Ordered collection of journal entries, newest first.

    Entries are only ever appended (after a successful analysis) or given
    exercise feedback. Every change is written straight to disk.
    """

    def __init__(self, data_dir: Path):
        self.path = Path(data_dir) / ENTRIES_FILE
        self._entries: list[JournalEntry] = []
        self.load()

    def __len__(self) -> int:
        return len(self._entries)

    def load(self) -> None:
        raw = _read_json(self.path)
        if raw is None:
            self._entries = []
            return
        if not isinstance(raw, list):
            logger.error("%s does not hold a list of entries, ignoring it", self.path)
            self._entries = []
            return

        entries = []
        for item in raw:
            try:
                entries.append(JournalEntry.from_dict(item))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                entry_id = item.get("id") if isinstance(item, dict) else item
                logger.warning("Skipping unreadable entry %r: %s", entry_id, e)
        self._entries = entries
        logger.info("Loaded %d entries from %s", len(entries), self.path)

    def save(self) -> None:
        _atomic_write_json(self.path, [entry.to_dict() for entry in self._entries])
        logger.debug("Saved %d entries to %s", len(self._entries), self.path)

    def add(self, entry: JournalEntry) -> JournalEntry:
        """Insert a new entry at the front and persist."""
        if self.get(entry.id) is not None:
            raise ValueError(f"Entry {entry.id} already exists")
        self._entries.insert(0, entry)
        self.save()
        logger.info("Entry %s added", entry.id)
        return entry

    def get(self, entry_id: str) -> JournalEntry | None:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def find(self, id_or_prefix: str) -> JournalEntry | None:
        """Look an entry up by full id or unique id prefix.

        Raises:
            ValueError: If the prefix matches several entries
        """
        exact = self.get(id_or_prefix)
        if exact is not None or not id_or_prefix:
            return exact
        matches = [e for e in self._entries if e.id.startswith(id_or_prefix)]
        if len(matches) > 1:
            raise ValueError(f"Ambiguous entry id prefix '{id_or_prefix}'")
        return matches[0] if matches else None

    def entries(self, limit: int | None = None) -> list[JournalEntry]:
        entries = list(self._entries)
        return entries[:limit] if limit is not None else entries

    def recent(self, count: int = 3) -> list[JournalEntry]:
        return self.entries(limit=count)

    def search(self, query: str) -> list[JournalEntry]:
        """Case-insensitive match on transcription, summary or any tag."""
        if not query:
            return self.entries()

        needle = query.lower()
        matches = []
        for entry in self._entries:
            analysis = entry.analysis
            if needle in entry.transcription.lower():
                matches.append(entry)
            elif analysis and needle in analysis.summary.lower():
                matches.append(entry)
            elif analysis and any(needle in tag.lower() for tag in analysis.tags):
                matches.append(entry)
        return matches

    def record_feedback(self, entry_id: str, feedback: ExerciseFeedback) -> JournalEntry:
        """Attach the latest practice feedback to an entry.

        Raises:
            KeyError: If the entry does not exist
        """
        entry = self.get(entry_id)
        if entry is None:
            raise KeyError(entry_id)
        entry.exercise_feedback = feedback
        self.save()
        logger.info("Exercise feedback recorded for entry %s (score=%s)", entry_id, feedback.score)
        return entry

    def progression(self, entry_id: str, window: int = 5) -> list[JournalEntry]:
        """Analysed entries up to the given one, oldest first, last ``window``.

        Raises:
            KeyError: If the entry does not exist
        """
        current = self.get(entry_id)
        if current is None:
            raise KeyError(entry_id)

        cutoff = current.created_at
        history = [
            e for e in self._entries if e.analysis is not None and e.created_at <= cutoff
        ]
        history.sort(key=lambda e: e.created_at)
        return history[-window:]


class SettingsStore:
    """Persisted AppSettings and reminder bookkeeping."""

    def __init__(self, data_dir: Path):
        self.settings_path = Path(data_dir) / SETTINGS_FILE
        self.state_path = Path(data_dir) / STATE_FILE

    def load(self) -> AppSettings:
        raw = _read_json(self.settings_path)
        if not isinstance(raw, dict):
            return AppSettings()
        try:
            return AppSettings.from_dict(raw)
        except ValueError as e:
            logger.error("Invalid settings in %s: %s; using defaults", self.settings_path, e)
            return AppSettings()

    def save(self, settings: AppSettings) -> None:
        _atomic_write_json(self.settings_path, settings.to_dict())
        logger.info("Settings saved: %s", settings)

    def last_reminder_date(self) -> date | None:
        raw = _read_json(self.state_path)
        if not isinstance(raw, dict) or not raw.get("lastReminderDate"):
            return None
        try:
            return date.fromisoformat(raw["lastReminderDate"])
        except ValueError:
            logger.warning("Ignoring invalid lastReminderDate %r", raw["lastReminderDate"])
            return None

    def set_last_reminder_date(self, day: date) -> None:
        _atomic_write_json(self.state_path, {"lastReminderDate": day.isoformat()})
