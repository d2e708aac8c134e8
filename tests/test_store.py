"""Tests for local persistence."""

import json
from datetime import date

import pytest

from journal_app._types import AnalysisResult, AppSettings, ExerciseFeedback, JournalEntry
from journal_app.store import ENTRIES_FILE, EntryStore, SettingsStore


def _entry(analysis_payload, timestamp, transcription="x", **overrides) -> JournalEntry:
    payload = dict(analysis_payload, **overrides)
    return JournalEntry(
        transcription=transcription,
        analysis=AnalysisResult.from_dict(payload),
        timestamp=timestamp,
    )


class TestEntryStore:
    """Tests for EntryStore."""

    def test_empty_store(self, tmp_path):
        """Test a fresh directory yields no entries."""
        store = EntryStore(tmp_path)
        assert len(store) == 0
        assert store.entries() == []

    def test_add_prepends_and_persists(self, tmp_path, analysis_payload):
        """Test new entries go first and survive a reload."""
        store = EntryStore(tmp_path)
        first = store.add(_entry(analysis_payload, "2024-05-01T20:00:00"))
        second = store.add(_entry(analysis_payload, "2024-05-02T20:00:00"))

        assert [e.id for e in store.entries()] == [second.id, first.id]
        reloaded = EntryStore(tmp_path)
        assert [e.id for e in reloaded.entries()] == [second.id, first.id]

    def test_duplicate_id_rejected(self, tmp_path, analysis_payload):
        """Test an id can only be added once."""
        store = EntryStore(tmp_path)
        entry = store.add(_entry(analysis_payload, "2024-05-01T20:00:00"))
        with pytest.raises(ValueError, match="already exists"):
            store.add(entry)

    def test_audio_path_not_persisted(self, tmp_path, analysis_payload):
        """Test the session audio location is dropped on save."""
        store = EntryStore(tmp_path)
        entry = _entry(analysis_payload, "2024-05-01T20:00:00")
        entry.audio_path = "/tmp/session.wav"
        store.add(entry)

        raw = json.loads((tmp_path / ENTRIES_FILE).read_text(encoding="utf-8"))
        assert "audioUrl" not in raw[0]
        assert "session.wav" not in json.dumps(raw)
        assert EntryStore(tmp_path).get(entry.id).audio_path is None

    def test_recent(self, tmp_path, analysis_payload):
        """Test recent() returns the newest three entries."""
        store = EntryStore(tmp_path)
        for day in range(1, 6):
            store.add(_entry(analysis_payload, f"2024-05-0{day}T20:00:00"))
        recent = store.recent()
        assert [e.timestamp[:10] for e in recent] == ["2024-05-05", "2024-05-04", "2024-05-03"]

    def test_entries_limit(self, tmp_path, analysis_payload):
        """Test the optional limit on entries()."""
        store = EntryStore(tmp_path)
        for day in range(1, 4):
            store.add(_entry(analysis_payload, f"2024-05-0{day}T20:00:00"))
        assert len(store.entries(limit=2)) == 2

    def test_find_by_prefix(self, tmp_path, analysis_payload):
        """Test entries can be looked up by a unique id prefix."""
        store = EntryStore(tmp_path)
        entry = store.add(_entry(analysis_payload, "2024-05-01T20:00:00"))
        assert store.find(entry.id[:6]) is entry
        assert store.find("zzzz") is None

    def test_find_ambiguous_prefix(self, tmp_path, analysis_payload):
        """Test an ambiguous prefix is reported."""
        store = EntryStore(tmp_path)
        a = _entry(analysis_payload, "2024-05-01T20:00:00")
        b = _entry(analysis_payload, "2024-05-02T20:00:00")
        a.id, b.id = "abc1", "abc2"
        store.add(a)
        store.add(b)
        with pytest.raises(ValueError, match="Ambiguous"):
            store.find("abc")


class TestSearch:
    """Tests for EntryStore.search."""

    @pytest.fixture
    def store(self, tmp_path, analysis_payload):
        store = EntryStore(tmp_path)
        store.add(
            _entry(
                analysis_payload,
                "2024-05-01T20:00:00",
                transcription="Je suis allé courir au parc.",
                summary="Une course matinale.",
                tags=["sport"],
            )
        )
        store.add(
            _entry(
                analysis_payload,
                "2024-05-02T20:00:00",
                transcription="Réunion difficile.",
                summary="Tension avec le manager.",
                tags=["Travail", "stress"],
            )
        )
        return store

    def test_matches_transcription(self, store):
        """Test search looks at the transcription."""
        assert len(store.search("PARC")) == 1

    def test_matches_summary(self, store):
        """Test search looks at the summary."""
        assert len(store.search("manager")) == 1

    def test_matches_tags(self, store):
        """Test search looks at tags, case-insensitively."""
        assert len(store.search("travail")) == 1

    def test_no_match(self, store):
        """Test unmatched queries return nothing."""
        assert store.search("vacances") == []

    def test_empty_query(self, store):
        """Test an empty query returns every entry."""
        assert len(store.search("")) == 2


class TestProgression:
    """Tests for EntryStore.progression."""

    def test_window_oldest_first(self, tmp_path, analysis_payload):
        """Test the last five analysed entries up to the current one are returned."""
        store = EntryStore(tmp_path)
        entries = [
            store.add(_entry(analysis_payload, f"2024-05-0{day}T20:00:00"))
            for day in range(1, 8)
        ]
        current = entries[5]

        history = store.progression(current.id)

        assert [e.timestamp[:10] for e in history] == [
            "2024-05-02",
            "2024-05-03",
            "2024-05-04",
            "2024-05-05",
            "2024-05-06",
        ]

    def test_skips_unanalysed(self, tmp_path, analysis_payload):
        """Test entries without analysis are left out."""
        store = EntryStore(tmp_path)
        store.add(JournalEntry(transcription="brouillon", timestamp="2024-05-01T10:00:00"))
        current = store.add(_entry(analysis_payload, "2024-05-02T20:00:00"))
        assert [e.id for e in store.progression(current.id)] == [current.id]

    def test_unknown_entry(self, tmp_path):
        """Test progression of a missing entry raises KeyError."""
        with pytest.raises(KeyError):
            EntryStore(tmp_path).progression("missing")


class TestFeedback:
    """Tests for EntryStore.record_feedback."""

    def test_record_feedback_persists(self, tmp_path, analysis_payload):
        """Test feedback is attached and written to disk."""
        store = EntryStore(tmp_path)
        entry = store.add(_entry(analysis_payload, "2024-05-01T20:00:00"))
        feedback = ExerciseFeedback("Je suis convaincu.", True, 9, "Bien.")

        store.record_feedback(entry.id, feedback)

        assert EntryStore(tmp_path).get(entry.id).exercise_feedback == feedback

    def test_unknown_entry(self, tmp_path):
        """Test feedback for a missing entry raises KeyError."""
        with pytest.raises(KeyError):
            EntryStore(tmp_path).record_feedback("missing", ExerciseFeedback("", False, 0, ""))


class TestCorruptData:
    """Tests for recovery from bad files."""

    def test_corrupt_file_moved_aside(self, tmp_path):
        """Test unreadable JSON is backed up and the store starts empty."""
        (tmp_path / ENTRIES_FILE).write_text("{oops", encoding="utf-8")

        store = EntryStore(tmp_path)

        assert len(store) == 0
        assert (tmp_path / (ENTRIES_FILE + ".corrupt")).exists()

    def test_bad_entries_skipped(self, tmp_path, analysis_payload):
        """Test individual broken records do not hide the rest."""
        good = _entry(analysis_payload, "2024-05-01T20:00:00").to_dict()
        (tmp_path / ENTRIES_FILE).write_text(
            json.dumps([good, {"transcription": "no id"}]), encoding="utf-8"
        )

        store = EntryStore(tmp_path)

        assert [e.id for e in store.entries()] == [good["id"]]

    def test_legacy_entries_load(self, tmp_path, analysis_payload):
        """Test records from older versions load with a legacy tip."""
        legacy = dict(analysis_payload)
        del legacy["transcription"]
        del legacy["deepAnalysis"]
        legacy["eloquenceTip"] = "Évitez les phrases trop longues."
        (tmp_path / ENTRIES_FILE).write_text(
            json.dumps(
                [
                    {
                        "id": "1714590000000",
                        "date": "2024-05-01T20:00:00.000Z",
                        "transcription": "Bonjour",
                        "analysis": legacy,
                        "isProcessing": False,
                    }
                ]
            ),
            encoding="utf-8",
        )

        entry = EntryStore(tmp_path).get("1714590000000")

        assert entry.analysis.eloquence_tip.goal_text == "Évitez les phrases trop longues."
        assert entry.analysis.deep_analysis == ""


class TestSettingsStore:
    """Tests for SettingsStore."""

    def test_defaults(self, tmp_path):
        """Test missing settings load as defaults."""
        assert SettingsStore(tmp_path).load() == AppSettings()

    def test_save_and_load(self, tmp_path):
        """Test settings survive a reload."""
        SettingsStore(tmp_path).save(AppSettings(True, "07:30"))
        assert SettingsStore(tmp_path).load() == AppSettings(True, "07:30")

    def test_invalid_settings_fall_back(self, tmp_path):
        """Test an invalid stored time falls back to defaults."""
        (tmp_path / "settings.json").write_text(
            json.dumps({"reminderEnabled": True, "reminderTime": "25:00"}), encoding="utf-8"
        )
        assert SettingsStore(tmp_path).load() == AppSettings()

    def test_last_reminder_date(self, tmp_path):
        """Test the last reminder day round-trips."""
        store = SettingsStore(tmp_path)
        assert store.last_reminder_date() is None
        store.set_last_reminder_date(date(2024, 5, 1))
        assert store.last_reminder_date() == date(2024, 5, 1)
