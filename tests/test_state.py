"""Tests for resume index persistence."""

import json
import logging
from pathlib import Path

import pytest

from logtally import ResumeIndex, ResumeStore, StateError
from logtally.state import FORMAT_VERSION


@pytest.fixture
def store(tmp_path: Path) -> ResumeStore:
    """Resume store in a temporary directory."""
    return ResumeStore(tmp_path / "resume.json")


class TestLoad:
    """Tests for loading resume indexes."""

    def test_missing_file_gives_zero_index(self, store: ResumeStore):
        """A missing store means start from scratch."""
        index = store.load("mail")

        assert index == ResumeIndex.empty()
        assert index.line_number == 0
        assert index.fingerprint == ""
        assert index.is_empty

    def test_missing_source_gives_zero_index(self, store: ResumeStore):
        """A source never stored starts from scratch."""
        store.store("web", 3, "web line")

        assert store.load("mail").is_empty

    def test_roundtrip(self, store: ResumeStore):
        """A stored index loads back."""
        store.store("mail", 41, "Apr 21 15:14:44 www pop3d: LOGOUT")

        index = store.load("mail")
        assert index.line_number == 41
        assert index.fingerprint == "Apr 21 15:14:44 www pop3d: LOGOUT"
        assert index.updated_at is not None
        assert not index.is_empty

    def test_invalid_json_warns(self, store: ResumeStore, caplog):
        """Corrupt JSON is a fresh start, logged as a warning."""
        store.path.write_text("{not json")

        with caplog.at_level(logging.WARNING, logger="logtally.state"):
            index = store.load("mail")

        assert index.is_empty
        assert "unreadable" in caplog.text

    def test_wrong_format_version(self, store: ResumeStore):
        """A store of another format version is ignored."""
        store.path.write_text(json.dumps({
            "format_version": "0.1",
            "sources": {"mail": {"line_number": 5, "fingerprint": "x"}},
        }))

        assert store.load("mail").is_empty

    @pytest.mark.parametrize("entry", [
        {"line_number": -1, "fingerprint": "x"},
        {"line_number": "5", "fingerprint": "x"},
        {"line_number": True, "fingerprint": "x"},
        {"line_number": 5, "fingerprint": None},
        {"fingerprint": "x"},
        ["not", "an", "object"],
    ])
    def test_corrupt_entry(self, store: ResumeStore, entry, caplog):
        """A malformed entry is a fresh start."""
        store.path.write_text(json.dumps({
            "format_version": FORMAT_VERSION,
            "sources": {"mail": entry},
        }))

        with caplog.at_level(logging.WARNING, logger="logtally.state"):
            assert store.load("mail").is_empty
        assert "corrupt" in caplog.text

    def test_top_level_not_object(self, store: ResumeStore):
        """A JSON array is not a valid store."""
        store.path.write_text("[]")

        assert store.load("mail").is_empty


class TestStore:
    """Tests for writing resume indexes."""

    def test_writes_compact_json(self, store: ResumeStore):
        """The store is compact JSON with a format version."""
        store.store("mail", 7, "line seven")

        content = store.path.read_text()
        data = json.loads(content)
        assert data["format_version"] == FORMAT_VERSION
        assert data["sources"]["mail"]["line_number"] == 7
        assert data["sources"]["mail"]["fingerprint"] == "line seven"
        assert ": " not in content

    def test_preserves_other_sources(self, store: ResumeStore):
        """Storing one source keeps the others."""
        store.store("mail", 1, "a")
        store.store("web", 2, "b")
        store.store("mail", 3, "c")

        assert store.load("mail").line_number == 3
        assert store.load("web").line_number == 2

    def test_overwrites_corrupt_store(self, store: ResumeStore):
        """A corrupt store is replaced by a valid one."""
        store.path.write_text("garbage")

        store.store("mail", 0, "first")

        assert store.load("mail").fingerprint == "first"

    def test_creates_parent_directory(self, tmp_path: Path):
        """Missing parent directories are created."""
        store = ResumeStore(tmp_path / "var" / "lib" / "resume.json")

        store.store("mail", 0, "x")

        assert store.path.exists()

    def test_no_temporary_files_left(self, store: ResumeStore):
        """The atomic write leaves no temporary file behind."""
        store.store("mail", 0, "x")

        assert [p.name for p in store.path.parent.iterdir()] == ["resume.json"]

    def test_unwritable_raises_state_error(self, tmp_path: Path):
        """A store that cannot be written raises StateError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = ResumeStore(blocker / "resume.json")

        with pytest.raises(StateError):
            store.store("mail", 0, "x")

    def test_negative_line_number(self, store: ResumeStore):
        """Negative line numbers are rejected."""
        with pytest.raises(ValueError):
            store.store("mail", -1, "x")

    def test_fingerprint_with_unicode(self, store: ResumeStore):
        """Fingerprints keep non-ASCII text."""
        store.store("mail", 0, "user=jörg@exämple.test")

        assert store.load("mail").fingerprint == "user=jörg@exämple.test"


class TestResetAndList:
    """Tests for reset() and sources()."""

    def test_reset_existing(self, store: ResumeStore):
        """reset() removes a stored source."""
        store.store("mail", 4, "x")

        assert store.reset("mail") is True
        assert store.load("mail").is_empty

    def test_reset_missing(self, store: ResumeStore):
        """reset() of an unknown source returns False."""
        assert store.reset("mail") is False

    def test_sources_lists_valid_entries(self, store: ResumeStore):
        """sources() skips malformed entries."""
        store.path.write_text(json.dumps({
            "format_version": FORMAT_VERSION,
            "sources": {
                "mail": {"line_number": 1, "fingerprint": "a"},
                "web": {"line_number": "bad", "fingerprint": "b"},
            },
        }))

        assert list(store.sources()) == ["mail"]
