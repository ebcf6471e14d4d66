"""
Tests for trust stamps and the redaction ledger.
"""

import hashlib
import re

import pytest

from mirage.ledger import (
    LEDGER_CACHED,
    LEDGER_FAILED,
    LEDGER_RECORDED,
    LedgerEntry,
    LedgerWriter,
    LocalLedgerCache,
    SqliteLedgerStore,
    build_trust_stamp,
    new_stamp_id,
)


def make_entry(entry_id, timestamp):
    return LedgerEntry(
        id=entry_id,
        timestamp=timestamp,
        file_hash="ab" * 32,
        audience="Social Media",
        risk_score_before=65,
        risk_score_after=5,
        items_redacted=3,
        items_detected=4,
    )


class FailingStore:
    """Store whose every call fails."""

    def append(self, entry):
        raise ConnectionError("store offline")

    def list_recent(self, limit=50):
        raise ConnectionError("store offline")


@pytest.fixture
def sqlite_store(tmp_path):
    store = SqliteLedgerStore(tmp_path / "ledger.db")
    yield store
    store.close()


class TestTrustStamp:
    """Test stamp construction."""

    def test_stamp_id_format(self):
        """Test the MRG- prefix and eight-character suffix."""
        for _ in range(20):
            assert re.match(r"^MRG-[A-Z0-9]{8}$", new_stamp_id())

    def test_build_trust_stamp(self):
        """Test stamp fields."""
        data = b"protected image bytes"
        stamp = build_trust_stamp(
            output_bytes=data,
            audience_label="Social Media",
            risk_before=65,
            risk_after=5,
            items_detected=4,
            items_redacted=3,
            faces_protected=1,
            timestamp="2026-01-01T00:00:00+00:00",
        )

        assert stamp.output_hash_sha256 == hashlib.sha256(data).hexdigest()
        assert stamp.privacy_level == "SAFE"
        assert stamp.verified is True
        assert stamp.metadata_stripped is True
        assert stamp.timestamp == "2026-01-01T00:00:00+00:00"
        assert stamp.to_dict()["faces_protected"] == 1

    def test_privacy_level_follows_final_risk(self):
        stamp = build_trust_stamp(b"x", "Work / Slack", 80, 45, 5, 1, 0)
        assert stamp.privacy_level == "REVIEW NEEDED"

    def test_entry_from_stamp(self):
        stamp = build_trust_stamp(b"x", "Work / Slack", 80, 20, 5, 3, 0)
        entry = LedgerEntry.from_stamp(stamp)

        assert entry.id == stamp.stamp_id
        assert entry.file_hash == stamp.output_hash_sha256
        assert entry.audience == "Work / Slack"


class TestSqliteLedgerStore:
    """Test the durable store."""

    def test_newest_first(self, sqlite_store):
        """Test list_recent ordering."""
        sqlite_store.append(make_entry("MRG-AAAAAAAA", "2026-01-01T10:00:00+00:00"))
        sqlite_store.append(make_entry("MRG-CCCCCCCC", "2026-01-03T10:00:00+00:00"))
        sqlite_store.append(make_entry("MRG-BBBBBBBB", "2026-01-02T10:00:00+00:00"))

        entries = sqlite_store.list_recent()

        assert [e.id for e in entries] == ["MRG-CCCCCCCC", "MRG-BBBBBBBB", "MRG-AAAAAAAA"]
        assert entries[0] == make_entry("MRG-CCCCCCCC", "2026-01-03T10:00:00+00:00")

    def test_limit(self, sqlite_store):
        for i in range(5):
            sqlite_store.append(make_entry(f"MRG-0000000{i}", f"2026-01-0{i + 1}T00:00:00+00:00"))
        assert len(sqlite_store.list_recent(limit=2)) == 2


class TestLocalLedgerCache:
    """Test the fallback cache."""

    def test_bounded_newest_first(self, tmp_path):
        """Test the cache keeps only the newest entries."""
        cache = LocalLedgerCache(tmp_path / "cache.json", limit=3)
        for i in range(5):
            cache.append(make_entry(f"MRG-0000000{i}", f"2026-01-0{i + 1}T00:00:00+00:00"))

        assert [e.id for e in cache.load()] == ["MRG-00000004", "MRG-00000003", "MRG-00000002"]

    def test_empty(self, tmp_path):
        assert LocalLedgerCache(tmp_path / "missing.json").load() == []


class TestLedgerWriter:
    """Test store-then-cache degradation."""

    def test_recorded(self, sqlite_store, tmp_path):
        cache = LocalLedgerCache(tmp_path / "cache.json")
        writer = LedgerWriter(sqlite_store, cache)

        assert writer.write(make_entry("MRG-AAAAAAAA", "2026-01-01T00:00:00+00:00")) == LEDGER_RECORDED
        assert cache.load() == []
        assert len(writer.list_recent()) == 1

    def test_cached_when_store_fails(self, tmp_path):
        """Test the entry lands in the cache when the store is down."""
        cache = LocalLedgerCache(tmp_path / "cache.json")
        writer = LedgerWriter(FailingStore(), cache)

        assert writer.write(make_entry("MRG-AAAAAAAA", "2026-01-01T00:00:00+00:00")) == LEDGER_CACHED
        assert [e.id for e in writer.list_recent()] == ["MRG-AAAAAAAA"]

    def test_cached_without_store(self, tmp_path):
        writer = LedgerWriter(None, LocalLedgerCache(tmp_path / "cache.json"))
        assert writer.write(make_entry("MRG-AAAAAAAA", "2026-01-01T00:00:00+00:00")) == LEDGER_CACHED

    def test_failed(self, tmp_path):
        """Test the status when neither destination accepts the entry."""
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        writer = LedgerWriter(FailingStore(), LocalLedgerCache(blocker / "cache.json"))

        assert writer.write(make_entry("MRG-AAAAAAAA", "2026-01-01T00:00:00+00:00")) == LEDGER_FAILED
