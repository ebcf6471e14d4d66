"""
Trust stamps and the redaction ledger.

Every completed export produces an immutable TrustStamp and a LedgerEntry.
Entries go to a durable store; when the store fails they are kept in a
bounded local JSON cache instead.
"""

import hashlib
import json
import secrets
import sqlite3
import string
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .logger import LoggerMixin
from .risk import privacy_level

STAMP_PREFIX = "MRG-"
STAMP_ALPHABET = string.ascii_uppercase + string.digits

LEDGER_RECORDED = "recorded"
LEDGER_CACHED = "cached"
LEDGER_FAILED = "failed"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS ledger (
    id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    file_hash TEXT NOT NULL,
    audience TEXT NOT NULL,
    risk_score_before REAL NOT NULL,
    risk_score_after REAL NOT NULL,
    items_redacted INTEGER NOT NULL,
    items_detected INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_ledger_timestamp ON ledger(timestamp);
"""

_COLUMNS = (
    "id", "timestamp", "file_hash", "audience",
    "risk_score_before", "risk_score_after", "items_redacted", "items_detected",
)


@dataclass(frozen=True)
class TrustStamp:
    """Summary certificate of one completed redaction."""
    stamp_id: str
    timestamp: str
    audience_profile: str
    output_hash_sha256: str
    privacy_level: str
    risk_score_before: int
    risk_score_after: int
    items_detected: int
    items_redacted: int
    metadata_stripped: bool
    faces_protected: int
    verified: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LedgerEntry:
    """Row persisted for every export."""
    id: str
    timestamp: str
    file_hash: str
    audience: str
    risk_score_before: float
    risk_score_after: float
    items_redacted: int
    items_detected: int

    @classmethod
    def from_stamp(cls, stamp: TrustStamp) -> "LedgerEntry":
        return cls(
            id=stamp.stamp_id,
            timestamp=stamp.timestamp,
            file_hash=stamp.output_hash_sha256,
            audience=stamp.audience_profile,
            risk_score_before=stamp.risk_score_before,
            risk_score_after=stamp.risk_score_after,
            items_redacted=stamp.items_redacted,
            items_detected=stamp.items_detected,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEntry":
        return cls(**{key: data[key] for key in _COLUMNS})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_stamp_id() -> str:
    return STAMP_PREFIX + "".join(secrets.choice(STAMP_ALPHABET) for _ in range(8))


def compute_output_hash(data: bytes) -> str:
    """SHA-256 hex digest of the exported bytes."""
    return hashlib.sha256(data).hexdigest()


def build_trust_stamp(
    output_bytes: bytes,
    audience_label: str,
    risk_before: int,
    risk_after: int,
    items_detected: int,
    items_redacted: int,
    faces_protected: int,
    metadata_stripped: bool = True,
    timestamp: Optional[str] = None
) -> TrustStamp:
    """Build the stamp for an export; the privacy level follows the final risk."""
    return TrustStamp(
        stamp_id=new_stamp_id(),
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
        audience_profile=audience_label,
        output_hash_sha256=compute_output_hash(output_bytes),
        privacy_level=privacy_level(risk_after),
        risk_score_before=risk_before,
        risk_score_after=risk_after,
        items_detected=items_detected,
        items_redacted=items_redacted,
        metadata_stripped=metadata_stripped,
        faces_protected=faces_protected,
    )


class SqliteLedgerStore:
    """Durable ledger in a local SQLite database."""

    def __init__(self, db_path: Union[str, Path] = "ledger.db"):
        db_path = Path(db_path).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self._db = sqlite3.connect(str(db_path), check_same_thread=False)
        self._db.executescript(_SCHEMA)

    def append(self, entry: LedgerEntry) -> None:
        self._db.execute(
            f"INSERT INTO ledger ({', '.join(_COLUMNS)}) VALUES ({', '.join('?' * len(_COLUMNS))})",
            tuple(getattr(entry, column) for column in _COLUMNS),
        )
        self._db.commit()

    def list_recent(self, limit: int = 50) -> List[LedgerEntry]:
        """Entries newest first."""
        rows = self._db.execute(
            f"SELECT {', '.join(_COLUMNS)} FROM ledger ORDER BY timestamp DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [LedgerEntry(*row) for row in rows]

    def close(self) -> None:
        self._db.close()


class LocalLedgerCache:
    """Bounded newest-first JSON list used when the store is unavailable."""

    def __init__(self, path: Union[str, Path], limit: int = 50):
        self.path = Path(path).expanduser()
        self.limit = limit

    def load(self) -> List[LedgerEntry]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [LedgerEntry.from_dict(item) for item in json.load(f)]

    def append(self, entry: LedgerEntry) -> None:
        entries = [entry] + self.load()
        entries = entries[:self.limit]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump([e.to_dict() for e in entries], f, indent=2)

    def list_recent(self, limit: int = 50) -> List[LedgerEntry]:
        return self.load()[:limit]


class LedgerWriter(LoggerMixin):
    """Appends entries to the store, degrading to the local cache on failure."""

    def __init__(self, store: Optional[Any], cache: LocalLedgerCache):
        self.store = store
        self.cache = cache

    def write(self, entry: LedgerEntry) -> str:
        """
        Persist one entry.

        Returns:
            "recorded" when the store accepted it, "cached" when it went to the
            local cache, "failed" when neither could take it
        """
        if self.store is not None:
            try:
                self.store.append(entry)
                self.log_info(f"Ledger entry {entry.id} recorded")
                return LEDGER_RECORDED
            except Exception as e:
                self.log_warning(f"Ledger store failed, caching entry {entry.id} locally: {e}")

        try:
            self.cache.append(entry)
            return LEDGER_CACHED
        except Exception as e:
            self.log_error(f"Could not cache ledger entry {entry.id}: {e}")
            return LEDGER_FAILED

    def list_recent(self, limit: int = 50) -> List[LedgerEntry]:
        """Recent entries from the store, or from the cache if the store fails."""
        if self.store is not None:
            try:
                return self.store.list_recent(limit)
            except Exception as e:
                self.log_warning(f"Ledger store unavailable, reading local cache: {e}")
        return self.cache.list_recent(limit)
