"""
Registry event log.

Every successful state change produces one RegistryEvent for external
indexers. Events are appended to a hash chain: each entry hash links the
canonical payload hash to the previous entry, so any edit or deletion in an
exported log is detectable with ``verify_event_chain``.

Backends:
- InMemoryEventLog: development and tests
- SqliteEventLog: durable append-only table
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .canonicalization import canonicalize
from .hashing import chain_entry_hash, sha256_hex
from .models import format_ts, parse_ts

logger = logging.getLogger(__name__)


class EntityKind:
    PASSPORT = "passport"
    IDENTITY = "identity"
    MATERIAL_BATCH = "material_batch"
    PROCESS_EVENT = "process_event"
    VALIDATOR = "validator"
    VALIDATION = "validation"
    LAB = "lab"
    TEST_RESULT = "test_result"


@dataclass
class RegistryEvent:
    """Structured notification for a successful state change."""
    entity_kind: str
    entity_id: str
    operation: str
    timestamp: datetime
    fields: Dict[str, Any] = field(default_factory=dict)
    seq: Optional[int] = None
    payload_hash: Optional[str] = None
    prev_entry_hash: Optional[str] = None
    entry_hash: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        """The hashed part of the event."""
        return {
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "operation": self.operation,
            "timestamp": format_ts(self.timestamp),
            "fields": self.fields,
        }

    def to_dict(self) -> Dict[str, Any]:
        d = self.payload()
        d.update({
            "seq": self.seq,
            "payload_hash": self.payload_hash,
            "prev_entry_hash": self.prev_entry_hash,
            "entry_hash": self.entry_hash,
        })
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RegistryEvent':
        return cls(
            entity_kind=data["entity_kind"],
            entity_id=str(data["entity_id"]),
            operation=data["operation"],
            timestamp=parse_ts(data["timestamp"]),
            fields=dict(data.get("fields") or {}),
            seq=data.get("seq"),
            payload_hash=data.get("payload_hash"),
            prev_entry_hash=data.get("prev_entry_hash"),
            entry_hash=data.get("entry_hash"),
        )


def seal_event(event: RegistryEvent, seq: int, prev_entry_hash: Optional[str]) -> RegistryEvent:
    event.seq = seq
    event.payload_hash = sha256_hex(canonicalize(event.payload()))
    event.prev_entry_hash = prev_entry_hash
    event.entry_hash = chain_entry_hash(prev_entry_hash, event.payload_hash)
    return event


def verify_event_chain(entries: List[Union[RegistryEvent, Dict[str, Any]]]) -> Tuple[bool, Optional[int]]:
    """
    Recompute the hash chain of an exported log.

    Returns:
        (True, None) if intact, else (False, seq of the first bad entry)
    """
    prev = None
    for i, entry in enumerate(entries):
        event = entry if isinstance(entry, RegistryEvent) else RegistryEvent.from_dict(entry)
        seq = event.seq if event.seq is not None else i
        payload_hash = sha256_hex(canonicalize(event.payload()))
        if event.seq != i or payload_hash != event.payload_hash or event.prev_entry_hash != prev:
            return False, seq
        if event.entry_hash != chain_entry_hash(prev, payload_hash):
            return False, seq
        prev = event.entry_hash
    return True, None


class EventLog(ABC):
    """
    Append-only event sink.

    Subscribers are called synchronously after each append; a failing
    subscriber is logged and does not affect the log.
    """

    def __init__(self):
        self._subscribers: List[Callable[[RegistryEvent], None]] = []

    def subscribe(self, callback: Callable[[RegistryEvent], None]) -> None:
        self._subscribers.append(callback)

    def append(self, event: RegistryEvent) -> RegistryEvent:
        sealed = self._append(event)
        for callback in list(self._subscribers):
            try:
                callback(sealed)
            except Exception:
                logger.exception("event subscriber failed for %s %s", sealed.entity_kind, sealed.operation)
        return sealed

    @abstractmethod
    def _append(self, event: RegistryEvent) -> RegistryEvent:
        pass

    @abstractmethod
    def entries(self) -> List[RegistryEvent]:
        pass

    def head(self) -> Optional[str]:
        entries = self.entries()
        return entries[-1].entry_hash if entries else None

    def proof(self) -> Dict[str, Any]:
        entries = self.entries()
        ok, bad_seq = verify_event_chain(entries)
        return {
            "entries": len(entries),
            "head_entry_hash": entries[-1].entry_hash if entries else None,
            "chain_valid": ok,
            "first_invalid_seq": bad_seq,
        }


class InMemoryEventLog(EventLog):

    def __init__(self):
        super().__init__()
        self._events: List[RegistryEvent] = []
        self._lock = threading.Lock()

    def _append(self, event: RegistryEvent) -> RegistryEvent:
        with self._lock:
            prev = self._events[-1].entry_hash if self._events else None
            sealed = seal_event(event, len(self._events), prev)
            self._events.append(sealed)
            return sealed

    def entries(self) -> List[RegistryEvent]:
        with self._lock:
            return list(self._events)


class SqliteEventLog(EventLog):
    """Hash-chained event table in SQLite (thread-local connections, WAL)."""

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self._local = threading.local()
        self._write_lock = threading.Lock()
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS registry_events (
                seq INTEGER PRIMARY KEY,
                entity_kind TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                operation TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                fields_json TEXT NOT NULL,
                payload_hash TEXT NOT NULL,
                prev_entry_hash TEXT,
                entry_hash TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_registry_events_entity
            ON registry_events(entity_kind, entity_id);""")

    def _connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return conn

    @contextmanager
    def _transaction(self):
        conn = self._connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _append(self, event: RegistryEvent) -> RegistryEvent:
        with self._write_lock, self._transaction() as conn:
            row = conn.execute(
                "SELECT seq, entry_hash FROM registry_events ORDER BY seq DESC LIMIT 1"
            ).fetchone()
            seq = row["seq"] + 1 if row else 0
            sealed = seal_event(event, seq, row["entry_hash"] if row else None)
            conn.execute(
                "INSERT INTO registry_events(seq, entity_kind, entity_id, operation, timestamp, "
                "fields_json, payload_hash, prev_entry_hash, entry_hash) VALUES(?,?,?,?,?,?,?,?,?)",
                (sealed.seq, sealed.entity_kind, sealed.entity_id, sealed.operation,
                 format_ts(sealed.timestamp), json.dumps(sealed.fields, sort_keys=True),
                 sealed.payload_hash, sealed.prev_entry_hash, sealed.entry_hash),
            )
            return sealed

    def entries(self) -> List[RegistryEvent]:
        cur = self._connection().execute(
            "SELECT seq, entity_kind, entity_id, operation, timestamp, fields_json, "
            "payload_hash, prev_entry_hash, entry_hash FROM registry_events ORDER BY seq ASC"
        )
        return [
            RegistryEvent(
                entity_kind=row["entity_kind"],
                entity_id=row["entity_id"],
                operation=row["operation"],
                timestamp=parse_ts(row["timestamp"]),
                fields=json.loads(row["fields_json"]),
                seq=row["seq"],
                payload_hash=row["payload_hash"],
                prev_entry_hash=row["prev_entry_hash"],
                entry_hash=row["entry_hash"],
            )
            for row in cur.fetchall()
        ]

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
