"""
SQLite snapshot persistence.

Saves a whole registry into one SQLite file and loads it back. Every entity
is stored as its canonical JSON next to the keys it is looked up by, one
table per relation:

    passports, package_key_index, provenance_events, material_batches,
    validation_records, validators, labs, test_results

A save replaces the previous snapshot in a single transaction; either every
table is written or none is. Saves through one store are serialized, and
each reads the registry only once it holds the store, so the last save to
return always reflects every write that finished before it was called.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from .events import EventLog
from .models import (
    Lab,
    MaterialBatch,
    Passport,
    ProcessEvent,
    TestResult,
    ValidationRecord,
    Validator,
    utc_now,
)
from .registry import ProvenanceRegistry, RegistryConfig

logger = logging.getLogger(__name__)

SCHEMA = (
    """CREATE TABLE IF NOT EXISTS package_key_index (
        package_key TEXT PRIMARY KEY,
        passport_id INTEGER NOT NULL UNIQUE
    );""",
    """CREATE TABLE IF NOT EXISTS passports (
        passport_id INTEGER PRIMARY KEY,
        owner TEXT NOT NULL,
        record_json TEXT NOT NULL
    );""",
    """CREATE TABLE IF NOT EXISTS provenance_events (
        passport_id INTEGER NOT NULL,
        sequence INTEGER NOT NULL,
        record_json TEXT NOT NULL,
        PRIMARY KEY (passport_id, sequence)
    );""",
    """CREATE TABLE IF NOT EXISTS material_batches (
        passport_id INTEGER NOT NULL,
        sequence INTEGER NOT NULL,
        record_json TEXT NOT NULL,
        PRIMARY KEY (passport_id, sequence)
    );""",
    """CREATE TABLE IF NOT EXISTS validation_records (
        passport_id INTEGER NOT NULL,
        position INTEGER NOT NULL,
        validator_identity TEXT NOT NULL,
        record_json TEXT NOT NULL,
        PRIMARY KEY (passport_id, position)
    );""",
    """CREATE TABLE IF NOT EXISTS validators (
        identity TEXT PRIMARY KEY,
        record_json TEXT NOT NULL
    );""",
    """CREATE TABLE IF NOT EXISTS labs (
        identity TEXT PRIMARY KEY,
        record_json TEXT NOT NULL
    );""",
    """CREATE TABLE IF NOT EXISTS test_results (
        test_id INTEGER PRIMARY KEY,
        passport_id INTEGER NOT NULL,
        record_json TEXT NOT NULL
    );""",
)

TABLES = ("package_key_index", "passports", "provenance_events", "material_batches",
          "validation_records", "validators", "labs", "test_results")


def _dump(record) -> str:
    return json.dumps(record.to_dict(), sort_keys=True, separators=(",", ":"))


class SqliteSnapshotStore:

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._local = threading.local()
        self._save_lock = threading.Lock()
        with self._transaction() as conn:
            for stmt in SCHEMA:
                conn.execute(stmt)

    def _connection(self) -> sqlite3.Connection:
        """Thread-local connection, reused within a thread."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
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

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def save(self, registry: ProvenanceRegistry) -> Dict[str, int]:
        """
        Replace the stored snapshot with the registry's current state.

        Returns:
            Row count per table
        """
        with self._save_lock:
            return self._save(registry)

    def _save(self, registry: ProvenanceRegistry) -> Dict[str, int]:
        # Passports before keys: a key is allocated before its passport exists
        passport_ids = sorted(registry.passports.all_ids())
        passports = [registry.passports.get(i) for i in passport_ids]
        keys = registry.identity.keys()
        counts = {t: 0 for t in TABLES}

        with self._transaction() as conn:
            for table in TABLES:
                conn.execute(f"DELETE FROM {table}")

            for key, passport_id in keys.items():
                conn.execute("INSERT INTO package_key_index(package_key, passport_id) VALUES(?,?)",
                             (key, passport_id))
                counts["package_key_index"] += 1

            for p in passports:
                conn.execute("INSERT INTO passports(passport_id, owner, record_json) VALUES(?,?,?)",
                             (p.id, p.owner, _dump(p)))
                counts["passports"] += 1
                for e in registry.provenance.history(p.id):
                    conn.execute("INSERT INTO provenance_events(passport_id, sequence, record_json) "
                                 "VALUES(?,?,?)", (p.id, e.sequence, _dump(e)))
                    counts["provenance_events"] += 1
                for b in registry.provenance.materials(p.id):
                    conn.execute("INSERT INTO material_batches(passport_id, sequence, record_json) "
                                 "VALUES(?,?,?)", (p.id, b.sequence, _dump(b)))
                    counts["material_batches"] += 1
                for pos, r in enumerate(registry.validations.records(p.id)):
                    conn.execute("INSERT INTO validation_records(passport_id, position, validator_identity, "
                                 "record_json) VALUES(?,?,?,?)", (p.id, pos, r.validator_identity, _dump(r)))
                    counts["validation_records"] += 1

            for v in registry.validators.list_validators():
                conn.execute("INSERT INTO validators(identity, record_json) VALUES(?,?)", (v.identity, _dump(v)))
                counts["validators"] += 1
            for lab in registry.labs.list_labs():
                conn.execute("INSERT INTO labs(identity, record_json) VALUES(?,?)", (lab.identity, _dump(lab)))
                counts["labs"] += 1
            for t in registry.lab_tests.all_tests():
                conn.execute("INSERT INTO test_results(test_id, passport_id, record_json) VALUES(?,?,?)",
                             (t.test_id, t.passport_id, _dump(t)))
                counts["test_results"] += 1

        logger.info("snapshot saved to %s: %s", self.path, counts)
        return counts

    def load(
        self,
        config: Optional[RegistryConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        event_log: Optional[EventLog] = None,
    ) -> ProvenanceRegistry:
        """Build a fresh registry from the stored snapshot (empty if nothing was saved)."""
        registry = ProvenanceRegistry(config=config, clock=clock, event_log=event_log)
        conn = self._connection()

        def rows(sql):
            return [json.loads(r["record_json"]) for r in conn.execute(sql).fetchall()]

        mapping = {r["package_key"]: r["passport_id"]
                   for r in conn.execute("SELECT package_key, passport_id FROM package_key_index")}
        registry.identity.restore(mapping)
        for d in rows("SELECT record_json FROM passports ORDER BY passport_id"):
            registry.passports.restore(Passport.from_dict(d))
        registry.provenance.restore(
            [ProcessEvent.from_dict(d) for d in
             rows("SELECT record_json FROM provenance_events ORDER BY passport_id, sequence")],
            [MaterialBatch.from_dict(d) for d in
             rows("SELECT record_json FROM material_batches ORDER BY passport_id, sequence")],
        )
        registry.validators.restore(
            [Validator.from_dict(d) for d in rows("SELECT record_json FROM validators ORDER BY identity")])
        registry.validations.restore(
            [ValidationRecord.from_dict(d) for d in
             rows("SELECT record_json FROM validation_records ORDER BY passport_id, position")])
        registry.labs.restore([Lab.from_dict(d) for d in rows("SELECT record_json FROM labs ORDER BY identity")])
        registry.lab_tests.restore(
            [TestResult.from_dict(d) for d in rows("SELECT record_json FROM test_results ORDER BY test_id")])

        logger.info("snapshot loaded from %s: %d passports", self.path, len(registry.passports.all_ids()))
        return registry
