# app/repositories/db.py
# Persistent state for link passes, in one SQLite file:
#   placements  content key -> single-byte lifecycle marker (no row = Absent)
#   path_cache  source path -> content key (never invalidated; assumes files don't change in place)
#   runs        one row per link pass
# The two main tables are independent: placements can be wiped without touching path_cache.
from __future__ import annotations

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from app.core.errors import StoreError

SCHEMA = """
CREATE TABLE IF NOT EXISTS placements (
  content_key  BLOB PRIMARY KEY,
  state        BLOB NOT NULL,
  run_id       TEXT,
  source_path  TEXT,
  target_path  TEXT,
  updated_at   TEXT
);
CREATE TABLE IF NOT EXISTS path_cache (
  source_path  TEXT PRIMARY KEY,
  content_key  BLOB NOT NULL
);
CREATE TABLE IF NOT EXISTS runs (
  id           TEXT PRIMARY KEY,
  input_root   TEXT,
  output_root  TEXT,
  started_at   TEXT,
  finished_at  TEXT,
  status       TEXT
);
"""


class PlacementState(IntEnum):
    ABSENT = 0
    DISCOVERED = 1
    COPIED = 2

    @property
    def marker(self) -> Optional[bytes]:
        """Stored byte for this state; Absent is never stored."""
        return None if self is PlacementState.ABSENT else bytes([self.value])

    @classmethod
    def from_marker(cls, raw: Optional[bytes]) -> "PlacementState":
        if raw is None:
            return cls.ABSENT
        if len(raw) != 1 or raw[0] not in (1, 2):
            raise StoreError(f"corrupt placement marker {raw!r}")
        return cls(raw[0])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StateStore:
    """
    Thread-safe handle on the state database.
    One connection, one lock; every write runs in its own BEGIN IMMEDIATE
    transaction so a crash never leaves a half-applied transition behind.
    Any sqlite3.Error surfaces as StoreError and is never retried.
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.path = Path(db_path)
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self.path), isolation_level=None, check_same_thread=False
            )
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA busy_timeout=5000;")
            self._conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"cannot open state database {self.path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "StateStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---------- plumbing ----------

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction; rolls back on any exception."""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(f"cannot begin transaction: {e}") from e
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StoreError(f"commit failed: {e}") from e

    def _read(self, sql: str, params=()) -> List[tuple]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _write(self, fn):
        try:
            with self._tx() as conn:
                return fn(conn)
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    # ---------- path cache ----------

    def lookup_cached_key(self, source_path: str) -> Optional[bytes]:
        rows = self._read(
            "SELECT content_key FROM path_cache WHERE source_path=?", (source_path,)
        )
        return bytes(rows[0][0]) if rows else None

    def record_cached_key(self, source_path: str, key: bytes) -> None:
        """Idempotent upsert."""
        self._write(lambda c: c.execute(
            "INSERT OR REPLACE INTO path_cache (source_path, content_key) VALUES (?, ?)",
            (source_path, key),
        ))

    def cache_size(self) -> int:
        return self._read("SELECT COUNT(*) FROM path_cache")[0][0]

    # ---------- placement state machine ----------

    def get_state(self, key: bytes) -> PlacementState:
        rows = self._read("SELECT state FROM placements WHERE content_key=?", (key,))
        return PlacementState.from_marker(bytes(rows[0][0]) if rows else None)

    def get_placement(self, key: bytes) -> Optional[Dict[str, object]]:
        rows = self._read(
            """
            SELECT state, run_id, source_path, target_path, updated_at
            FROM placements WHERE content_key=?
            """,
            (key,),
        )
        if not rows:
            return None
        state, run_id, source_path, target_path, updated_at = rows[0]
        return {
            "state": PlacementState.from_marker(bytes(state)),
            "run_id": run_id,
            "source_path": source_path,
            "target_path": target_path,
            "updated_at": updated_at,
        }

    def compare_and_transition(
        self,
        key: bytes,
        expected: PlacementState,
        new: PlacementState,
        *,
        source_path: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> bool:
        """
        Atomically: if the stored state for key is exactly `expected`, write `new`
        and return True; otherwise change nothing and return False.
        With source_path, the path-cache entry is written in the same transaction.
        Only forward transitions exist; asking for anything else is a ValueError.
        """
        if new <= expected:
            raise ValueError(f"illegal transition {expected.name} -> {new.name}")

        def op(conn: sqlite3.Connection) -> bool:
            row = conn.execute(
                "SELECT state FROM placements WHERE content_key=?", (key,)
            ).fetchone()
            current = PlacementState.from_marker(bytes(row[0]) if row else None)
            if current is not expected:
                return False
            if row is None:
                conn.execute(
                    """
                    INSERT INTO placements (content_key, state, run_id, source_path, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (key, new.marker, run_id, source_path, _now()),
                )
            else:
                conn.execute(
                    """
                    UPDATE placements
                    SET state=?, run_id=COALESCE(?, run_id),
                        source_path=COALESCE(?, source_path), updated_at=?
                    WHERE content_key=?
                    """,
                    (new.marker, run_id, source_path, _now(), key),
                )
            if source_path is not None:
                conn.execute(
                    "INSERT OR REPLACE INTO path_cache (source_path, content_key) VALUES (?, ?)",
                    (source_path, key),
                )
            return True

        return self._write(op)

    def reclaim(self, key: bytes, run_id: str, source_path: Optional[str] = None) -> bool:
        """
        Take over a Discovered claim left by another run (one that died before
        reaching Copied). Succeeds for exactly one caller; the state stays Discovered.
        """
        def op(conn: sqlite3.Connection) -> bool:
            cur = conn.execute(
                """
                UPDATE placements
                SET run_id=?, updated_at=?
                WHERE content_key=? AND state=? AND (run_id IS NULL OR run_id != ?)
                """,
                (run_id, _now(), key, PlacementState.DISCOVERED.marker, run_id),
            )
            if cur.rowcount != 1:
                return False
            if source_path is not None:
                conn.execute(
                    "INSERT OR REPLACE INTO path_cache (source_path, content_key) VALUES (?, ?)",
                    (source_path, key),
                )
            return True

        return self._write(op)

    def record_target(self, key: bytes, target: Union[str, Path]) -> None:
        """Remember where a Discovered key is about to be linked."""
        def op(conn: sqlite3.Connection) -> None:
            cur = conn.execute(
                "UPDATE placements SET target_path=?, updated_at=? WHERE content_key=? AND state=?",
                (str(target), _now(), key, PlacementState.DISCOVERED.marker),
            )
            if cur.rowcount != 1:
                raise StoreError(f"no Discovered placement for {key.hex()[:8]}")

        self._write(op)

    def reset_placements(self) -> int:
        """Forget every placement (path_cache is kept). Returns rows removed."""
        return self._write(lambda c: c.execute("DELETE FROM placements").rowcount)

    def state_counts(self) -> Dict[PlacementState, int]:
        counts = {PlacementState.DISCOVERED: 0, PlacementState.COPIED: 0}
        for marker, cnt in self._read("SELECT state, COUNT(*) FROM placements GROUP BY state"):
            counts[PlacementState.from_marker(bytes(marker))] = cnt
        return counts

    def keys_in_state(self, state: PlacementState) -> List[bytes]:
        rows = self._read("SELECT content_key FROM placements WHERE state=?", (state.marker,))
        return [bytes(r[0]) for r in rows]

    # ---------- runs ----------

    def begin_run(self, input_root: str, output_root: str) -> str:
        """Create a runs row and return its UUID."""
        run_id = str(uuid.uuid4())
        self._write(lambda c: c.execute(
            "INSERT INTO runs (id, input_root, output_root, started_at, status) VALUES (?, ?, ?, ?, ?)",
            (run_id, input_root, output_root, _now(), "running"),
        ))
        return run_id

    def finish_run(self, run_id: str, status: str = "ok") -> None:
        self._write(lambda c: c.execute(
            "UPDATE runs SET finished_at=?, status=? WHERE id=?",
            (_now(), status, run_id),
        ))

    def recent_runs(self, limit: int = 20) -> List[Dict[str, object]]:
        rows = self._read(
            """
            SELECT id, input_root, output_root, started_at, finished_at, status
            FROM runs
            ORDER BY started_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        cols = ("id", "input_root", "output_root", "started_at", "finished_at", "status")
        return [dict(zip(cols, r)) for r in rows]
