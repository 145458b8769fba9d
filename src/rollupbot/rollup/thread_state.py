"""Per-thread checkpoint persistence for the project rollup.

Tables are created by db.init_db() - the store calls it once on construction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path

from rollupbot.db import DB_PATH, init_db

_LOG = logging.getLogger(__name__)

MEMORY_SCHEMA_VERSION = 1


class StaleCheckpointError(RuntimeError):
    """Raised when a cursor commit lost a race with another writer."""

    def __init__(self, thread_id: int, expected: int | None) -> None:
        self.thread_id = thread_id
        self.expected = expected
        super().__init__(
            f"Checkpoint for thread {thread_id} moved away from {expected}; commit rejected"
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(raw: str | None) -> datetime | None:
    if not raw:
        return None
    return datetime.fromisoformat(raw)


@dataclass
class ThreadMemory:
    """Context carried from one summary to the next.

    Each commit replaces the whole payload. ``version`` lets readers tell an
    older-shaped payload apart from "no memory at all" (which is ``None``).
    """

    summary: str
    key_points: list[str] = field(default_factory=list)
    contributors: list[str] = field(default_factory=list)
    last_active_at: str | None = None
    version: int = MEMORY_SCHEMA_VERSION

    def to_json(self) -> str:
        return json.dumps(
            {
                "version": self.version,
                "summary": self.summary,
                "key_points": self.key_points,
                "contributors": self.contributors,
                "last_active_at": self.last_active_at,
            }
        )

    @classmethod
    def from_json(cls, raw: str | None) -> ThreadMemory | None:
        """Decode a stored payload; ``None`` when nothing usable is stored."""
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            _LOG.warning("Discarding undecodable thread memory payload")
            return None
        if not isinstance(data, dict):
            return None

        # Unversioned payloads (a bare {"summary": ...} map) read as version 0
        version = data.get("version", 0)
        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            return None
        return cls(
            summary=summary,
            key_points=list(data.get("key_points") or data.get("keyPoints") or []),
            contributors=list(data.get("contributors") or []),
            last_active_at=data.get("last_active_at") or data.get("lastActiveAt"),
            version=int(version),
        )


@dataclass
class ThreadState:
    """Checkpoint row for one forum thread."""

    thread_id: int
    thread_name: str
    last_seen_message_id: int | None = None
    last_summary_at: datetime | None = None
    memory: ThreadMemory | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    persisted: bool = True  # False for the in-memory fallback after a failed insert

    @classmethod
    def transient(cls, thread_id: int, thread_name: str) -> ThreadState:
        """Fallback state used when the row could not be read or created."""
        now = _utcnow()
        return cls(
            thread_id=thread_id,
            thread_name=thread_name,
            created_at=now,
            updated_at=now,
            persisted=False,
        )


class CheckpointStore:
    """Database interface for thread checkpoints, with a read-through cache."""

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = str(db_path) if db_path is not None else str(DB_PATH)
        init_db(self.db_path)
        self._cache: dict[int, ThreadState] = {}

    # ==================== Database Connection ====================

    @contextmanager
    def _get_connection(self, row_factory: bool = False) -> Iterator[sqlite3.Connection]:
        """Get a database connection that auto-commits on success."""
        conn = sqlite3.connect(self.db_path)
        try:
            if row_factory:
                conn.row_factory = sqlite3.Row
            yield conn
            conn.commit()
        finally:
            conn.close()

    # ==================== Reads ====================

    def get(self, thread_id: int) -> ThreadState | None:
        """Return the checkpoint for a thread, or None if it has never been seen."""
        cached = self._cache.get(thread_id)
        if cached is not None:
            return cached
        with self._get_connection(row_factory=True) as conn:
            row = conn.execute(
                "SELECT * FROM project_thread_memory WHERE thread_id = ?",
                (thread_id,),
            ).fetchone()
        if row is None:
            return None
        state = self._row_to_state(row)
        self._cache[thread_id] = state
        return state

    def get_or_create(self, thread_id: int, thread_name: str) -> ThreadState:
        """Return the checkpoint for a thread, inserting a fresh one if absent.

        Raises sqlite3.Error if the insert fails (e.g. a concurrent insert won
        the unique key); callers fall back to ``ThreadState.transient``.
        """
        existing = self.get(thread_id)
        if existing is not None:
            return existing

        now = _utcnow()
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO project_thread_memory
                (thread_id, thread_name, last_seen_message_id, last_summary_at,
                 memory, created_at, updated_at)
                VALUES (?, ?, NULL, NULL, NULL, ?, ?)
                """,
                (thread_id, thread_name or "Untitled", now.isoformat(), now.isoformat()),
            )
        state = ThreadState(
            thread_id=thread_id,
            thread_name=thread_name or "Untitled",
            created_at=now,
            updated_at=now,
        )
        self._cache[thread_id] = state
        _LOG.info("Created checkpoint for thread %s (%s)", thread_id, state.thread_name)
        return state

    # ==================== Writes ====================

    def commit(
        self,
        state: ThreadState,
        newest_message_id: int,
        summary: str,
        *,
        advance_cursor: bool,
        thread_name: str | None = None,
        memory: ThreadMemory | None = None,
    ) -> ThreadState:
        """Record a summary for a thread and optionally advance its cursor.

        ``state`` is the checkpoint read at the start of this thread's run.
        When advancing, the update only applies if the stored cursor still
        equals ``state.last_seen_message_id``; otherwise StaleCheckpointError
        is raised. The cursor never moves backwards.
        """
        now = _utcnow()
        name = thread_name or state.thread_name
        payload = memory if memory is not None else ThreadMemory(summary=summary)
        expected = state.last_seen_message_id

        if advance_cursor:
            new_cursor = newest_message_id if expected is None else max(expected, newest_message_id)
        else:
            new_cursor = expected

        with self._get_connection() as conn:
            if advance_cursor:
                cursor = conn.execute(
                    """
                    UPDATE project_thread_memory
                    SET thread_name = ?, last_seen_message_id = ?, last_summary_at = ?,
                        memory = ?, updated_at = ?
                    WHERE thread_id = ? AND last_seen_message_id IS ?
                    """,
                    (name, new_cursor, now.isoformat(), payload.to_json(), now.isoformat(),
                     state.thread_id, expected),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE project_thread_memory
                    SET thread_name = ?, last_summary_at = ?, memory = ?, updated_at = ?
                    WHERE thread_id = ?
                    """,
                    (name, now.isoformat(), payload.to_json(), now.isoformat(), state.thread_id),
                )
            updated = cursor.rowcount

        if updated == 0:
            self._cache.pop(state.thread_id, None)
            if advance_cursor:
                raise StaleCheckpointError(state.thread_id, expected)
            _LOG.warning("No checkpoint row for thread %s; summary not stored", state.thread_id)
            return state

        new_state = replace(
            state,
            thread_name=name,
            last_seen_message_id=new_cursor,
            last_summary_at=now,
            memory=payload,
            updated_at=now,
        )
        self._cache[state.thread_id] = new_state
        return new_state

    def skip_to(self, state: ThreadState, newest_message_id: int) -> ThreadState:
        """Move the cursor past messages that produced no summary.

        Memory and ``last_summary_at`` are left alone. Same compare-and-swap
        and monotonic rules as ``commit``.
        """
        now = _utcnow()
        expected = state.last_seen_message_id
        new_cursor = newest_message_id if expected is None else max(expected, newest_message_id)

        with self._get_connection() as conn:
            updated = conn.execute(
                """
                UPDATE project_thread_memory
                SET last_seen_message_id = ?, updated_at = ?
                WHERE thread_id = ? AND last_seen_message_id IS ?
                """,
                (new_cursor, now.isoformat(), state.thread_id, expected),
            ).rowcount

        if updated == 0:
            self._cache.pop(state.thread_id, None)
            raise StaleCheckpointError(state.thread_id, expected)

        new_state = replace(state, last_seen_message_id=new_cursor, updated_at=now)
        self._cache[state.thread_id] = new_state
        return new_state

    def invalidate(self, thread_id: int | None = None) -> None:
        """Drop cached checkpoints (all of them when ``thread_id`` is None)."""
        if thread_id is None:
            self._cache.clear()
        else:
            self._cache.pop(thread_id, None)

    def _row_to_state(self, row: sqlite3.Row) -> ThreadState:
        """Convert a database row to a ThreadState."""
        return ThreadState(
            thread_id=row["thread_id"],
            thread_name=row["thread_name"],
            last_seen_message_id=row["last_seen_message_id"],
            last_summary_at=_parse_ts(row["last_summary_at"]),
            memory=ThreadMemory.from_json(row["memory"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )
