"""
Persistence gateway for tasks, focus blocks and audit events.

The scheduler talks to storage only through SchedulerGateway. Every call is
atomic on its own; transaction() groups several calls into one commit so a
reschedule or defer never leaves a deleted block next to a stale task row.

SQLiteGateway is the bundled implementation. Timestamps are kept as ISO
strings with their offset, plus UTC copies used for range queries.
"""

import json
import logging
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime

from focusblocks import paths
from focusblocks.time_truth.models import FocusBlock, Task

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    description TEXT,
    status TEXT NOT NULL DEFAULT 'todo',
    priority_level TEXT NOT NULL DEFAULT 'p3',
    duration_minutes INTEGER,
    due_date TEXT,
    do_date TEXT,
    committed_date TEXT,
    auto_schedule INTEGER NOT NULL DEFAULT 1,
    scheduled_block_id TEXT,
    context TEXT NOT NULL DEFAULT 'house',
    scheduling_metadata TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS focus_blocks (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    description TEXT,
    context TEXT NOT NULL DEFAULT 'house',
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    start_utc TEXT NOT NULL,
    end_utc TEXT NOT NULL,
    timezone TEXT NOT NULL DEFAULT 'UTC',
    completed INTEGER NOT NULL DEFAULT 0,
    metadata TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_focus_blocks_owner_range
    ON focus_blocks (owner_id, start_utc, end_utc);

CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    description TEXT NOT NULL,
    metadata TEXT,
    request_id TEXT,
    created_at TEXT NOT NULL
);
"""


def _utc(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat()


def _now() -> str:
    return datetime.now(UTC).isoformat()


class SchedulerGateway(ABC):
    """Storage operations the scheduler depends on. Reads are owner-scoped."""

    @abstractmethod
    def transaction(self):
        """Context manager making enclosed calls a single atomic commit."""

    @abstractmethod
    def read_tasks_for_owner(
        self,
        owner_id: str,
        task_ids: list[str] | None = None,
        schedulable_only: bool = False,
        limit: int | None = None,
    ) -> list[Task]: ...

    @abstractmethod
    def read_task(self, task_id: str, owner_id: str) -> Task | None: ...

    @abstractmethod
    def read_blocks_in_range(self, owner_id: str, start: datetime, end: datetime) -> list[FocusBlock]: ...

    @abstractmethod
    def read_block(self, block_id: str, owner_id: str) -> FocusBlock | None: ...

    @abstractmethod
    def create_block(self, block: FocusBlock) -> FocusBlock: ...

    @abstractmethod
    def update_block(self, block: FocusBlock) -> bool: ...

    @abstractmethod
    def delete_block(self, block_id: str, owner_id: str) -> bool: ...

    @abstractmethod
    def update_task(self, task: Task) -> bool: ...

    @abstractmethod
    def attach_block(self, task: Task) -> bool:
        """
        Write a task whose scheduled_block_id was just set, but only if the
        stored row is still unscheduled. False means another writer won.
        """

    @abstractmethod
    def insert_task(self, task: Task) -> Task: ...

    @abstractmethod
    def insert_event(self, event_type: str, description: str, metadata: dict, request_id: str | None = None) -> str: ...


class SQLiteGateway(SchedulerGateway):
    """
    sqlite3-backed gateway.

    Each call opens its own connection and commits, unless a transaction()
    is open on the current thread, in which case the call joins it.
    """

    def __init__(self, db_path: str | None = None, default_duration_minutes: int = 30):
        self.db_path = str(db_path or paths.db_path())
        self.default_duration_minutes = default_duration_minutes
        self._local = threading.local()
        self.ensure_schema()
        logger.info("SQLiteGateway ready, DB path: %s", self.db_path)

    def ensure_schema(self) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _get_conn(self) -> Iterator[sqlite3.Connection]:
        active = getattr(self._local, "conn", None)
        if active is not None:
            yield active
            return

        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            # Nested: the outer transaction owns commit/rollback
            yield
            return

        conn = self._connect()
        self._local.conn = conn
        try:
            yield
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            conn.close()

    # ==================== Row mapping ====================

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        data = dict(row)
        data["auto_schedule"] = bool(data.get("auto_schedule", 1))
        data["scheduling_metadata"] = json.loads(data["scheduling_metadata"] or "{}")
        return Task.from_dict(data, default_duration=self.default_duration_minutes)

    @staticmethod
    def _row_to_block(row: sqlite3.Row) -> FocusBlock:
        data = dict(row)
        data["metadata"] = json.loads(data["metadata"] or "{}")
        return FocusBlock.from_dict(data)

    @staticmethod
    def _task_values(task: Task) -> dict:
        data = task.to_dict()
        data["auto_schedule"] = 1 if task.auto_schedule else 0
        data["scheduling_metadata"] = json.dumps(data["scheduling_metadata"])
        return data

    @staticmethod
    def _block_values(block: FocusBlock) -> dict:
        data = block.to_dict()
        data["completed"] = 1 if block.completed else 0
        data["metadata"] = json.dumps(data["metadata"])
        data["start_utc"] = _utc(block.start_time)
        data["end_utc"] = _utc(block.end_time)
        return data

    # ==================== Tasks ====================

    def read_tasks_for_owner(
        self,
        owner_id: str,
        task_ids: list[str] | None = None,
        schedulable_only: bool = False,
        limit: int | None = None,
    ) -> list[Task]:
        sql = "SELECT * FROM tasks WHERE owner_id = ?"
        params: list = [owner_id]

        if schedulable_only:
            sql += (
                " AND status != 'done' AND auto_schedule = 1"
                " AND (scheduled_block_id IS NULL OR scheduled_block_id = '')"
            )
        if task_ids:
            sql += f" AND id IN ({', '.join('?' for _ in task_ids)})"
            params.extend(task_ids)

        sql += " ORDER BY created_at, rowid"
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._get_conn() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def read_task(self, task_id: str, owner_id: str) -> Task | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE id = ? AND owner_id = ?", [task_id, owner_id]
            ).fetchone()
        return self._row_to_task(row) if row else None

    def insert_task(self, task: Task) -> Task:
        values = self._task_values(task)
        now = _now()
        values["created_at"] = now
        values["updated_at"] = now
        columns = list(values.keys())

        with self._get_conn() as conn:
            conn.execute(
                f"INSERT INTO tasks ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                [values[c] for c in columns],
            )
        return task

    def update_task(self, task: Task) -> bool:
        values = self._task_values(task)
        values.pop("id")
        owner_id = values.pop("owner_id")
        values["updated_at"] = _now()
        assignments = ", ".join(f"{col} = ?" for col in values)

        with self._get_conn() as conn:
            result = conn.execute(
                f"UPDATE tasks SET {assignments} WHERE id = ? AND owner_id = ?",
                [*values.values(), task.id, owner_id],
            )
            return result.rowcount > 0

    def attach_block(self, task: Task) -> bool:
        values = self._task_values(task)
        values.pop("id")
        owner_id = values.pop("owner_id")
        values["updated_at"] = _now()
        assignments = ", ".join(f"{col} = ?" for col in values)

        with self._get_conn() as conn:
            result = conn.execute(
                f"UPDATE tasks SET {assignments} "
                "WHERE id = ? AND owner_id = ? "
                "AND (scheduled_block_id IS NULL OR scheduled_block_id = '')",
                [*values.values(), task.id, owner_id],
            )
            return result.rowcount > 0

    # ==================== Focus blocks ====================

    def read_blocks_in_range(self, owner_id: str, start: datetime, end: datetime) -> list[FocusBlock]:
        """Blocks overlapping [start, end)."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """
                SELECT * FROM focus_blocks
                WHERE owner_id = ?
                AND end_utc > ?
                AND start_utc < ?
                ORDER BY start_utc, id
                """,
                [owner_id, _utc(start), _utc(end)],
            ).fetchall()
        return [self._row_to_block(row) for row in rows]

    def read_block(self, block_id: str, owner_id: str) -> FocusBlock | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM focus_blocks WHERE id = ? AND owner_id = ?", [block_id, owner_id]
            ).fetchone()
        return self._row_to_block(row) if row else None

    def create_block(self, block: FocusBlock) -> FocusBlock:
        """Persist a block under a fresh id. Draft ids are never stored."""
        saved = replace(block, id=f"block_{uuid.uuid4().hex[:12]}")
        values = self._block_values(saved)
        now = _now()
        values["created_at"] = now
        values["updated_at"] = now
        columns = list(values.keys())

        with self._get_conn() as conn:
            conn.execute(
                f"INSERT INTO focus_blocks ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                [values[c] for c in columns],
            )
        return saved

    def update_block(self, block: FocusBlock) -> bool:
        values = self._block_values(block)
        values.pop("id")
        owner_id = values.pop("owner_id")
        values["updated_at"] = _now()
        assignments = ", ".join(f"{col} = ?" for col in values)

        with self._get_conn() as conn:
            result = conn.execute(
                f"UPDATE focus_blocks SET {assignments} WHERE id = ? AND owner_id = ?",
                [*values.values(), block.id, owner_id],
            )
            return result.rowcount > 0

    def delete_block(self, block_id: str, owner_id: str) -> bool:
        with self._get_conn() as conn:
            result = conn.execute(
                "DELETE FROM focus_blocks WHERE id = ? AND owner_id = ?", [block_id, owner_id]
            )
            return result.rowcount > 0

    # ==================== Events ====================

    def insert_event(
        self, event_type: str, description: str, metadata: dict, request_id: str | None = None
    ) -> str:
        event_id = f"evt_{uuid.uuid4().hex[:12]}"
        with self._get_conn() as conn:
            conn.execute(
                "INSERT INTO events (id, type, description, metadata, request_id, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [event_id, event_type, description, json.dumps(metadata, default=str), request_id, _now()],
            )
        return event_id

    def read_events(self, event_type: str | None = None) -> list[dict]:
        sql = "SELECT * FROM events"
        params: list = []
        if event_type:
            sql += " WHERE type = ?"
            params.append(event_type)
        sql += " ORDER BY created_at, rowid"

        with self._get_conn() as conn:
            rows = conn.execute(sql, params).fetchall()
        events = []
        for row in rows:
            event = dict(row)
            event["metadata"] = json.loads(event["metadata"] or "{}")
            events.append(event)
        return events
