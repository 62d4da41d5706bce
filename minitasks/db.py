"""SQLite key-value store for running MiniTasks without a server database.

Each collection is a table of ``(id, body)`` rows where ``body`` is the
record as JSON. Rows are passed through the normalization step on read, so
documents written by older versions (camelCase keys, a single sprint
``projectId``) load as canonical records.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from .data import (
    SprintRecord, TaskDraft, TaskRecord, RecurrenceConfig, new_id, normalize_sprint, normalize_task,
)
from .errors import NotFoundError

logger = logging.getLogger(__name__)

COLLECTIONS = ('tasks', 'sprints')


def get_connection(path: Union[str, Path]) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    return conn


def _create_tables(conn: sqlite3.Connection) -> None:
    conn.executescript(''.join(
        f'CREATE TABLE IF NOT EXISTS {name} (id TEXT PRIMARY KEY, body TEXT NOT NULL);\n'
        for name in COLLECTIONS
    ))


def _jsonable(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, RecurrenceConfig):
        return value.as_dict()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class LocalStore:
    """Same interface as ``store.SqlAlchemyStore``, backed by one SQLite file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._conn: Optional[sqlite3.Connection] = None
        self.ensure_db()

    def ensure_db(self) -> None:
        """Create the collection tables if they do not exist."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            _create_tables(conn)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        if self._conn is not None:
            yield self._conn
            return
        conn = get_connection(self.path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @contextmanager
    def atomic(self) -> Iterator['LocalStore']:
        """Run every write in the block on one connection and one transaction."""
        if self._conn is not None:
            yield self
            return
        conn = get_connection(self.path)
        self._conn = conn
        try:
            with conn:
                yield self
        finally:
            self._conn = None
            conn.close()

    # -------------------- raw documents --------------------
    def all(self, collection: str) -> List[Dict[str, Any]]:
        with self._connection() as conn:
            rows = conn.execute(f'SELECT body FROM {collection} ORDER BY rowid').fetchall()
        return [json.loads(row['body']) for row in rows]

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._connection() as conn:
            row = conn.execute(f'SELECT body FROM {collection} WHERE id = ?', (doc_id,)).fetchone()
        return json.loads(row['body']) if row else None

    def put(self, collection: str, doc: Dict[str, Any]) -> None:
        body = json.dumps({k: _jsonable(v) for k, v in doc.items()})
        with self._connection() as conn:
            conn.execute(
                f'INSERT OR REPLACE INTO {collection} (id, body) VALUES (?, ?)',
                (doc['id'], body),
            )

    def delete(self, collection: str, doc_id: str) -> bool:
        """Remove a document. Returns True if a row was deleted."""
        with self._connection() as conn:
            cur = conn.execute(f'DELETE FROM {collection} WHERE id = ?', (doc_id,))
            return cur.rowcount > 0

    def _patch(self, collection: str, record, fields: Dict[str, Any]) -> Dict[str, Any]:
        # Rewrite in canonical shape so legacy keys cannot shadow the update
        doc = record.as_dict()
        doc.update(fields)
        self.put(collection, doc)
        return doc

    # -------------------- tasks --------------------
    def list_tasks(self) -> List[TaskRecord]:
        return [normalize_task(doc) for doc in self.all('tasks')]

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        doc = self.get('tasks', task_id)
        return normalize_task(doc) if doc else None

    def create_task(self, draft: TaskDraft) -> TaskRecord:
        record = TaskRecord.from_draft(draft)
        now = datetime.utcnow()
        record.created_at = record.created_at or now
        record.updated_at = record.updated_at or now
        self.put('tasks', record.as_dict())
        return record

    def update_task(self, task_id: str, **fields) -> TaskRecord:
        record = self.get_task(task_id)
        if record is None:
            raise NotFoundError(f'Task {task_id} not found')
        fields.setdefault('updated_at', datetime.utcnow())
        return normalize_task(self._patch('tasks', record, fields))

    # -------------------- sprints --------------------
    def list_sprints(self) -> List[SprintRecord]:
        sprints = [normalize_sprint(doc) for doc in self.all('sprints')]
        return sorted(sprints, key=lambda s: (s.order, s.id))

    def get_sprint(self, sprint_id: str) -> Optional[SprintRecord]:
        doc = self.get('sprints', sprint_id)
        return normalize_sprint(doc) if doc else None

    def create_sprint(self, record: SprintRecord) -> SprintRecord:
        if not record.id:
            record.id = new_id()
        record.created_at = record.created_at or datetime.utcnow()
        self.put('sprints', record.as_dict())
        return record

    def update_sprint(self, sprint_id: str, **fields) -> SprintRecord:
        record = self.get_sprint(sprint_id)
        if record is None:
            raise NotFoundError(f'Sprint {sprint_id} not found')
        return normalize_sprint(self._patch('sprints', record, fields))

    def delete_sprint(self, sprint_id: str) -> None:
        if not self.delete('sprints', sprint_id):
            raise NotFoundError(f'Sprint {sprint_id} not found')
