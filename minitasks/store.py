"""Persistence adapter over the SQLAlchemy models.

Reads return canonical ``data`` records; writes take plain field values.
Outside ``atomic()`` every write commits on its own.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from .data import SprintRecord, TaskDraft, TaskRecord
from .errors import NotFoundError
from .models import db, Project, Sprint, Task

logger = logging.getLogger(__name__)

TASK_FIELDS = frozenset({
    'title', 'description', 'status', 'priority', 'label', 'start_date', 'end_date',
    'project_id', 'sprint_id', 'estimated_minutes',
})
SPRINT_FIELDS = frozenset({'name', 'description', 'start_date', 'end_date', 'status', 'order'})


class SqlAlchemyStore:
    def __init__(self, session=None):
        self.session = session or db.session
        self._depth = 0

    @contextmanager
    def atomic(self) -> Iterator['SqlAlchemyStore']:
        """Group writes into a single commit; roll everything back on error."""
        self._depth += 1
        try:
            yield self
            if self._depth == 1:
                self.session.commit()
        except Exception:
            if self._depth == 1:
                logger.exception('Rolling back failed transaction')
                self.session.rollback()
            raise
        finally:
            self._depth -= 1

    def _save(self) -> None:
        if self._depth:
            self.session.flush()
        else:
            self.session.commit()

    # -------------------- tasks --------------------
    def list_tasks(self) -> List[TaskRecord]:
        return [t.to_record() for t in self.session.query(Task).order_by(Task.created_at).all()]

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        task = self.session.get(Task, task_id)
        return task.to_record() if task else None

    def create_task(self, draft: TaskDraft) -> TaskRecord:
        task = Task(
            title=draft.title,
            description=draft.description,
            status=draft.status,
            start_date=draft.start_date,
            end_date=draft.end_date,
            project_id=draft.project_id,
            sprint_id=draft.sprint_id,
            is_recurring=draft.is_recurring,
            recurrence=draft.recurrence.as_dict() if draft.recurrence else None,
            parent_task_id=draft.parent_task_id,
            created_at=draft.created_at or datetime.utcnow(),
            updated_at=draft.updated_at or datetime.utcnow(),
        )
        task.set_subtasks(draft.subtasks)
        self.session.add(task)
        self._save()
        return task.to_record()

    def update_task(self, task_id: str, **fields) -> TaskRecord:
        task = self.session.get(Task, task_id)
        if task is None:
            raise NotFoundError(f'Task {task_id} not found')
        for name, value in fields.items():
            if name not in TASK_FIELDS:
                raise ValueError(f'Unknown task field: {name}')
            setattr(task, name, value)
        self._save()
        return task.to_record()

    # -------------------- sprints --------------------
    def list_sprints(self) -> List[SprintRecord]:
        sprints = self.session.query(Sprint).order_by(Sprint.order, Sprint.id).all()
        return [s.to_record() for s in sprints]

    def get_sprint(self, sprint_id: str) -> Optional[SprintRecord]:
        sprint = self.session.get(Sprint, sprint_id)
        return sprint.to_record() if sprint else None

    def create_sprint(self, record: SprintRecord) -> SprintRecord:
        sprint = Sprint(
            id=record.id,
            name=record.name,
            description=record.description,
            start_date=record.start_date,
            end_date=record.end_date,
            status=record.status,
            order=record.order,
        )
        if record.project_ids:
            sprint.projects = self.session.query(Project).filter(Project.id.in_(record.project_ids)).all()
        self.session.add(sprint)
        self._save()
        return sprint.to_record()

    def update_sprint(self, sprint_id: str, **fields) -> SprintRecord:
        sprint = self.session.get(Sprint, sprint_id)
        if sprint is None:
            raise NotFoundError(f'Sprint {sprint_id} not found')
        project_ids = fields.pop('project_ids', None)
        for name, value in fields.items():
            if name not in SPRINT_FIELDS:
                raise ValueError(f'Unknown sprint field: {name}')
            setattr(sprint, name, value)
        if project_ids is not None:
            sprint.projects = self.session.query(Project).filter(Project.id.in_(project_ids)).all()
        self._save()
        return sprint.to_record()

    def delete_sprint(self, sprint_id: str) -> None:
        sprint = self.session.get(Sprint, sprint_id)
        if sprint is None:
            raise NotFoundError(f'Sprint {sprint_id} not found')
        self.session.delete(sprint)
        self._save()
