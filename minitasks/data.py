"""Canonical in-memory records shared by the engines and the stores.

Every persistence adapter converts its rows into these dataclasses through
``normalize_task`` / ``normalize_sprint`` so the recurrence and sprint logic
only ever sees one shape. Both snake_case and camelCase field spellings are
accepted on input.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields, asdict
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import ValidationError

# Task statuses, in kanban column order
TASK_STATUSES: Tuple[str, ...] = ('created', 'in_progress', 'paused', 'cancelled', 'completed')
# Statuses that stay with a sprint when it is completed
FINISHED_STATUSES: Tuple[str, ...] = ('completed', 'cancelled')

SPRINT_STATUSES: Tuple[str, ...] = ('pending', 'active', 'completed')
FREQUENCIES: Tuple[str, ...] = ('daily', 'weekly', 'monthly')


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Subtask:
    id: str
    text: str
    completed: bool = False


@dataclass
class RecurrenceConfig:
    frequency: str
    interval: int = 1
    days_of_week: Tuple[int, ...] = ()
    end_date: Optional[date] = None
    end_after_occurrences: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            'frequency': self.frequency,
            'interval': self.interval,
            'days_of_week': list(self.days_of_week),
            'end_date': _iso(self.end_date),
            'end_after_occurrences': self.end_after_occurrences,
        }


@dataclass
class TaskDraft:
    """A task that does not exist yet; ``create_task`` assigns the id."""
    title: str
    description: Optional[str] = None
    status: str = 'created'
    subtasks: List[Subtask] = field(default_factory=list)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    project_id: Optional[str] = None
    sprint_id: Optional[str] = None
    is_recurring: bool = False
    recurrence: Optional[RecurrenceConfig] = None
    parent_task_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class TaskRecord(TaskDraft):
    id: str = ''

    @classmethod
    def from_draft(cls, draft: TaskDraft, task_id: Optional[str] = None) -> 'TaskRecord':
        values = {f.name: getattr(draft, f.name) for f in fields(TaskDraft)}
        return cls(id=task_id or new_id(), **values)

    @property
    def is_template(self) -> bool:
        return self.is_recurring and self.recurrence is not None and not self.parent_task_id

    def as_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'subtasks': [asdict(s) for s in self.subtasks],
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'project_id': self.project_id,
            'sprint_id': self.sprint_id,
            'is_recurring': self.is_recurring,
            'recurrence': self.recurrence.as_dict() if self.recurrence else None,
            'parent_task_id': self.parent_task_id,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


@dataclass
class SprintRecord:
    id: str
    name: str
    start_date: date
    end_date: date
    description: Optional[str] = None
    project_ids: Tuple[str, ...] = ()
    status: str = 'pending'
    order: int = 0
    created_at: Optional[datetime] = None

    def shares_project_with(self, other: 'SprintRecord') -> bool:
        return bool(set(self.project_ids) & set(other.project_ids))

    def as_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'project_ids': list(self.project_ids),
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'status': self.status,
            'order': self.order,
            'created_at': _iso(self.created_at),
        }


# -------------------- normalization --------------------

def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _pick(raw: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-null value among the given spellings."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def to_date(value: Any) -> Optional[date]:
    """Coerce a date, datetime or ISO string to a calendar date.

    ISO datetimes keep their own calendar day; the time of day is dropped.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f'Invalid date: {value!r}') from None


def to_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f'Invalid timestamp: {value!r}') from None


def normalize_recurrence(raw: Any) -> Optional[RecurrenceConfig]:
    if raw is None:
        return None
    if isinstance(raw, RecurrenceConfig):
        return raw
    frequency = raw.get('frequency')
    if frequency not in FREQUENCIES:
        raise ValidationError(f'Unknown recurrence frequency: {frequency!r}')
    days = _pick(raw, 'days_of_week', 'daysOfWeek') or ()
    try:
        days_of_week = tuple(sorted({int(d) for d in days}))
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid days of week: {days!r}') from None
    if any(d < 0 or d > 6 for d in days_of_week):
        raise ValidationError('Days of week must be between 0 (Sunday) and 6 (Saturday)')
    interval = raw.get('interval')
    if interval is None:
        interval = 1
    else:
        try:
            interval = int(interval)
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid recurrence interval: {interval!r}') from None
        if interval < 1:
            raise ValidationError('Recurrence interval must be a positive integer')
    end_after = _pick(raw, 'end_after_occurrences', 'endAfterOccurrences')
    return RecurrenceConfig(
        frequency=frequency,
        interval=interval,
        days_of_week=days_of_week,
        end_date=to_date(_pick(raw, 'end_date', 'endDate')),
        end_after_occurrences=int(end_after) if end_after else None,
    )


def normalize_subtasks(raw: Any) -> List[Subtask]:
    subtasks = []
    for item in raw or ():
        if isinstance(item, Subtask):
            subtasks.append(item)
            continue
        subtasks.append(Subtask(
            id=str(item.get('id') or new_id()),
            text=str(item.get('text') or item.get('title') or ''),
            completed=bool(item.get('completed')),
        ))
    return subtasks


def normalize_task(raw: Mapping[str, Any]) -> TaskRecord:
    """Build a TaskRecord from a row or payload in either spelling."""
    recurrence = normalize_recurrence(raw.get('recurrence'))
    return TaskRecord(
        id=str(raw['id']),
        title=raw.get('title') or '',
        description=raw.get('description'),
        status=raw.get('status') or 'created',
        subtasks=normalize_subtasks(raw.get('subtasks')),
        start_date=to_date(_pick(raw, 'start_date', 'startDate')),
        end_date=to_date(_pick(raw, 'end_date', 'endDate')),
        project_id=_pick(raw, 'project_id', 'projectId'),
        sprint_id=_pick(raw, 'sprint_id', 'sprintId'),
        is_recurring=bool(_pick(raw, 'is_recurring', 'isRecurring')),
        recurrence=recurrence,
        parent_task_id=_pick(raw, 'parent_task_id', 'parentTaskId'),
        created_at=to_datetime(_pick(raw, 'created_at', 'createdAt')),
        updated_at=to_datetime(_pick(raw, 'updated_at', 'updatedAt')),
    )


def normalize_sprint(raw: Mapping[str, Any]) -> SprintRecord:
    """Build a SprintRecord; a legacy single ``projectId`` becomes a one-item tuple."""
    project_ids = _pick(raw, 'project_ids', 'projectIds')
    if project_ids is None:
        legacy = _pick(raw, 'project_id', 'projectId')
        project_ids = [legacy] if legacy else []
    return SprintRecord(
        id=str(raw['id']),
        name=raw.get('name') or '',
        description=raw.get('description') or raw.get('goal'),
        project_ids=tuple(str(p) for p in project_ids),
        start_date=to_date(_pick(raw, 'start_date', 'startDate')),
        end_date=to_date(_pick(raw, 'end_date', 'endDate')),
        status=raw.get('status') or 'pending',
        order=int(raw.get('order') or 0),
        created_at=to_datetime(_pick(raw, 'created_at', 'createdAt')),
    )


# -------------------- demo data --------------------

DEMO_PROJECTS: List[Dict[str, Any]] = [
    {'name': 'Website Relaunch', 'description': 'New marketing site and blog', 'color': '#2563eb'},
    {'name': 'Mobile App', 'description': 'iOS and Android client', 'color': '#16a34a'},
]

DEMO_SPRINTS: List[Dict[str, Any]] = [
    {
        'name': 'Sprint 1 – Foundations',
        'description': 'Set up the skeleton of both projects.',
        'projects': ['Website Relaunch', 'Mobile App'],
        'start_date': '2025-12-01',
        'end_date': '2025-12-14',
        'tasks': [
            'Configure base app structure',
            'Implement main entrypoints/routes',
            'Set up automated tests',
        ],
    },
    {
        'name': 'Sprint 2 – Content',
        'description': 'Fill the site with real content.',
        'projects': ['Website Relaunch'],
        'start_date': '2025-12-15',
        'end_date': '2025-12-28',
        'tasks': [
            'Write landing page copy',
            'Migrate blog posts',
        ],
    },
]
