"""Group and filter tasks for the list, kanban and calendar views."""
from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from .data import TASK_STATUSES, TaskRecord


def list_view(tasks: Iterable[TaskRecord], query: str = '', status: Optional[str] = None) -> List[TaskRecord]:
    """Filter by a case-insensitive title search and an optional status."""
    needle = query.strip().lower()
    return [
        task for task in tasks
        if needle in task.title.lower() and (status in (None, '', 'all') or task.status == status)
    ]


def kanban_columns(tasks: Iterable[TaskRecord]) -> Dict[str, List[TaskRecord]]:
    columns: Dict[str, List[TaskRecord]] = {status: [] for status in TASK_STATUSES}
    for task in tasks:
        columns.setdefault(task.status, []).append(task)
    return columns


def status_counts(tasks: Iterable[TaskRecord]) -> Dict[str, int]:
    return {status: len(column) for status, column in kanban_columns(tasks).items()}


def occurs_on(task: TaskRecord, day: date) -> bool:
    """True if the task's date range covers ``day``.

    A task with only one of its dates set appears on that single day.
    """
    if task.start_date and task.end_date:
        return task.start_date <= day <= task.end_date
    return day in (task.start_date, task.end_date)


def calendar_month(tasks: Iterable[TaskRecord], year: int, month: int) -> Dict[date, List[TaskRecord]]:
    dated = [t for t in tasks if t.start_date or t.end_date]
    first = date(year, month, 1)
    days = [first + timedelta(days=i) for i in range(calendar.monthrange(year, month)[1])]
    return {day: [t for t in dated if occurs_on(t, day)] for day in days}


def undated(tasks: Iterable[TaskRecord]) -> List[TaskRecord]:
    return [t for t in tasks if not t.start_date and not t.end_date]


def subtask_progress(task: TaskRecord) -> Optional[str]:
    """``done/total`` for the checklist, or None without subtasks."""
    if not task.subtasks:
        return None
    done = sum(1 for s in task.subtasks if s.completed)
    return f'{done}/{len(task.subtasks)}'
