"""Recurrence engine: expands recurring task templates into concrete instances.

A template is a task flagged ``is_recurring`` with a start date and a
``RecurrenceConfig``. Generation is pure: the same template and horizon give
the same sequence of dates. ``reconcile`` drops candidates whose calendar day
already has an instance, which makes repeated sweeps idempotent.
"""
from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

from .clock import SystemClock
from .data import RecurrenceConfig, Subtask, TaskDraft, TaskRecord, new_id

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES = 100
DEFAULT_HORIZON_DAYS = 90


def add_months(day: date, months: int) -> date:
    """Add calendar months, clamping to the last day of a shorter month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def weekday_index(day: date) -> int:
    """Weekday with 0=Sunday..6=Saturday."""
    return (day.weekday() + 1) % 7


def _candidate_dates(start: date, config: RecurrenceConfig) -> Iterator[date]:
    """Yield candidate dates in chronological order, without end.

    Weekly rules with explicit days walk day by day from the start itself,
    keeping days in every ``interval``-th week (weeks start on Sunday). Every
    other rule yields ``start + n * step`` for n = 1, 2, ...
    """
    interval = max(1, config.interval)
    if config.frequency == 'weekly' and config.days_of_week:
        week_start = start - timedelta(days=weekday_index(start))
        day = start
        while True:
            if ((day - week_start).days // 7) % interval == 0:
                yield day
            day += timedelta(days=1)
    n = 1
    while True:
        if config.frequency == 'daily':
            yield start + timedelta(days=interval * n)
        elif config.frequency == 'weekly':
            yield start + timedelta(weeks=interval * n)
        elif config.frequency == 'monthly':
            yield add_months(start, interval * n)
        else:
            return
        n += 1


def _duration(template: TaskRecord) -> timedelta:
    if template.end_date is None:
        return timedelta(0)
    return max(template.end_date - template.start_date, timedelta(0))


def generate_occurrences(
    template: TaskRecord,
    until: date,
    *,
    now: Optional[datetime] = None,
    id_factory: Callable[[], str] = new_id,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> List[TaskDraft]:
    """Return the instance drafts a template should have up to ``until``.

    A template without a start date or recurrence config yields nothing.
    At most ``end_after_occurrences`` (or ``max_occurrences``) drafts are
    produced; no draft starts after ``until`` or the rule's own end date.
    """
    config = template.recurrence
    if not template.is_recurring or config is None or template.start_date is None:
        return []

    now = now or datetime.now()
    duration = _duration(template)
    cap = config.end_after_occurrences or max_occurrences
    day_filter = set(config.days_of_week) if config.frequency == 'weekly' else set()

    drafts: List[TaskDraft] = []
    for candidate in _candidate_dates(template.start_date, config):
        if config.end_date is not None and candidate > config.end_date:
            break
        if candidate > until:
            break
        if len(drafts) >= cap:
            break
        if day_filter and weekday_index(candidate) not in day_filter:
            continue
        drafts.append(TaskDraft(
            title=template.title,
            description=template.description,
            status='created',
            subtasks=[Subtask(id=id_factory(), text=s.text, completed=False) for s in template.subtasks],
            start_date=candidate,
            end_date=candidate + duration,
            project_id=template.project_id,
            sprint_id=template.sprint_id,
            is_recurring=False,
            recurrence=None,
            parent_task_id=template.id,
            created_at=now,
            updated_at=now,
        ))
    return drafts


def reconcile(candidates: Sequence[TaskDraft], existing: Iterable[TaskRecord]) -> List[TaskDraft]:
    """Drop candidates whose calendar day already has an instance."""
    taken = {task.start_date for task in existing if task.start_date is not None}
    return [draft for draft in candidates if draft.start_date not in taken]


def last_generated_date(template: TaskRecord, instances: Sequence[TaskRecord]) -> date:
    dates = [task.start_date for task in instances if task.start_date is not None]
    if dates:
        return max(dates)
    return template.start_date


def run_horizon_sweep(
    tasks: Sequence[TaskRecord],
    horizon_days: int,
    persist: Callable[[TaskDraft], object],
    *,
    clock=None,
    id_factory: Callable[[], str] = new_id,
) -> List[TaskDraft]:
    """Generate and persist missing instances for every template in ``tasks``.

    Drafts are persisted one at a time in chronological order per template,
    so a failure leaves a prefix that the next sweep will skip over.
    Returns the drafts that were persisted.
    """
    clock = clock or SystemClock()
    now = clock.now()
    until = now.date() + timedelta(days=horizon_days)

    persisted: List[TaskDraft] = []
    for template in tasks:
        if not template.is_template:
            continue
        if template.start_date is None:
            logger.debug('Template %s has no start date, skipping', template.id)
            continue
        instances = [task for task in tasks if task.parent_task_id == template.id]
        if last_generated_date(template, instances) >= until:
            logger.debug('Template %s already covers the horizon', template.id)
            continue
        candidates = generate_occurrences(template, until, now=now, id_factory=id_factory)
        missing = reconcile(candidates, instances)
        for draft in missing:
            persist(draft)
            persisted.append(draft)
        if missing:
            logger.debug('Template %s: %d new instance(s)', template.id, len(missing))
    return persisted
