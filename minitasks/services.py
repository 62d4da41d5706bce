"""Entry points that run the engines against a store.

Every function takes the store (and clock where time matters) as arguments,
re-reads the data it needs, and applies the computed mutations. Sprint
changes are applied inside ``store.atomic()`` so a completion is all or
nothing.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from . import recurrence, sprints
from .clock import SystemClock
from .data import SprintRecord, TaskRecord, new_id
from .errors import NotFoundError

logger = logging.getLogger(__name__)


def sweep_recurring_tasks(store, clock=None, horizon_days: int = recurrence.DEFAULT_HORIZON_DAYS) -> List[TaskRecord]:
    """Create any missing instances of recurring tasks within the horizon."""
    clock = clock or SystemClock()
    created: List[TaskRecord] = []

    def persist(draft):
        created.append(store.create_task(draft))

    try:
        recurrence.run_horizon_sweep(store.list_tasks(), horizon_days, persist, clock=clock)
    except Exception:
        logger.exception('Recurrence sweep stopped after %d instance(s)', len(created))
        raise
    if created:
        logger.info('Recurrence sweep created %d task instance(s)', len(created))
    return created


def _apply_sprint_updates(store, updates) -> None:
    for sprint_id, fields in updates:
        store.update_sprint(sprint_id, **fields)


def activate_sprint(store, sprint_id: str) -> SprintRecord:
    change = sprints.activate(sprint_id, store.list_sprints())
    if change is None:
        raise NotFoundError(f'Sprint {sprint_id} not found')
    with store.atomic():
        _apply_sprint_updates(store, change.updates)
    if change.changed:
        logger.info('Sprint %s activated', sprint_id)
    return store.get_sprint(sprint_id)


def complete_sprint(store, sprint_id: str) -> sprints.SprintCompletion:
    """Complete a sprint, activate its successor and roll unfinished tasks over."""
    completion = sprints.complete(sprint_id, store.list_sprints(), store.list_tasks())
    if completion is None:
        raise NotFoundError(f'Sprint {sprint_id} not found')
    with store.atomic():
        _apply_sprint_updates(store, completion.sprint_updates)
        for task_id, new_sprint_id in completion.task_moves:
            store.update_task(task_id, sprint_id=new_sprint_id)
    if completion.successor is not None:
        logger.info('Sprint %s completed; %d task(s) moved to %s',
                    sprint_id, len(completion.task_moves), completion.successor.id)
    else:
        logger.info('Sprint %s completed with no successor', sprint_id)
    return completion


def delete_sprint(store, sprint_id: str) -> int:
    """Detach all tasks from a sprint and delete it. Returns the number of tasks detached."""
    if store.get_sprint(sprint_id) is None:
        raise NotFoundError(f'Sprint {sprint_id} not found')
    moves = sprints.clear_sprint(sprint_id, store.list_tasks())
    with store.atomic():
        for task_id, _ in moves:
            store.update_task(task_id, sprint_id=None)
        store.delete_sprint(sprint_id)
    logger.info('Sprint %s deleted, %d task(s) detached', sprint_id, len(moves))
    return len(moves)


def create_sprint(store, name: str, start_date, end_date, project_ids: Sequence[str] = (),
                  description: Optional[str] = None) -> SprintRecord:
    """Create a sprint at the end of the queue.

    It starts active when no open sprint shares one of its projects.
    """
    existing = store.list_sprints()
    record = SprintRecord(
        id=new_id(),
        name=name,
        description=description,
        project_ids=tuple(project_ids),
        start_date=start_date,
        end_date=end_date,
        status=sprints.initial_status(project_ids, existing),
        order=sprints.next_order(existing),
    )
    return store.create_sprint(record)
