"""Sprint lifecycle: activation, completion and rollover of unfinished work.

Sprints move pending -> active -> completed; completed is terminal. The
functions here only compute mutation sets over a snapshot of sprints and
tasks. Applying them (inside one transaction) is up to the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .data import FINISHED_STATUSES, SprintRecord, TaskRecord
from .errors import SprintStateError

logger = logging.getLogger(__name__)

SprintUpdate = Tuple[str, Dict[str, object]]
TaskMove = Tuple[str, Optional[str]]


@dataclass
class SprintChange:
    sprint_id: str
    updates: List[SprintUpdate] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.updates)


@dataclass
class SprintCompletion:
    """Everything that completing one sprint changes."""
    sprint_id: str
    sprint_updates: List[SprintUpdate] = field(default_factory=list)
    successor: Optional[SprintRecord] = None
    task_moves: List[TaskMove] = field(default_factory=list)


def _find(sprint_id: str, sprints: Iterable[SprintRecord]) -> Optional[SprintRecord]:
    for sprint in sprints:
        if sprint.id == sprint_id:
            return sprint
    return None


def activate(sprint_id: str, sprints: Sequence[SprintRecord]) -> Optional[SprintChange]:
    """Mark a sprint active. Returns None if the sprint does not exist."""
    sprint = _find(sprint_id, sprints)
    if sprint is None:
        return None
    if sprint.status == 'completed':
        raise SprintStateError(f'Sprint {sprint.name!r} is already completed')
    change = SprintChange(sprint_id)
    if sprint.status != 'active':
        change.updates.append((sprint.id, {'status': 'active'}))
    return change


def find_successor(sprint: SprintRecord, sprints: Iterable[SprintRecord]) -> Optional[SprintRecord]:
    """The pending sprint with the smallest order above ``sprint`` sharing a project.

    Ties on order go to the lexicographically smallest id.
    """
    candidates = [
        other for other in sprints
        if other.id != sprint.id
        and other.status == 'pending'
        and other.order > sprint.order
        and other.shares_project_with(sprint)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda s: (s.order, s.id))


def find_active_follow_on(sprint: SprintRecord, sprints: Iterable[SprintRecord]) -> Optional[SprintRecord]:
    """The active sprint with the smallest order above ``sprint`` sharing a project."""
    candidates = [
        other for other in sprints
        if other.id != sprint.id
        and other.status == 'active'
        and other.order > sprint.order
        and other.shares_project_with(sprint)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda s: (s.order, s.id))


def complete(
    sprint_id: str,
    sprints: Sequence[SprintRecord],
    tasks: Sequence[TaskRecord],
) -> Optional[SprintCompletion]:
    """Compute the mutations for completing a sprint.

    Returns None if the sprint does not exist. For a sprint that is already
    completed no sprint changes state; unfinished tasks still left in it move
    to the active follow-on sprint, if there is one.
    """
    sprint = _find(sprint_id, sprints)
    if sprint is None:
        return None

    result = SprintCompletion(sprint_id)
    if sprint.status == 'completed':
        successor = find_active_follow_on(sprint, sprints)
        if successor is not None:
            result.successor = successor
            result.task_moves = _unfinished_moves(sprint, successor, tasks)
        return result

    result.sprint_updates.append((sprint.id, {'status': 'completed'}))

    successor = find_successor(sprint, sprints)
    if successor is None:
        logger.debug('Sprint %s has no successor; unfinished tasks stay', sprint.id)
        return result

    logger.debug('Sprint %s rolls over into %s', sprint.id, successor.id)
    result.successor = successor
    result.sprint_updates.append((successor.id, {'status': 'active'}))
    result.task_moves = _unfinished_moves(sprint, successor, tasks)
    return result


def _unfinished_moves(sprint: SprintRecord, target: SprintRecord,
                      tasks: Iterable[TaskRecord]) -> List[TaskMove]:
    return [
        (task.id, target.id) for task in tasks
        if task.sprint_id == sprint.id and task.status not in FINISHED_STATUSES
    ]


def clear_sprint(sprint_id: str, tasks: Iterable[TaskRecord]) -> List[TaskMove]:
    """Detach every task from a sprint that is about to be deleted."""
    return [(task.id, None) for task in tasks if task.sprint_id == sprint_id]


def next_order(sprints: Iterable[SprintRecord]) -> int:
    orders = [sprint.order for sprint in sprints]
    return max(orders) + 1 if orders else 0


def initial_status(project_ids: Iterable[str], sprints: Iterable[SprintRecord]) -> str:
    """A new sprint starts active unless an open sprint already covers one of its projects."""
    wanted = set(project_ids)
    for sprint in sprints:
        if sprint.status != 'completed' and wanted & set(sprint.project_ids):
            return 'pending'
    return 'active'


def is_overdue(sprint: SprintRecord, today: date) -> bool:
    return sprint.status == 'active' and sprint.end_date < today


def current_sprint(sprints: Iterable[SprintRecord], today: date) -> Optional[SprintRecord]:
    """Pick the sprint the team is working in.

    In order of preference: an active sprint whose dates include today, the
    most recently ended overdue active sprint, the nearest future active
    sprint.
    """
    active = [s for s in sprints if s.status == 'active']
    for sprint in active:
        if sprint.start_date <= today <= sprint.end_date:
            return sprint
    overdue = [s for s in active if s.end_date < today]
    if overdue:
        return max(overdue, key=lambda s: s.end_date)
    upcoming = [s for s in active if s.start_date > today]
    if upcoming:
        return min(upcoming, key=lambda s: s.start_date)
    return None
