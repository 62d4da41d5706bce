"""Tests for the sprint lifecycle rules."""
import pytest
from datetime import date

from minitasks import sprints
from minitasks.data import TaskRecord
from minitasks.errors import SprintStateError


def _task(task_id, status, sprint_id='A'):
    return TaskRecord(id=task_id, title=task_id, status=status, sprint_id=sprint_id)


class TestComplete:
    """Test cases for sprints.complete."""

    def test_rollover(self, make_sprint):
        sprint_a = make_sprint('A', 1, status='active')
        sprint_b = make_sprint('B', 2)
        tasks = [_task('T1', 'in_progress'), _task('T2', 'completed')]

        result = sprints.complete('A', [sprint_a, sprint_b], tasks)

        assert result.sprint_updates == [('A', {'status': 'completed'}), ('B', {'status': 'active'})]
        assert result.successor is sprint_b
        assert result.task_moves == [('T1', 'B')]

    def test_finished_and_foreign_tasks_stay(self, make_sprint):
        tasks = [
            _task('open', 'paused'),
            _task('created', 'created'),
            _task('done', 'completed'),
            _task('dropped', 'cancelled'),
            _task('elsewhere', 'in_progress', sprint_id='Z'),
            _task('loose', 'in_progress', sprint_id=None),
        ]

        result = sprints.complete('A', [make_sprint('A', 1, status='active'), make_sprint('B', 2)], tasks)

        assert result.task_moves == [('open', 'B'), ('created', 'B')]

    def test_no_successor(self, make_sprint):
        tasks = [_task('T1', 'in_progress')]

        result = sprints.complete('A', [make_sprint('A', 1, status='active')], tasks)

        assert result.successor is None
        assert result.sprint_updates == [('A', {'status': 'completed'})]
        assert result.task_moves == []

    def test_successor_must_share_a_project(self, make_sprint):
        sprint_a = make_sprint('A', 1, project_ids=['p1', 'p2'], status='active')
        other = make_sprint('B', 2, project_ids=['p3'])
        shared = make_sprint('C', 3, project_ids=['p2'])

        result = sprints.complete('A', [sprint_a, other, shared], [])

        assert result.successor is shared

    def test_successor_must_be_pending_with_higher_order(self, make_sprint):
        candidates = [
            make_sprint('A', 5, status='active'),
            make_sprint('earlier', 4),
            make_sprint('running', 6, status='active'),
            make_sprint('done', 7, status='completed'),
            make_sprint('next', 9),
            make_sprint('later', 12),
        ]

        result = sprints.complete('A', candidates, [])

        assert result.successor.id == 'next'

    def test_successor_tie_breaks_on_id(self, make_sprint):
        result = sprints.complete(
            'A', [make_sprint('A', 1), make_sprint('y', 2), make_sprint('x', 2)], [])

        assert result.successor.id == 'x'

    def test_pending_sprint_can_be_completed(self, make_sprint):
        result = sprints.complete('A', [make_sprint('A', 1, status='pending')], [])

        assert result.sprint_updates == [('A', {'status': 'completed'})]

    def test_unknown_sprint(self, make_sprint):
        assert sprints.complete('missing', [make_sprint('A', 1)], []) is None

    def test_completed_sprint_activates_nothing(self, make_sprint):
        """A second completion leaves the queue of pending sprints alone."""
        sprint_list = [
            make_sprint('A', 1, status='completed'),
            make_sprint('B', 2, status='active'),
            make_sprint('C', 3),
        ]
        tasks = [_task('late', 'in_progress'), _task('done', 'completed')]

        result = sprints.complete('A', sprint_list, tasks)

        assert result.sprint_updates == []
        assert result.successor.id == 'B'
        assert result.task_moves == [('late', 'B')]

    def test_completed_sprint_without_active_follow_on(self, make_sprint):
        sprint_list = [make_sprint('A', 1, status='completed'), make_sprint('C', 3)]

        result = sprints.complete('A', sprint_list, [_task('late', 'in_progress')])

        assert result.sprint_updates == []
        assert result.successor is None
        assert result.task_moves == []


class TestActivate:
    """Test cases for sprints.activate."""

    def test_pending_becomes_active(self, make_sprint):
        change = sprints.activate('A', [make_sprint('A', 1)])

        assert change.updates == [('A', {'status': 'active'})]
        assert change.changed

    def test_already_active_is_a_no_op(self, make_sprint):
        change = sprints.activate('A', [make_sprint('A', 1, status='active')])

        assert change.updates == []
        assert not change.changed

    def test_completed_is_terminal(self, make_sprint):
        with pytest.raises(SprintStateError):
            sprints.activate('A', [make_sprint('A', 1, status='completed')])

    def test_unknown_sprint(self):
        assert sprints.activate('missing', []) is None


class TestCurrentSprint:
    """Test cases for picking the current sprint."""

    def test_prefers_sprint_covering_today(self, make_sprint):
        running = make_sprint('run', 1, status='active', start_date=date(2024, 1, 8), end_date=date(2024, 1, 21))
        overdue = make_sprint('old', 0, status='active', start_date=date(2023, 12, 1), end_date=date(2023, 12, 31))

        assert sprints.current_sprint([overdue, running], date(2024, 1, 10)) is running

    def test_most_recent_overdue(self, make_sprint):
        older = make_sprint('a', 0, status='active', start_date=date(2023, 11, 1), end_date=date(2023, 11, 30))
        newer = make_sprint('b', 1, status='active', start_date=date(2023, 12, 1), end_date=date(2023, 12, 31))

        assert sprints.current_sprint([older, newer], date(2024, 1, 10)) is newer

    def test_nearest_future(self, make_sprint):
        soon = make_sprint('a', 0, status='active', start_date=date(2024, 2, 1), end_date=date(2024, 2, 14))
        later = make_sprint('b', 1, status='active', start_date=date(2024, 3, 1), end_date=date(2024, 3, 14))

        assert sprints.current_sprint([later, soon], date(2024, 1, 10)) is soon

    def test_ignores_inactive(self, make_sprint):
        pending = make_sprint('a', 0, start_date=date(2024, 1, 1), end_date=date(2024, 1, 31))

        assert sprints.current_sprint([pending], date(2024, 1, 10)) is None


class TestHelpers:
    """Test cases for the smaller sprint helpers."""

    def test_is_overdue(self, make_sprint):
        today = date(2024, 1, 15)
        assert sprints.is_overdue(make_sprint('a', 0, status='active'), today)
        assert not sprints.is_overdue(make_sprint('a', 0, status='completed'), today)
        assert not sprints.is_overdue(make_sprint('a', 0, status='active'), date(2024, 1, 14))

    def test_next_order(self, make_sprint):
        assert sprints.next_order([]) == 0
        assert sprints.next_order([make_sprint('a', 3), make_sprint('b', 7)]) == 8

    def test_initial_status(self, make_sprint):
        existing = [make_sprint('a', 0, project_ids=['p1'], status='active'),
                    make_sprint('b', 1, project_ids=['p2'], status='completed')]

        assert sprints.initial_status(['p1'], existing) == 'pending'
        assert sprints.initial_status(['p2'], existing) == 'active'
        assert sprints.initial_status(['p3'], existing) == 'active'

    def test_clear_sprint(self):
        tasks = [_task('a', 'completed'), _task('b', 'created', sprint_id='B')]

        assert sprints.clear_sprint('A', tasks) == [('a', None)]
