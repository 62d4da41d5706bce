"""Tests for the SQLite key-value store and the services running on it."""
import pytest
from datetime import date

from minitasks import services
from minitasks.data import RecurrenceConfig, SprintRecord, TaskDraft
from minitasks.errors import NotFoundError, SprintStateError


def _sprint(store, sprint_id, order, project_ids=('p1',), status='pending'):
    return store.create_sprint(SprintRecord(
        id=sprint_id, name=sprint_id, start_date=date(2024, 1, 1), end_date=date(2024, 1, 14),
        project_ids=tuple(project_ids), status=status, order=order,
    ))


class TestLocalStore:
    """Test cases for LocalStore."""

    def test_create_and_get_task(self, local_store):
        created = local_store.create_task(TaskDraft(title='Write docs', start_date=date(2024, 1, 5)))

        loaded = local_store.get_task(created.id)

        assert loaded.title == 'Write docs'
        assert loaded.start_date == date(2024, 1, 5)
        assert loaded.created_at is not None

    def test_missing_task(self, local_store):
        assert local_store.get_task('nope') is None
        with pytest.raises(NotFoundError):
            local_store.update_task('nope', status='paused')

    def test_update_task(self, local_store):
        created = local_store.create_task(TaskDraft(title='x', sprint_id='s1'))

        updated = local_store.update_task(created.id, status='paused', sprint_id=None)

        assert updated.status == 'paused'
        assert updated.sprint_id is None
        assert local_store.get_task(created.id).sprint_id is None

    def test_legacy_documents(self, local_store):
        local_store.put('tasks', {
            'id': 'old', 'title': 'Legacy', 'sprintId': 's1', 'startDate': '2024-01-01T00:00:00Z',
            'isRecurring': True, 'recurrence': {'frequency': 'daily'},
        })
        local_store.put('sprints', {
            'id': 's1', 'name': 'Old sprint', 'projectId': 'p1',
            'startDate': '2024-01-01', 'endDate': '2024-01-14',
        })

        task = local_store.get_task('old')
        sprint = local_store.get_sprint('s1')

        assert task.sprint_id == 's1'
        assert task.is_template
        assert sprint.project_ids == ('p1',)

    def test_clearing_legacy_key(self, local_store):
        local_store.put('tasks', {'id': 'old', 'title': 'Legacy', 'sprintId': 's1'})

        local_store.update_task('old', sprint_id=None)

        assert local_store.get_task('old').sprint_id is None

    def test_sprints_listed_by_order(self, local_store):
        _sprint(local_store, 'b', 2)
        _sprint(local_store, 'a', 1)
        _sprint(local_store, 'c', 1)

        assert [s.id for s in local_store.list_sprints()] == ['a', 'c', 'b']

    def test_atomic_rolls_back(self, local_store):
        sprint = _sprint(local_store, 'a', 1)

        with pytest.raises(RuntimeError):
            with local_store.atomic():
                local_store.update_sprint(sprint.id, status='active')
                raise RuntimeError('boom')

        assert local_store.get_sprint('a').status == 'pending'

    def test_delete_missing_sprint(self, local_store):
        with pytest.raises(NotFoundError):
            local_store.delete_sprint('nope')


class TestServicesOnLocalStore:
    """The service layer is storage agnostic."""

    def test_sweep_is_idempotent(self, local_store, clock):
        local_store.create_task(TaskDraft(
            title='Standup', start_date=date(2024, 1, 8), is_recurring=True,
            recurrence=RecurrenceConfig(frequency='weekly', days_of_week=(1, 3, 5)),
        ))

        first = services.sweep_recurring_tasks(local_store, clock=clock, horizon_days=14)
        second = services.sweep_recurring_tasks(local_store, clock=clock, horizon_days=14)

        # Mon 8 through Wed 24 on Mon/Wed/Fri
        assert len(first) == 8
        assert second == []
        assert len(local_store.list_tasks()) == 9

    def test_complete_sprint_rolls_over(self, local_store):
        _sprint(local_store, 'A', 1, status='active')
        _sprint(local_store, 'B', 2)
        open_task = local_store.create_task(TaskDraft(title='T1', status='in_progress', sprint_id='A'))
        done_task = local_store.create_task(TaskDraft(title='T2', status='completed', sprint_id='A'))

        completion = services.complete_sprint(local_store, 'A')

        assert completion.successor.id == 'B'
        assert local_store.get_sprint('A').status == 'completed'
        assert local_store.get_sprint('B').status == 'active'
        assert local_store.get_task(open_task.id).sprint_id == 'B'
        assert local_store.get_task(done_task.id).sprint_id == 'A'

    def test_completing_twice_keeps_one_active_sprint(self, local_store):
        _sprint(local_store, 'a', 1, status='active')
        _sprint(local_store, 'b', 2)
        _sprint(local_store, 'c', 3)
        task = local_store.create_task(TaskDraft(title='T1', status='in_progress', sprint_id='a'))

        services.complete_sprint(local_store, 'a')
        services.complete_sprint(local_store, 'a')

        statuses = {s.id: s.status for s in local_store.list_sprints()}
        assert statuses == {'a': 'completed', 'b': 'active', 'c': 'pending'}
        assert local_store.get_task(task.id).sprint_id == 'b'

    def test_complete_unknown_sprint(self, local_store):
        with pytest.raises(NotFoundError):
            services.complete_sprint(local_store, 'nope')

    def test_activate(self, local_store):
        _sprint(local_store, 'A', 1)
        _sprint(local_store, 'done', 2, status='completed')

        assert services.activate_sprint(local_store, 'A').status == 'active'
        with pytest.raises(SprintStateError):
            services.activate_sprint(local_store, 'done')
        with pytest.raises(NotFoundError):
            services.activate_sprint(local_store, 'nope')

    def test_delete_sprint_detaches_tasks(self, local_store):
        _sprint(local_store, 'A', 1)
        task = local_store.create_task(TaskDraft(title='x', sprint_id='A'))

        assert services.delete_sprint(local_store, 'A') == 1
        assert local_store.get_sprint('A') is None
        assert local_store.get_task(task.id).sprint_id is None

    def test_create_sprint_status_and_order(self, local_store):
        first = services.create_sprint(local_store, 'One', date(2024, 1, 1), date(2024, 1, 14), ['p1'])
        second = services.create_sprint(local_store, 'Two', date(2024, 1, 15), date(2024, 1, 28), ['p1'])
        other = services.create_sprint(local_store, 'Other', date(2024, 1, 1), date(2024, 1, 14), ['p2'])

        assert (first.status, first.order) == ('active', 0)
        assert (second.status, second.order) == ('pending', 1)
        assert (other.status, other.order) == ('active', 2)
