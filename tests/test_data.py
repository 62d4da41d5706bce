"""Tests for record normalization."""
import pytest
from datetime import date, datetime, timezone

from minitasks.data import (
    RecurrenceConfig, TaskDraft, TaskRecord, normalize_recurrence, normalize_sprint, normalize_task,
    to_date, to_datetime,
)
from minitasks.errors import ValidationError


class TestNormalizeTask:
    """Test cases for normalize_task."""

    def test_camel_case_document(self):
        record = normalize_task({
            'id': 't1',
            'title': 'Standup',
            'startDate': '2024-03-04T00:00:00.000Z',
            'endDate': '2024-03-05',
            'projectId': 'p1',
            'sprintId': 's1',
            'isRecurring': True,
            'recurrence': {'frequency': 'weekly', 'interval': 2, 'daysOfWeek': [5, 1, 1]},
            'subtasks': [{'id': 'a', 'title': 'Prepare', 'completed': True}],
            'createdAt': '2024-03-01T10:00:00Z',
        })

        assert record.start_date == date(2024, 3, 4)
        assert record.end_date == date(2024, 3, 5)
        assert record.project_id == 'p1'
        assert record.sprint_id == 's1'
        assert record.is_template
        assert record.recurrence == RecurrenceConfig(frequency='weekly', interval=2, days_of_week=(1, 5))
        assert record.subtasks[0].text == 'Prepare'
        assert record.created_at == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_defaults(self):
        record = normalize_task({'id': 7})

        assert record.id == '7'
        assert record.status == 'created'
        assert record.subtasks == []
        assert record.recurrence is None
        assert not record.is_template

    def test_instance_is_not_a_template(self):
        record = normalize_task({
            'id': 'i1', 'is_recurring': True, 'parent_task_id': 'tpl',
            'recurrence': {'frequency': 'daily'},
        })

        assert not record.is_template

    def test_round_trip_through_as_dict(self):
        record = TaskRecord.from_draft(
            TaskDraft(title='x', start_date=date(2024, 1, 2), recurrence=RecurrenceConfig('monthly')),
            task_id='abc',
        )

        assert normalize_task(record.as_dict()) == record


class TestNormalizeSprint:
    """Test cases for normalize_sprint."""

    def test_legacy_single_project(self):
        sprint = normalize_sprint({
            'id': 's1', 'name': 'One', 'projectId': 'p1',
            'startDate': '2024-01-01', 'endDate': '2024-01-14', 'goal': 'Ship it',
        })

        assert sprint.project_ids == ('p1',)
        assert sprint.description == 'Ship it'
        assert sprint.status == 'pending'
        assert sprint.order == 0

    def test_project_list_wins_over_legacy(self):
        sprint = normalize_sprint({
            'id': 's1', 'name': 'One', 'projectIds': ['p2', 'p3'], 'projectId': 'p1',
            'start_date': '2024-01-01', 'end_date': '2024-01-14', 'order': '3',
        })

        assert sprint.project_ids == ('p2', 'p3')
        assert sprint.order == 3


class TestRecurrence:
    """Test cases for normalize_recurrence."""

    def test_interval_defaults_to_one(self):
        assert normalize_recurrence({'frequency': 'daily'}).interval == 1

    @pytest.mark.parametrize('interval', [0, -2, 'often'])
    def test_invalid_interval(self, interval):
        with pytest.raises(ValidationError):
            normalize_recurrence({'frequency': 'daily', 'interval': interval})

    def test_unknown_frequency(self):
        with pytest.raises(ValidationError):
            normalize_recurrence({'frequency': 'yearly'})

    @pytest.mark.parametrize('days', [[7], [-1], ['mon']])
    def test_invalid_days(self, days):
        with pytest.raises(ValidationError):
            normalize_recurrence({'frequency': 'weekly', 'days_of_week': days})


class TestCoercion:
    """Test cases for to_date and to_datetime."""

    def test_to_date_keeps_calendar_day(self):
        assert to_date('2024-03-04T23:30:00Z') == date(2024, 3, 4)
        assert to_date(datetime(2024, 3, 4, 23, 30)) == date(2024, 3, 4)
        assert to_date('') is None

    def test_to_date_rejects_garbage(self):
        with pytest.raises(ValidationError):
            to_date('next tuesday')

    def test_to_datetime_from_date(self):
        assert to_datetime(date(2024, 3, 4)) == datetime(2024, 3, 4)
