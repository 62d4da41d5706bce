import pytest
from datetime import date, datetime

from minitasks import create_app
from minitasks.clock import FixedClock
from minitasks.config import TestConfig
from minitasks.data import RecurrenceConfig, SprintRecord, Subtask, TaskRecord
from minitasks.db import LocalStore
from minitasks.models import db, User, Project

PASSWORD = 'secret123'


@pytest.fixture
def clock():
    """A clock fixed at 2024-01-10 09:00."""
    return FixedClock(datetime(2024, 1, 10, 9, 0))


@pytest.fixture
def local_store(tmp_path):
    """Provides a LocalStore backed by a temporary SQLite file."""
    return LocalStore(tmp_path / 'minitasks.sqlite')


@pytest.fixture
def make_template():
    """Factory for recurring template records."""
    def factory(**overrides):
        values = dict(
            id='tpl-1',
            title='Weekly report',
            description='Send the weekly numbers',
            status='in_progress',
            subtasks=[Subtask(id='st-1', text='Collect numbers', completed=True)],
            start_date=date(2024, 1, 1),
            end_date=None,
            project_id='p1',
            sprint_id='s1',
            is_recurring=True,
            recurrence=RecurrenceConfig(frequency='daily', interval=1),
        )
        values.update(overrides)
        return TaskRecord(**values)
    return factory


@pytest.fixture
def make_sprint():
    """Factory for sprint records."""
    def factory(sprint_id, order, project_ids=('p1',), status='pending', **overrides):
        values = dict(
            id=sprint_id,
            name=f'Sprint {sprint_id}',
            start_date=date(2024, 1, 1),
            end_date=date(2024, 1, 14),
            project_ids=tuple(project_ids),
            status=status,
            order=order,
        )
        values.update(overrides)
        return SprintRecord(**values)
    return factory


@pytest.fixture
def app(clock):
    """Provides a Flask app on an in-memory database."""
    app = create_app(TestConfig, clock=clock)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


def create_user(app, username, role='client', project_ids=()):
    with app.app_context():
        user = User(username=username, email=f'{username}@example.com', role=role)
        user.set_password(PASSWORD)
        user.projects = [db.session.get(Project, pid) for pid in project_ids]
        db.session.add(user)
        db.session.commit()
        return user.id


def create_project(app, name):
    with app.app_context():
        project = Project(name=name)
        db.session.add(project)
        db.session.commit()
        return project.id


def login(app, username):
    client = app.test_client()
    response = client.post('/api/login', json={'username': username, 'password': PASSWORD})
    assert response.status_code == 200, response.get_json()
    return client


@pytest.fixture
def project_id(app):
    return create_project(app, 'Alpha')


@pytest.fixture
def other_project_id(app):
    return create_project(app, 'Beta')


@pytest.fixture
def admin_client(app):
    """A test client logged in as an administrator."""
    create_user(app, 'admin', role='admin')
    return login(app, 'admin')


@pytest.fixture
def client_client(app, project_id):
    """A test client logged in as a client assigned to the Alpha project."""
    create_user(app, 'carol', role='client', project_ids=[project_id])
    return login(app, 'carol')
