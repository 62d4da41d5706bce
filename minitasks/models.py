from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime

from .data import (
    TaskRecord, SprintRecord, Subtask as SubtaskRecord, new_id, normalize_recurrence,
)

db = SQLAlchemy()

ROLES = ('admin', 'client')

# Which client users may see which projects
project_assignments = db.Table('project_assignments',
    db.Column('user_id', db.String(32), db.ForeignKey('users.id'), primary_key=True),
    db.Column('project_id', db.String(32), db.ForeignKey('projects.id'), primary_key=True),
    db.Column('assigned_at', db.DateTime, default=datetime.utcnow)
)

# A sprint may span several projects
sprint_projects = db.Table('sprint_projects',
    db.Column('sprint_id', db.String(32), db.ForeignKey('sprints.id'), primary_key=True),
    db.Column('project_id', db.String(32), db.ForeignKey('projects.id'), primary_key=True)
)

class User(UserMixin, db.Model):
    __tablename__ = 'users'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(120))
    role = db.Column(db.String(20), nullable=False, default='client')
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    projects = db.relationship('Project', secondary=project_assignments, back_populates='members')

    @property
    def is_admin(self):
        return self.role == 'admin'

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'full_name': self.full_name,
            'role': self.role,
            'project_ids': [p.id for p in self.projects],
        }

    def __repr__(self):
        return f'<User {self.username}>'

class Project(db.Model):
    __tablename__ = 'projects'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    color = db.Column(db.String(20))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    members = db.relationship('User', secondary=project_assignments, back_populates='projects')
    tasks = db.relationship('Task', back_populates='project', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'color': self.color,
            'member_ids': [u.id for u in self.members],
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Project {self.name}>'

class Sprint(db.Model):
    __tablename__ = 'sprints'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending', index=True)
    order = db.Column(db.Integer, nullable=False, default=0, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    projects = db.relationship('Project', secondary=sprint_projects)
    tasks = db.relationship('Task', back_populates='sprint', lazy='dynamic')

    def to_record(self):
        return SprintRecord(
            id=self.id,
            name=self.name,
            description=self.description,
            project_ids=tuple(p.id for p in self.projects),
            start_date=self.start_date,
            end_date=self.end_date,
            status=self.status,
            order=self.order,
            created_at=self.created_at,
        )

    def __repr__(self):
        return f'<Sprint {self.name}>'

class Task(db.Model):
    __tablename__ = 'tasks'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.String(50), nullable=False, default='created', index=True)
    priority = db.Column(db.String(20))
    label = db.Column(db.String(50))
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    project_id = db.Column(db.String(32), db.ForeignKey('projects.id'), nullable=True, index=True)
    sprint_id = db.Column(db.String(32), db.ForeignKey('sprints.id'), nullable=True, index=True)
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    recurrence = db.Column(db.JSON)
    # Set only on instances generated from a recurring template
    parent_task_id = db.Column(db.String(32), index=True)
    created_by_id = db.Column(db.String(32), db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Time tracking
    estimated_minutes = db.Column(db.Integer)
    tracked_minutes = db.Column(db.Float, nullable=False, default=0.0)
    timer_started_at = db.Column(db.DateTime)

    project = db.relationship('Project', back_populates='tasks')
    sprint = db.relationship('Sprint', back_populates='tasks')
    created_by = db.relationship('User')
    subtasks = db.relationship('Subtask', backref='task', order_by='Subtask.position',
                               cascade='all, delete-orphan')
    sessions = db.relationship('TimeSession', backref='task', order_by='TimeSession.start_time',
                               cascade='all, delete-orphan')
    comments = db.relationship('Comment', backref='task', lazy='dynamic', cascade='all, delete-orphan')
    views = db.relationship('TaskView', backref='task', lazy='dynamic', cascade='all, delete-orphan')

    @property
    def is_running(self):
        return self.timer_started_at is not None

    def set_subtasks(self, subtasks):
        """Replace the checklist with ``data.Subtask`` records, keeping their ids."""
        self.subtasks = [
            Subtask(id=s.id, text=s.text, completed=s.completed, position=i)
            for i, s in enumerate(subtasks)
        ]

    def to_record(self):
        return TaskRecord(
            id=self.id,
            title=self.title,
            description=self.description,
            status=self.status,
            subtasks=[SubtaskRecord(id=s.id, text=s.text, completed=s.completed) for s in self.subtasks],
            start_date=self.start_date,
            end_date=self.end_date,
            project_id=self.project_id,
            sprint_id=self.sprint_id,
            is_recurring=self.is_recurring,
            recurrence=normalize_recurrence(self.recurrence),
            parent_task_id=self.parent_task_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_dict(self):
        data = self.to_record().as_dict()
        data.update({
            'priority': self.priority,
            'label': self.label,
            'time_tracking': {
                'estimated_minutes': self.estimated_minutes,
                'tracked_minutes': self.tracked_minutes,
                'is_running': self.is_running,
                'start_time': self.timer_started_at.isoformat() if self.timer_started_at else None,
                'sessions': [s.to_dict() for s in self.sessions],
            },
        })
        return data

    def __repr__(self):
        return f'<Task {self.title}>'

class Subtask(db.Model):
    __tablename__ = 'subtasks'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    text = db.Column(db.String(500), nullable=False)
    completed = db.Column(db.Boolean, default=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    task_id = db.Column(db.String(32), db.ForeignKey('tasks.id'), nullable=False)

    def __repr__(self):
        return f'<Subtask {self.text}>'

class TimeSession(db.Model):
    __tablename__ = 'time_sessions'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    task_id = db.Column(db.String(32), db.ForeignKey('tasks.id'), nullable=False)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime)
    minutes = db.Column(db.Float, nullable=False, default=0.0)

    def to_dict(self):
        return {
            'id': self.id,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'minutes': self.minutes,
        }

class Comment(db.Model):
    __tablename__ = 'comments'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    task_id = db.Column(db.String(32), db.ForeignKey('tasks.id'), nullable=False, index=True)
    user_id = db.Column(db.String(32), db.ForeignKey('users.id'), nullable=False)
    parent_comment_id = db.Column(db.String(32), db.ForeignKey('comments.id'), nullable=True)
    text = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'task_id': self.task_id,
            'user_id': self.user_id,
            'user_name': self.user.full_name or self.user.username,
            'parent_comment_id': self.parent_comment_id,
            'text': self.text,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

class TaskView(db.Model):
    __tablename__ = 'task_views'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    task_id = db.Column(db.String(32), db.ForeignKey('tasks.id'), nullable=False, index=True)
    user_id = db.Column(db.String(32), db.ForeignKey('users.id'), nullable=False)
    viewed_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'user_name': self.user.full_name or self.user.username,
            'viewed_at': self.viewed_at.isoformat() if self.viewed_at else None,
        }
