"""Role checks for admin and client users.

Admins can do everything. Clients only see the projects they are assigned
to and may create tasks and comments there, but cannot change task status
(except signing off a task under review) or manage projects, sprints and
users. Comments can only be deleted by their author.
"""
from functools import wraps

from flask_login import current_user, login_required

from .errors import PermissionDeniedError
from .models import Project, Task


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not current_user.is_admin:
            raise PermissionDeniedError('Administrator access required')
        return view(*args, **kwargs)
    return login_required(wrapper)


def visible_project_ids(user):
    """None means every project."""
    if user.is_admin:
        return None
    return {p.id for p in user.projects}


def visible_projects_query(user):
    query = Project.query.order_by(Project.created_at.desc())
    if user.is_admin:
        return query
    return query.filter(Project.members.any(id=user.id))


def visible_tasks_query(user):
    query = Task.query.order_by(Task.created_at.desc())
    if user.is_admin:
        return query
    return query.filter(Task.project.has(Project.members.any(id=user.id)))


def can_view_project(user, project_id):
    allowed = visible_project_ids(user)
    return allowed is None or project_id in allowed


def can_view_task(user, task):
    if user.is_admin:
        return True
    return task.project_id is not None and can_view_project(user, task.project_id)


def ensure_can_view_task(user, task):
    if not can_view_task(user, task):
        raise PermissionDeniedError('You do not have access to this task')


def can_create_task_in(user, project_id):
    if user.is_admin:
        return True
    return project_id is not None and can_view_project(user, project_id)


def can_change_status(user, task, new_status):
    """Clients may only sign off a task under review (paused -> completed)."""
    if user.is_admin:
        return True
    return can_view_task(user, task) and task.status == 'paused' and new_status == 'completed'


def can_delete_comment(user, comment):
    return comment.user_id == user.id
