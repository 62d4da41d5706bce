import logging
from collections.abc import Mapping

import click
from flask import Flask, Blueprint, current_app, jsonify, request
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from flask_wtf.csrf import CSRFProtect, generate_csrf
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from . import boards, permissions, services, sprints as sprint_rules, timetracking
from .clock import SystemClock
from .config import Config
from .data import DEMO_PROJECTS, DEMO_SPRINTS, TASK_STATUSES, normalize_subtasks, to_date
from .errors import MiniTasksError, PermissionDeniedError, ValidationError
from .forms import LoginForm, UserForm, ProjectForm, SprintForm, TaskForm, CommentForm, form_errors
from .models import db, User, Project, Sprint, Task, Subtask, Comment, TaskView
from .permissions import admin_required
from .store import SqlAlchemyStore

logger = logging.getLogger(__name__)

login_manager = LoginManager()
csrf = CSRFProtect()
bp = Blueprint('main', __name__, url_prefix='/api')


def create_app(test_config=None, clock=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if isinstance(test_config, Mapping):
        app.config.from_mapping(test_config)
    elif test_config is not None:
        app.config.from_object(test_config)

    _configure_logging(app)
    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)
    app.extensions['minitasks.clock'] = clock or SystemClock()

    app.register_blueprint(bp)
    _register_error_handlers(app)
    _register_commands(app)

    with app.app_context():
        db.create_all()
    logger.info('Database ready')
    return app


def _configure_logging(app):
    if not logging.getLogger().handlers:
        logging.basicConfig(format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    logging.getLogger('minitasks').setLevel(app.config['MINITASKS_LOG_LEVEL'])


def _register_error_handlers(app):
    @app.errorhandler(MiniTasksError)
    def handle_minitasks_error(error):
        if error.status_code >= 500:
            logger.error('Unhandled application error: %s', error)
        return jsonify({'error': str(error)}), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'error': error.description}), error.code


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, user_id)

@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'Authentication required'}), 401


def get_store():
    return SqlAlchemyStore(db.session)

def get_clock():
    return current_app.extensions['minitasks.clock']

def invalid(form):
    return jsonify({'errors': form_errors(form)}), 400

def _json_body():
    return request.get_json(silent=True) or {}

# -------------------- auth --------------------

@bp.route('/csrf-token')
def csrf_token():
    return jsonify({'csrf_token': generate_csrf()})

@bp.route('/login', methods=['POST'])
def login():
    form = LoginForm()
    if not form.validate_on_submit():
        return invalid(form)
    user = User.query.filter_by(username=form.username.data).first()
    if user is None or not user.check_password(form.password.data):
        logger.info('Failed login for %s', form.username.data)
        return jsonify({'error': 'Invalid username or password'}), 401
    login_user(user, remember=form.remember_me.data)
    return jsonify(user.to_dict())

@bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'status': 'logged out'})

@bp.route('/me')
@login_required
def me():
    return jsonify(current_user.to_dict())

# -------------------- dashboard --------------------

@bp.route('/dashboard')
@login_required
def dashboard():
    created = []
    sweep_error = None
    if current_app.config['MINITASKS_SWEEP_ON_LOAD']:
        try:
            created = services.sweep_recurring_tasks(
                get_store(), get_clock(), current_app.config['MINITASKS_HORIZON_DAYS'])
        except (MiniTasksError, SQLAlchemyError) as exc:
            # Instances persisted before the failure stay; the next load resumes
            db.session.rollback()
            logger.exception('Recurrence sweep failed on dashboard load')
            sweep_error = str(exc)

    project_id = request.args.get('project_id')
    query = permissions.visible_tasks_query(current_user)
    if project_id:
        query = query.filter(Task.project_id == project_id)
    records = [t.to_record() for t in query.all()]

    sprint_records = [s.to_record() for s in _visible_sprints()]
    current = sprint_rules.current_sprint(sprint_records, get_clock().today())
    return jsonify({
        'projects': [p.to_dict() for p in permissions.visible_projects_query(current_user).all()],
        'current_sprint': current.as_dict() if current else None,
        'stats': boards.status_counts(records),
        'total_tasks': len(records),
        'generated_instances': len(created),
        'sweep_error': sweep_error,
    })

# -------------------- projects --------------------

@bp.route('/projects')
@login_required
def list_projects():
    projects = permissions.visible_projects_query(current_user).all()
    return jsonify([p.to_dict() for p in projects])

@bp.route('/projects', methods=['POST'])
@admin_required
def create_project():
    form = ProjectForm()
    if not form.validate_on_submit():
        return invalid(form)
    project = Project(name=form.name.data, description=form.description.data, color=form.color.data)
    db.session.add(project)
    db.session.commit()
    logger.info('Project %s created', project.id)
    return jsonify(project.to_dict()), 201

@bp.route('/projects/<project_id>')
@login_required
def project_detail(project_id):
    project = db.get_or_404(Project, project_id)
    if not permissions.can_view_project(current_user, project.id):
        raise PermissionDeniedError('You do not have access to this project')
    records = [t.to_record() for t in project.tasks.order_by(Task.created_at.desc()).all()]
    data = project.to_dict()
    data['task_stats'] = boards.status_counts(records)
    data['task_stats']['total'] = len(records)
    return jsonify(data)

@bp.route('/projects/<project_id>', methods=['PUT'])
@admin_required
def edit_project(project_id):
    project = db.get_or_404(Project, project_id)
    form = ProjectForm()
    if not form.validate_on_submit():
        return invalid(form)
    project.name = form.name.data
    project.description = form.description.data
    project.color = form.color.data
    db.session.commit()
    return jsonify(project.to_dict())

@bp.route('/projects/<project_id>', methods=['DELETE'])
@admin_required
def delete_project(project_id):
    project = db.get_or_404(Project, project_id)
    # Tasks become unassigned rather than deleted
    Task.query.filter_by(project_id=project.id).update({'project_id': None})
    for sprint in Sprint.query.filter(Sprint.projects.any(id=project.id)).all():
        sprint.projects.remove(project)
    project.members = []
    db.session.delete(project)
    db.session.commit()
    logger.info('Project %s deleted', project_id)
    return jsonify({'status': 'deleted'})

@bp.route('/projects/<project_id>/members', methods=['POST'])
@admin_required
def add_member(project_id):
    project = db.get_or_404(Project, project_id)
    user_id = _json_body().get('user_id')
    if not user_id:
        raise ValidationError('Please select a user.')
    user = db.get_or_404(User, user_id)
    if user not in project.members:
        project.members.append(user)
        db.session.commit()
    return jsonify(project.to_dict())

@bp.route('/projects/<project_id>/members/<user_id>', methods=['DELETE'])
@admin_required
def remove_member(project_id, user_id):
    project = db.get_or_404(Project, project_id)
    user = db.get_or_404(User, user_id)
    if user in project.members:
        project.members.remove(user)
        db.session.commit()
    return jsonify(project.to_dict())

# -------------------- sprints --------------------

def _visible_sprints():
    query = Sprint.query.order_by(Sprint.order, Sprint.id)
    allowed = permissions.visible_project_ids(current_user)
    if allowed is None:
        return query.all()
    return [s for s in query.all() if allowed & {p.id for p in s.projects}]

def _sprint_json(record):
    data = record.as_dict()
    data['is_overdue'] = sprint_rules.is_overdue(record, get_clock().today())
    return data

def _sprint_form():
    form = SprintForm()
    form.project_ids.choices = [(p.id, p.name) for p in Project.query.order_by(Project.name).all()]
    return form

@bp.route('/sprints')
@login_required
def list_sprints():
    records = [s.to_record() for s in _visible_sprints()]
    current = sprint_rules.current_sprint(records, get_clock().today())
    return jsonify({
        'sprints': [_sprint_json(r) for r in records],
        'current_sprint_id': current.id if current else None,
    })

@bp.route('/sprints', methods=['POST'])
@admin_required
def create_sprint():
    form = _sprint_form()
    if not form.validate_on_submit():
        return invalid(form)
    record = services.create_sprint(
        get_store(),
        name=form.name.data,
        description=form.description.data,
        start_date=form.start_date.data,
        end_date=form.end_date.data,
        project_ids=form.project_ids.data,
    )
    logger.info('Sprint %s created as %s', record.id, record.status)
    return jsonify(_sprint_json(record)), 201

@bp.route('/sprints/<sprint_id>', methods=['PUT'])
@admin_required
def edit_sprint(sprint_id):
    db.get_or_404(Sprint, sprint_id)
    form = _sprint_form()
    if not form.validate_on_submit():
        return invalid(form)
    record = get_store().update_sprint(
        sprint_id,
        name=form.name.data,
        description=form.description.data,
        start_date=form.start_date.data,
        end_date=form.end_date.data,
        project_ids=form.project_ids.data,
    )
    return jsonify(_sprint_json(record))

@bp.route('/sprints/<sprint_id>', methods=['DELETE'])
@admin_required
def delete_sprint(sprint_id):
    detached = services.delete_sprint(get_store(), sprint_id)
    return jsonify({'status': 'deleted', 'detached_tasks': detached})

@bp.route('/sprints/<sprint_id>/activate', methods=['POST'])
@admin_required
def activate_sprint(sprint_id):
    record = services.activate_sprint(get_store(), sprint_id)
    return jsonify(_sprint_json(record))

@bp.route('/sprints/<sprint_id>/complete', methods=['POST'])
@admin_required
def complete_sprint(sprint_id):
    completion = services.complete_sprint(get_store(), sprint_id)
    return jsonify({
        'sprint_id': completion.sprint_id,
        'successor_id': completion.successor.id if completion.successor else None,
        'moved_task_ids': [task_id for task_id, _ in completion.task_moves],
    })

# -------------------- tasks --------------------

def _tasks_for_request():
    query = permissions.visible_tasks_query(current_user)
    project_id = request.args.get('project_id')
    sprint_id = request.args.get('sprint_id')
    if project_id:
        query = query.filter(Task.project_id == project_id)
    if sprint_id:
        query = query.filter(Task.sprint_id == sprint_id)
    return query.all()

@bp.route('/tasks')
@login_required
def list_tasks():
    tasks = _tasks_for_request()
    view = request.args.get('view', 'list')
    if view == 'kanban':
        records = [t.to_record() for t in tasks]
        columns = boards.kanban_columns(records)
        return jsonify({status: [r.as_dict() for r in column] for status, column in columns.items()})
    if view == 'calendar':
        records = [t.to_record() for t in tasks]
        today = get_clock().today()
        year = request.args.get('year', today.year, type=int)
        month = request.args.get('month', today.month, type=int)
        if not 1 <= month <= 12:
            raise ValidationError('Month must be between 1 and 12')
        days = boards.calendar_month(records, year, month)
        return jsonify({
            'days': {day.isoformat(): [r.id for r in on_day] for day, on_day in days.items()},
            'tasks': {r.id: r.as_dict() for r in records},
            'undated': [r.id for r in boards.undated(records)],
        })
    by_id = {t.id: t for t in tasks}
    filtered = boards.list_view(
        [t.to_record() for t in tasks],
        query=request.args.get('q', ''),
        status=request.args.get('status'),
    )
    return jsonify([by_id[r.id].to_dict() for r in filtered])

def _check_references(form):
    """Attach errors for project/sprint ids that do not exist."""
    ok = True
    if form.project_id.data and db.session.get(Project, form.project_id.data) is None:
        form.project_id.errors.append('Unknown project.')
        ok = False
    if form.sprint_id.data and db.session.get(Sprint, form.sprint_id.data) is None:
        form.sprint_id.errors.append('Unknown sprint.')
        ok = False
    return ok

def _apply_task_form(task, form):
    task.title = form.title.data
    task.description = form.description.data
    task.priority = form.priority.data or None
    task.label = form.label.data or None
    task.start_date = form.start_date.data
    task.end_date = form.end_date.data
    task.project_id = form.project_id.data or None
    task.sprint_id = form.sprint_id.data or None
    task.estimated_minutes = form.estimated_minutes.data
    task.is_recurring = form.is_recurring.data
    task.recurrence = form.recurrence_dict()
    body = _json_body()
    if 'subtasks' in body:
        task.set_subtasks(normalize_subtasks(body['subtasks']))

@bp.route('/tasks', methods=['POST'])
@login_required
def create_task():
    form = TaskForm()
    if not form.validate_on_submit() or not _check_references(form):
        return invalid(form)
    if not permissions.can_create_task_in(current_user, form.project_id.data or None):
        raise PermissionDeniedError('You can only create tasks in your assigned projects')
    task = Task(created_by_id=current_user.id)
    _apply_task_form(task, form)
    task.status = form.status.data if current_user.is_admin else 'created'
    db.session.add(task)
    db.session.commit()
    logger.info('Task %s created by %s', task.id, current_user.username)
    return jsonify(task.to_dict()), 201

@bp.route('/tasks/<task_id>')
@login_required
def task_detail(task_id):
    task = db.get_or_404(Task, task_id)
    permissions.ensure_can_view_task(current_user, task)
    if not current_user.is_admin:
        db.session.add(TaskView(task_id=task.id, user_id=current_user.id, viewed_at=get_clock().now()))
        db.session.commit()
    data = task.to_dict()
    data['subtask_progress'] = boards.subtask_progress(task.to_record())
    data['tracked_display'] = timetracking.format_minutes(timetracking.total_minutes(task, get_clock().now()))
    data['over_estimate'] = timetracking.is_over_estimate(task, get_clock().now())
    return jsonify(data)

@bp.route('/tasks/<task_id>', methods=['PUT'])
@admin_required
def edit_task(task_id):
    task = db.get_or_404(Task, task_id)
    form = TaskForm()
    if not form.validate_on_submit() or not _check_references(form):
        return invalid(form)
    _apply_task_form(task, form)
    task.status = form.status.data
    db.session.commit()
    return jsonify(task.to_dict())

@bp.route('/tasks/<task_id>', methods=['DELETE'])
@admin_required
def delete_task(task_id):
    task = db.get_or_404(Task, task_id)
    # Instances of a deleted template become ordinary tasks
    Task.query.filter_by(parent_task_id=task.id).update({'parent_task_id': None})
    db.session.delete(task)
    db.session.commit()
    logger.info('Task %s deleted', task_id)
    return jsonify({'status': 'deleted'})

@bp.route('/tasks/<task_id>/status', methods=['PATCH'])
@login_required
def change_task_status(task_id):
    task = db.get_or_404(Task, task_id)
    status = _json_body().get('status')
    if status not in TASK_STATUSES:
        raise ValidationError(f'Unknown status: {status!r}')
    if not permissions.can_change_status(current_user, task, status):
        raise PermissionDeniedError('You cannot move this task to that status')
    task.status = status
    db.session.commit()
    return jsonify(task.to_dict())

@bp.route('/tasks/<task_id>/dates', methods=['PATCH'])
@admin_required
def reschedule_task(task_id):
    task = db.get_or_404(Task, task_id)
    body = _json_body()
    if 'start_date' in body:
        task.start_date = to_date(body['start_date'])
    if 'end_date' in body:
        task.end_date = to_date(body['end_date'])
    db.session.commit()
    return jsonify(task.to_dict())

@bp.route('/tasks/<task_id>/subtasks/<subtask_id>/toggle', methods=['POST'])
@admin_required
def toggle_subtask(task_id, subtask_id):
    subtask = db.get_or_404(Subtask, subtask_id)
    if subtask.task_id != task_id:
        return jsonify({'error': 'Subtask not found'}), 404
    subtask.completed = not subtask.completed
    db.session.commit()
    return jsonify(subtask.task.to_dict())

@bp.route('/tasks/<task_id>/timer/<action>', methods=['POST'])
@admin_required
def task_timer(task_id, action):
    task = db.get_or_404(Task, task_id)
    now = get_clock().now()
    if action == 'start':
        timetracking.start_timer(task, now)
    elif action == 'pause':
        timetracking.pause_timer(task, now)
    elif action == 'reset':
        timetracking.reset_timer(task)
    else:
        return jsonify({'error': f'Unknown timer action: {action}'}), 404
    db.session.commit()
    return jsonify(task.to_dict()['time_tracking'])

@bp.route('/tasks/<task_id>/history')
@admin_required
def task_history(task_id):
    task = db.get_or_404(Task, task_id)
    views = task.views.order_by(TaskView.viewed_at.desc()).all()
    return jsonify([v.to_dict() for v in views])

# -------------------- comments --------------------

@bp.route('/tasks/<task_id>/comments')
@login_required
def list_comments(task_id):
    task = db.get_or_404(Task, task_id)
    permissions.ensure_can_view_task(current_user, task)
    comments = task.comments.order_by(Comment.created_at).all()
    return jsonify([c.to_dict() for c in comments])

@bp.route('/tasks/<task_id>/comments', methods=['POST'])
@login_required
def add_comment(task_id):
    task = db.get_or_404(Task, task_id)
    permissions.ensure_can_view_task(current_user, task)
    form = CommentForm()
    if not form.validate_on_submit():
        return invalid(form)
    parent_id = form.parent_comment_id.data or None
    if parent_id:
        parent = db.session.get(Comment, parent_id)
        if parent is None or parent.task_id != task.id:
            raise ValidationError('Reply target is not a comment on this task')
    comment = Comment(task_id=task.id, user_id=current_user.id, text=form.text.data,
                      parent_comment_id=parent_id)
    db.session.add(comment)
    db.session.commit()
    return jsonify(comment.to_dict()), 201

@bp.route('/comments/<comment_id>', methods=['PUT'])
@login_required
def edit_comment(comment_id):
    comment = db.get_or_404(Comment, comment_id)
    if not permissions.can_delete_comment(current_user, comment):
        raise PermissionDeniedError('You can only edit your own comments')
    form = CommentForm()
    if not form.validate_on_submit():
        return invalid(form)
    comment.text = form.text.data
    db.session.commit()
    return jsonify(comment.to_dict())

@bp.route('/comments/<comment_id>', methods=['DELETE'])
@login_required
def delete_comment(comment_id):
    comment = db.get_or_404(Comment, comment_id)
    if not permissions.can_delete_comment(current_user, comment):
        raise PermissionDeniedError('You can only delete your own comments')
    Comment.query.filter_by(parent_comment_id=comment.id).update({'parent_comment_id': None})
    db.session.delete(comment)
    db.session.commit()
    return jsonify({'status': 'deleted'})

# -------------------- users --------------------

@bp.route('/users')
@admin_required
def list_users():
    return jsonify([u.to_dict() for u in User.query.order_by(User.username).all()])

@bp.route('/users', methods=['POST'])
@admin_required
def create_user():
    form = UserForm()
    if not form.validate_on_submit():
        return invalid(form)
    user = User(username=form.username.data, email=form.email.data,
                full_name=form.full_name.data, role=form.role.data)
    user.set_password(form.password.data)
    db.session.add(user)
    db.session.commit()
    logger.info('User %s created with role %s', user.username, user.role)
    return jsonify(user.to_dict()), 201

@bp.route('/users/<user_id>', methods=['PUT'])
@admin_required
def edit_user(user_id):
    user = db.get_or_404(User, user_id)
    form = UserForm(user=user)
    if not form.validate_on_submit():
        return invalid(form)
    user.username = form.username.data
    user.email = form.email.data
    user.full_name = form.full_name.data
    user.role = form.role.data
    if form.password.data:
        user.set_password(form.password.data)
    db.session.commit()
    return jsonify(user.to_dict())

@bp.route('/users/<user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    user = db.get_or_404(User, user_id)
    if user.id == current_user.id:
        raise ValidationError('You cannot delete your own account.')
    user.projects = []
    Comment.query.filter_by(user_id=user.id).delete()
    TaskView.query.filter_by(user_id=user.id).delete()
    Task.query.filter_by(created_by_id=user.id).update({'created_by_id': None})
    db.session.delete(user)
    db.session.commit()
    return jsonify({'status': 'deleted'})

@bp.route('/users/<user_id>/projects', methods=['PUT'])
@admin_required
def assign_projects(user_id):
    user = db.get_or_404(User, user_id)
    project_ids = _json_body().get('project_ids') or []
    projects = Project.query.filter(Project.id.in_(project_ids)).all()
    if len(projects) != len(set(project_ids)):
        raise ValidationError('Unknown project in assignment')
    user.projects = projects
    db.session.commit()
    return jsonify(user.to_dict())

# -------------------- recurrence --------------------

@bp.route('/recurrence/sweep', methods=['POST'])
@admin_required
def sweep_recurrence():
    horizon = _json_body().get('horizon_days')
    if horizon is None:
        horizon = current_app.config['MINITASKS_HORIZON_DAYS']
    elif isinstance(horizon, bool) or not isinstance(horizon, int) or horizon < 1:
        raise ValidationError('horizon_days must be a positive integer')
    created = services.sweep_recurring_tasks(get_store(), get_clock(), horizon)
    return jsonify({'created': len(created), 'tasks': [r.as_dict() for r in created]})

# -------------------- command line --------------------

def seed_demo_data():
    """Insert the demo projects, sprints and tasks from ``data``."""
    projects = {}
    for raw in DEMO_PROJECTS:
        project = Project(**raw)
        db.session.add(project)
        projects[project.name] = project
    db.session.flush()
    store = get_store()
    for raw in DEMO_SPRINTS:
        record = services.create_sprint(
            store,
            name=raw['name'],
            description=raw['description'],
            start_date=to_date(raw['start_date']),
            end_date=to_date(raw['end_date']),
            project_ids=[projects[name].id for name in raw['projects']],
        )
        first_project = projects[raw['projects'][0]]
        for title in raw['tasks']:
            db.session.add(Task(title=title, project_id=first_project.id, sprint_id=record.id))
    db.session.commit()

def _register_commands(app):
    @app.cli.command('init-db')
    @click.option('--seed', is_flag=True, help='Load demo projects, sprints and tasks.')
    def init_db_command(seed):
        """Create the database tables."""
        db.create_all()
        if seed:
            if Project.query.count():
                click.echo('Database already has projects; skipping demo data.')
            else:
                seed_demo_data()
                click.echo('Demo data loaded.')
        click.echo('Database ready.')

    @app.cli.command('create-admin')
    @click.option('--username', prompt=True)
    @click.option('--email', prompt=True)
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
    def create_admin_command(username, email, password):
        """Create an administrator account."""
        if User.query.filter_by(username=username).first():
            raise click.ClickException(f'User {username} already exists')
        user = User(username=username, email=email, role='admin')
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f'Admin {username} created.')

    @app.cli.command('sweep-recurring')
    @click.option('--horizon-days', type=click.IntRange(min=1), default=None,
                  help='Days ahead to generate instances for.')
    def sweep_recurring_command(horizon_days):
        """Generate missing instances of recurring tasks."""
        horizon = horizon_days or current_app.config['MINITASKS_HORIZON_DAYS']
        created = services.sweep_recurring_tasks(get_store(), get_clock(), horizon)
        click.echo(f'Created {len(created)} task instance(s).')
