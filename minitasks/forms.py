from flask_wtf import FlaskForm
from wtforms import (
    StringField, PasswordField, TextAreaField, DateField, SelectField, SelectMultipleField,
    BooleanField, IntegerField,
)
from wtforms.validators import DataRequired, Email, Length, NumberRange, Optional, ValidationError

from .data import FREQUENCIES, TASK_STATUSES
from .models import User, ROLES

WEEKDAYS = [(0, 'Sunday'), (1, 'Monday'), (2, 'Tuesday'), (3, 'Wednesday'),
            (4, 'Thursday'), (5, 'Friday'), (6, 'Saturday')]
PRIORITIES = [('', 'None'), ('low', 'Low'), ('medium', 'Medium'), ('high', 'High')]


def form_errors(form):
    """Flatten WTForms errors into ``{field: first message}``."""
    return {name: messages[0] for name, messages in form.errors.items()}


class LoginForm(FlaskForm):
    username = StringField('Username', validators=[DataRequired(), Length(min=3, max=80)])
    password = PasswordField('Password', validators=[DataRequired()])
    remember_me = BooleanField('Remember Me')

class UserForm(FlaskForm):
    username = StringField('Username', validators=[DataRequired(), Length(min=3, max=80)])
    email = StringField('Email', validators=[DataRequired(), Email()])
    full_name = StringField('Full Name', validators=[Optional(), Length(max=120)])
    role = SelectField('Role', choices=[(r, r.capitalize()) for r in ROLES], default='client')
    password = PasswordField('Password', validators=[Optional(), Length(min=6)])

    def __init__(self, *args, user=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._user = user

    def validate_username(self, username):
        existing = User.query.filter_by(username=username.data).first()
        if existing and existing is not self._user:
            raise ValidationError('Username already taken.')

    def validate_email(self, email):
        existing = User.query.filter_by(email=email.data).first()
        if existing and existing is not self._user:
            raise ValidationError('Email already registered.')

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators):
            return False
        # Optional() stops the field chain on empty input, so check here
        if self._user is None and not self.password.data:
            self.password.errors.append('A password is required for new users.')
            return False
        return True

class ProjectForm(FlaskForm):
    name = StringField('Project Name', validators=[DataRequired(), Length(max=200)])
    description = TextAreaField('Description')
    color = StringField('Color', validators=[Optional(), Length(max=20)])

class SprintForm(FlaskForm):
    name = StringField('Sprint Name', validators=[DataRequired(), Length(max=200)])
    description = TextAreaField('Description')
    start_date = DateField('Start Date', format='%Y-%m-%d', validators=[DataRequired()])
    end_date = DateField('End Date', format='%Y-%m-%d', validators=[DataRequired()])
    project_ids = SelectMultipleField('Projects', choices=[])

    def validate_end_date(self, end_date):
        if self.start_date.data and end_date.data and end_date.data <= self.start_date.data:
            raise ValidationError('End date must be after the start date.')

class TaskForm(FlaskForm):
    title = StringField('Task Title', validators=[DataRequired(), Length(max=200)])
    description = TextAreaField('Description')
    status = SelectField('Status', choices=[(s, s.replace('_', ' ').title()) for s in TASK_STATUSES],
                         default='created')
    priority = SelectField('Priority', choices=PRIORITIES, default='')
    label = StringField('Label', validators=[Optional(), Length(max=50)])
    start_date = DateField('Start Date', format='%Y-%m-%d', validators=[Optional()])
    end_date = DateField('End Date', format='%Y-%m-%d', validators=[Optional()])
    project_id = StringField('Project', validators=[Optional()])
    sprint_id = StringField('Sprint', validators=[Optional()])
    estimated_minutes = IntegerField('Estimated Minutes', validators=[Optional(), NumberRange(min=1)])

    # Recurrence
    is_recurring = BooleanField('Repeat')
    frequency = SelectField('Frequency', choices=[('', 'Does not repeat')] + [(f, f.title()) for f in FREQUENCIES],
                            default='')
    interval = IntegerField('Every', validators=[Optional(), NumberRange(min=1)], default=1)
    days_of_week = SelectMultipleField('On', coerce=int, choices=WEEKDAYS)
    recurrence_end_date = DateField('Until', format='%Y-%m-%d', validators=[Optional()])
    end_after_occurrences = IntegerField('Occurrences', validators=[Optional(), NumberRange(min=1)])

    def validate_is_recurring(self, is_recurring):
        if not is_recurring.data:
            return
        if not self.start_date.data:
            raise ValidationError('Recurring tasks need a start date.')
        if not self.frequency.data:
            raise ValidationError('Recurring tasks need a frequency.')

    def recurrence_dict(self):
        if not self.is_recurring.data:
            return None
        return {
            'frequency': self.frequency.data,
            'interval': self.interval.data or 1,
            'days_of_week': list(self.days_of_week.data or []) if self.frequency.data == 'weekly' else [],
            'end_date': self.recurrence_end_date.data.isoformat() if self.recurrence_end_date.data else None,
            'end_after_occurrences': self.end_after_occurrences.data,
        }

class CommentForm(FlaskForm):
    text = TextAreaField('Comment', validators=[DataRequired(), Length(max=5000)])
    parent_comment_id = StringField('Reply To', validators=[Optional()])
