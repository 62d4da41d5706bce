"""Start/pause/reset timers on tasks and report tracked time."""
from datetime import datetime

from .models import TimeSession


def _elapsed_minutes(start, now):
    return max((now - start).total_seconds() / 60.0, 0.0)


def start_timer(task, now: datetime) -> bool:
    """Open a new session. Returns False if the timer was already running."""
    if task.is_running:
        return False
    task.timer_started_at = now
    task.sessions.append(TimeSession(start_time=now, minutes=0.0))
    return True


def pause_timer(task, now: datetime) -> float:
    """Close the open session and add its minutes to the total.

    Returns the minutes added (0 if the timer was not running).
    """
    if not task.is_running:
        return 0.0
    elapsed = _elapsed_minutes(task.timer_started_at, now)
    open_sessions = [s for s in task.sessions if s.end_time is None]
    if open_sessions:
        session = open_sessions[-1]
        session.end_time = now
        session.minutes = elapsed
    task.tracked_minutes = (task.tracked_minutes or 0.0) + elapsed
    task.timer_started_at = None
    return elapsed


def reset_timer(task) -> None:
    """Stop the timer and discard all tracked time and sessions."""
    task.timer_started_at = None
    task.tracked_minutes = 0.0
    task.sessions = []


def total_minutes(task, now: datetime) -> float:
    total = task.tracked_minutes or 0.0
    if task.is_running:
        total += _elapsed_minutes(task.timer_started_at, now)
    return total


def is_over_estimate(task, now: datetime) -> bool:
    if not task.estimated_minutes:
        return False
    return total_minutes(task, now) > task.estimated_minutes


def format_minutes(minutes: float) -> str:
    """Render minutes as ``m:ss``, or ``h:mm:ss`` from one hour up."""
    seconds = int(minutes * 60)
    hours, seconds = divmod(seconds, 3600)
    mins, secs = divmod(seconds, 60)
    if hours:
        return f'{hours}:{mins:02d}:{secs:02d}'
    return f'{mins}:{secs:02d}'
