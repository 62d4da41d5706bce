"""Exceptions raised by the MiniTasks services and stores."""


class MiniTasksError(Exception):
    """Base exception for all MiniTasks errors."""

    status_code = 500


class NotFoundError(MiniTasksError):
    """Raised when a task, sprint or other entity does not exist."""

    status_code = 404


class PermissionDeniedError(MiniTasksError):
    """Raised when the current user may not perform an action."""

    status_code = 403


class SprintStateError(MiniTasksError):
    """Raised for a sprint transition out of a terminal state."""

    status_code = 409


class ValidationError(MiniTasksError):
    """Raised when submitted data cannot be accepted."""

    status_code = 400
