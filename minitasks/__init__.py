"""MiniTasks: task, project and sprint management with recurring tasks."""
from .app import create_app

__all__ = ['create_app']
