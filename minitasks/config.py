"""Application configuration.

Values come from the environment where set, so the same code runs locally
and in a deployment without edits.
"""
import os


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///minitasks.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False

    # Recurring task instances are generated this many days ahead
    MINITASKS_HORIZON_DAYS = int(os.environ.get('MINITASKS_HORIZON_DAYS', '90'))
    MINITASKS_LOG_LEVEL = os.environ.get('MINITASKS_LOG_LEVEL', 'INFO')
    # Run the recurrence sweep whenever the dashboard is loaded
    MINITASKS_SWEEP_ON_LOAD = True


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    WTF_CSRF_ENABLED = False
    MINITASKS_LOG_LEVEL = 'DEBUG'
