"""Celery worker process configuration."""
