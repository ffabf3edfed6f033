"""Parley Worker Tasks."""

# Import all tasks to register them with Celery
from parley_worker.tasks import sync  # noqa: F401
