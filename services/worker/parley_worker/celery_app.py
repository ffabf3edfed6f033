"""Celery application configuration for Parley Worker."""

import os

from celery import Celery
from celery.signals import setup_logging

# Celery configuration from environment
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")

app = Celery(
    "parley_worker",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=[
        "parley_worker.tasks.sync",
    ],
)

# Celery configuration
app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Time limits (seconds)
    task_soft_time_limit=1800,  # 30 minutes
    task_time_limit=2100,  # 35 minutes
    # Queue routing
    task_routes={
        "sync.*": {"queue": "sync"},
    },
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Abandoned syncs are completed with a timeout error every minute
    "reconcile-stale-syncs": {
        "task": "sync.reconcile_stale",
        "schedule": 60.0,
        "args": (),
    },
}


@setup_logging.connect
def configure_worker_logging(**kwargs) -> None:
    """Use the same structured logging as the core API."""
    from parley_core.config import get_settings
    from parley_core.observability import configure_logging

    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="parley-worker",
    )


if __name__ == "__main__":
    app.start()
