from celery import Celery
from celery.schedules import crontab
from pmpulse.core.config import settings

# Create Celery instance
celery_app = Celery(
    "pmpulse",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "pmpulse.tasks.sync_tasks",
        "pmpulse.tasks.scheduler_tasks",
    ]
)


def _full_sync_schedule() -> crontab:
    hour, _, minute = settings.FULL_SYNC_TIME.partition(":")
    return crontab(hour=int(hour), minute=int(minute or 0))


# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.BUSINESS_HOURS_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    # Hard limit stays above the run timeout so the run can record its own failure
    task_time_limit=settings.SYNC_TIMEOUT_SECONDS + 300,
    task_soft_time_limit=settings.SYNC_TIMEOUT_SECONDS + 120,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_max_tasks_per_child=50,
    # Result backend settings
    result_expires=3600,  # 1 hour
    # Task routing
    task_routes={
        "tasks.sync_tasks.*": {"queue": "sync"},
        "tasks.scheduler_tasks.*": {"queue": "scheduler"},
    },
    # Periodic task settings
    beat_schedule={
        # The tick decides whether this minute is on the business-hours cadence
        "incremental-sync-tick": {
            "task": "tasks.scheduler_tasks.incremental_sync_tick",
            "schedule": 60.0,
            "options": {"queue": "scheduler"},
        },
        "daily-full-sync": {
            "task": "tasks.scheduler_tasks.daily_full_sync",
            "schedule": _full_sync_schedule(),
            "options": {"queue": "scheduler"},
        },
    },
    beat_schedule_filename="/tmp/celerybeat-schedule",
    # Monitoring
    worker_send_task_events=True,
    task_send_sent_event=True,
)

if __name__ == "__main__":
    celery_app.start()
