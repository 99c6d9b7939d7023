from typing import Dict
from datetime import datetime
import logging

from pmpulse.celery_app import celery_app
from pmpulse.core.config import settings
from pmpulse.core.database import get_db
from pmpulse.core.error_handler import ConnectionNotConfiguredError, SyncQueueError
from pmpulse.services.business_hours_service import BusinessHoursService
from pmpulse.services.sync_trigger_service import SyncTriggerService

logger = logging.getLogger(__name__)


def _skipped(reason: str, task_id: str) -> Dict:
    return {
        "success": True,
        "skipped": True,
        "reason": reason,
        "task_id": task_id,
        "scheduled_at": datetime.utcnow().isoformat(),
    }


def _queue_scheduled_run(mode: str, task_id: str) -> Dict:
    db = next(get_db())
    try:
        result = SyncTriggerService(db, settings=settings).trigger(mode, triggered_by="scheduler")
    except ConnectionNotConfiguredError:
        logger.info(f"AppFolio connection not configured, skipping scheduled {mode} sync")
        return _skipped("AppFolio connection not configured", task_id)
    except SyncQueueError as e:
        logger.error(f"Scheduled {mode} sync could not be queued: {str(e)}")
        return {"success": False, "error": str(e), "task_id": task_id}
    finally:
        db.close()

    if result["status"] == "skipped":
        return _skipped(result["reason"], task_id)
    result.update({"success": True, "scheduler_task_id": task_id, "scheduled_at": datetime.utcnow().isoformat()})
    return result


@celery_app.task(bind=True, name="tasks.scheduler_tasks.incremental_sync_tick")
def incremental_sync_tick(self) -> Dict:
    """
    Runs every minute via Celery Beat; queues an incremental sync when this minute
    is on the business-hours cadence.
    """
    task_id = self.request.id

    if not settings.feature_flags().incremental_sync:
        logger.debug("Incremental sync is disabled")
        return _skipped("Incremental sync is disabled", task_id)

    business_hours = BusinessHoursService(settings)
    if not business_hours.should_sync_now():
        return _skipped("Not on the sync interval", task_id)

    logger.info(f"Scheduled incremental sync ({business_hours.get_sync_mode_description()})")
    return _queue_scheduled_run("incremental", task_id)


@celery_app.task(bind=True, name="tasks.scheduler_tasks.daily_full_sync")
def daily_full_sync(self) -> Dict:
    """
    Daily full reconciliation sync at FULL_SYNC_TIME.
    """
    task_id = self.request.id
    logger.info(f"Starting daily full sync task {task_id}")
    return _queue_scheduled_run("full", task_id)
