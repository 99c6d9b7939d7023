import logging
from datetime import date, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from pmpulse.core.config import Settings, settings as default_settings
from pmpulse.core.error_handler import ConnectionNotConfiguredError, SyncQueueError
from pmpulse.models.appfolio_connection import AppfolioConnection
from pmpulse.services.sync_run_service import SyncRunRepository, fail_run

logger = logging.getLogger(__name__)

SYNC_MODES = ("incremental", "full")

# Preset -> days back from today
DATE_RANGE_PRESETS = {
    "6_months": 183,
    "1_year": 365,
    "2_years": 730,
}
ALL_TIME_FROM = date(2000, 1, 1)


def resolve_date_range(
    preset: Optional[str],
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    today: Optional[date] = None,
) -> Optional[Dict[str, str]]:
    """Turn a manual-trigger preset into the date_range stored on the run"""
    if not preset:
        return None
    today = today or date.today()

    if preset == "custom":
        if from_date is None or to_date is None:
            raise ValueError("from_date and to_date are required for a custom date range")
        if from_date > to_date:
            raise ValueError("from_date must be on or before to_date")
        return {"from_date": from_date.isoformat(), "to_date": to_date.isoformat(), "preset": preset}

    if preset == "all_time":
        start = ALL_TIME_FROM
    elif preset in DATE_RANGE_PRESETS:
        start = today - timedelta(days=DATE_RANGE_PRESETS[preset])
    else:
        raise ValueError(f"Unknown date range preset: {preset}")
    return {"from_date": start.isoformat(), "to_date": today.isoformat(), "preset": preset}


def enqueue_sync_run(sync_run_id: int) -> str:
    from pmpulse.tasks.sync_tasks import run_sync_task

    task = run_sync_task.delay(sync_run_id)
    return task.id


class SyncTriggerService:
    """Creates pending runs and hands them to the worker queue"""

    def __init__(
        self,
        db: Session,
        settings: Settings = None,
        enqueue: Optional[Callable[[int], str]] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.repository = SyncRunRepository(db)
        self.enqueue = enqueue or enqueue_sync_run

    def get_connection(self) -> Optional[AppfolioConnection]:
        return self.db.query(AppfolioConnection).order_by(AppfolioConnection.id).first()

    def trigger(
        self,
        mode: str,
        triggered_by: str = "manual",
        date_range: Optional[Dict[str, str]] = None,
        force: bool = False,
    ) -> Dict[str, Any]:
        """
        Queue a sync run.

        Returns status 'queued' with the run id, or 'skipped' when another run is
        pending or running. Raises ConnectionNotConfiguredError when there is nothing
        to sync against, and SyncQueueError (after failing the new run) when the
        worker queue is unreachable.
        """
        if mode not in SYNC_MODES:
            raise ValueError(f"Invalid mode: {mode}. Must be 'incremental' or 'full'.")

        connection = self.get_connection()
        if connection is None or not connection.is_configured():
            raise ConnectionNotConfiguredError("AppFolio connection is not configured")

        if not force:
            active = self.repository.active_run(self.settings.STALE_RUN_HOURS)
            if active is not None:
                logger.info(f"Sync run {active.id} is {active.status}; not queueing another ({triggered_by})")
                return {
                    "status": "skipped",
                    "reason": "Another sync run is active",
                    "active_run_id": active.id,
                }

        sync_run = self.repository.create(
            mode=mode,
            connection_id=connection.id,
            triggered_by=triggered_by,
            date_range=date_range,
        )
        try:
            task_id = self.enqueue(sync_run.id)
        except Exception as e:
            # An unqueued run must not stay pending
            fail_run(sync_run, self.repository, f"Failed to queue sync run: {str(e)}")
            raise SyncQueueError(f"Sync run {sync_run.id} could not be queued: {str(e)}") from e
        logger.info(f"Queued {mode} sync run {sync_run.id} (task {task_id}, triggered by {triggered_by})")
        return {
            "status": "queued",
            "sync_run_id": sync_run.id,
            "task_id": task_id,
            "mode": mode,
            "date_range": date_range,
        }
