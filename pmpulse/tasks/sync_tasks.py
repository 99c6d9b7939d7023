from typing import Dict, Optional
from datetime import datetime
import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pmpulse.celery_app import celery_app
from pmpulse.core.config import settings
from pmpulse.core.database import get_db
from pmpulse.core.error_handler import ErrorCategory
from pmpulse.core.lock import SyncLock, get_redis_client
from pmpulse.models.sync_run import SyncRun
from pmpulse.services.appfolio_client import AppfolioClient
from pmpulse.services.ingestion_service import IngestionService
from pmpulse.services.sync_failure_alert_service import SyncFailureAlertService
from pmpulse.services.sync_run_service import (
    RUNNING,
    SKIPPED_LOCK_MESSAGE,
    SyncRunRepository,
    fail_run,
)

logger = logging.getLogger(__name__)


async def execute_sync_run(db: Session, sync_run: SyncRun) -> Dict:
    """Run the ingestion pipeline for a pending run"""
    async with AppfolioClient(sync_run.connection, settings) as client:
        service = IngestionService(
            db,
            client,
            feature_flags=settings.feature_flags(),
            settings=settings,
        )
        return await service.run(sync_run)


INTERRUPTED_MESSAGE = "Sync run interrupted: worker stopped before the run finished"


def _fail_interrupted(
    db: Session,
    repository: SyncRunRepository,
    sync_run: SyncRun,
    alert_service: Optional[SyncFailureAlertService] = None,
) -> None:
    """Close a run whose worker died mid-run; it counts as a failure like any other"""
    fail_run(sync_run, repository, INTERRUPTED_MESSAGE)
    connection = sync_run.connection
    if connection is not None:
        connection.status = "error"
        connection.last_error = INTERRUPTED_MESSAGE
        db.commit()

    alert_service = alert_service or SyncFailureAlertService(db)
    try:
        alert_service.handle_run_finished(sync_run, category=ErrorCategory.UNKNOWN)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failure alert evaluation failed for run {sync_run.id}: {str(e)}", exc_info=True)


def process_sync_run(
    db: Session,
    sync_run_id: int,
    lock: SyncLock,
    alert_service: Optional[SyncFailureAlertService] = None,
) -> Dict:
    """
    Worker-side handling of one queued run.

    The run executes only while holding the sync lock; a run that cannot get it is
    closed as skipped rather than waiting. A RUNNING run is only treated as
    interrupted once the lock is held, since a duplicate delivery may arrive while
    the first worker is still busy with it.
    """
    repository = SyncRunRepository(db)
    sync_run = repository.get(sync_run_id)
    if sync_run is None:
        logger.error(f"Sync run {sync_run_id} not found")
        return {"success": False, "error": f"Sync run {sync_run_id} not found", "sync_run_id": sync_run_id}

    if sync_run.is_finished:
        logger.info(f"Sync run {sync_run_id} already {sync_run.status}; nothing to do")
        return {"success": True, "skipped": True, "status": sync_run.status, "sync_run_id": sync_run_id}

    if not lock.acquire():
        if sync_run.status == RUNNING:
            logger.info(f"Sync run {sync_run_id} is still running elsewhere; ignoring duplicate delivery")
            return {"success": True, "skipped": True, "status": sync_run.status, "sync_run_id": sync_run_id}
        fail_run(sync_run, repository, SKIPPED_LOCK_MESSAGE)
        return {
            "success": False,
            "skipped": True,
            "reason": SKIPPED_LOCK_MESSAGE,
            "status": sync_run.status,
            "sync_run_id": sync_run_id,
        }

    try:
        # Another worker may have finished the run while we waited for the lock
        db.refresh(sync_run)
        if sync_run.is_finished:
            return {"success": True, "skipped": True, "status": sync_run.status, "sync_run_id": sync_run_id}

        if sync_run.status == RUNNING:
            logger.warning(f"Sync run {sync_run_id} was redelivered after its worker stopped")
            _fail_interrupted(db, repository, sync_run, alert_service)
            return {"success": False, "status": sync_run.status, "sync_run_id": sync_run_id}

        return asyncio.run(execute_sync_run(db, sync_run))
    finally:
        lock.release()


@celery_app.task(bind=True, name="tasks.sync_tasks.run_sync_task", acks_late=True)
def run_sync_task(self, sync_run_id: int) -> Dict:
    """
    Background task to execute one AppFolio sync run.
    """
    task_id = self.request.id
    logger.info(f"Starting sync task {task_id} for run {sync_run_id}")

    db = next(get_db())
    try:
        self.update_state(
            state="PROGRESS",
            meta={"status": f"Running sync run {sync_run_id}", "sync_run_id": sync_run_id},
        )
        lock = SyncLock(get_redis_client())
        result = process_sync_run(db, sync_run_id, lock)
        result["task_id"] = task_id
        result["finished_at"] = datetime.utcnow().isoformat()
        logger.info(f"Sync task {task_id} finished: {result.get('status')}")
        return result
    finally:
        db.close()
