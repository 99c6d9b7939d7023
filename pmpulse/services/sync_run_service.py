"""
SyncRun lifecycle: pending -> running -> completed | failed.

Transitions are plain functions over a SyncRun and a SyncRunRepository; finished
runs are history and accept no further changes.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from pmpulse.core.error_handler import InvalidTransitionError
from pmpulse.models.sync_run import SyncRun, SyncRunResource

logger = logging.getLogger(__name__)

PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"

# A run that never got the lock is failed straight from pending
ALLOWED_TRANSITIONS = {
    PENDING: {RUNNING, FAILED},
    RUNNING: {COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: set(),
}

ERROR_HISTORY_SIZE = 10
SKIPPED_LOCK_MESSAGE = "skipped: another sync run is active"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncRunRepository:
    """Storage port for sync runs"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        mode: str,
        connection_id: Optional[int] = None,
        triggered_by: str = "scheduler",
        date_range: Optional[Dict[str, str]] = None,
    ) -> SyncRun:
        metadata: Dict[str, Any] = {"triggered_by": triggered_by}
        if date_range:
            metadata["date_range"] = date_range
        run = SyncRun(
            mode=mode,
            status=PENDING,
            connection_id=connection_id,
            run_metadata=metadata,
        )
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        return run

    def get(self, run_id: int) -> Optional[SyncRun]:
        return self.db.query(SyncRun).filter(SyncRun.id == run_id).first()

    def save(self, run: SyncRun) -> SyncRun:
        self.db.add(run)
        self.db.commit()
        return run

    def add_resource(self, run: SyncRun, resource_type: str) -> SyncRunResource:
        resource = SyncRunResource(resource_type=resource_type, error_messages=[])
        run.resources.append(resource)
        self.db.add(resource)
        self.db.commit()
        return resource

    def save_resource(self, resource: SyncRunResource) -> SyncRunResource:
        self.db.add(resource)
        self.db.commit()
        return resource

    def active_run(self, stale_after_hours: int = 2, exclude_id: Optional[int] = None) -> Optional[SyncRun]:
        """Pending or running run younger than the stale cutoff"""
        cutoff = utcnow() - timedelta(hours=stale_after_hours)
        query = self.db.query(SyncRun).filter(
            SyncRun.status.in_([PENDING, RUNNING]),
            SyncRun.created_at >= cutoff,
        )
        if exclude_id is not None:
            query = query.filter(SyncRun.id != exclude_id)
        return query.order_by(SyncRun.id.desc()).first()

    def history(self, limit: int = 20, offset: int = 0, status: Optional[str] = None) -> List[SyncRun]:
        query = self.db.query(SyncRun)
        if status:
            query = query.filter(SyncRun.status == status)
        return query.order_by(SyncRun.id.desc()).offset(offset).limit(limit).all()

    def count(self, status: Optional[str] = None) -> int:
        query = self.db.query(SyncRun)
        if status:
            query = query.filter(SyncRun.status == status)
        return query.count()


def _transition(run: SyncRun, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS.get(run.status, set()):
        raise InvalidTransitionError(f"Sync run {run.id} cannot move from {run.status} to {target}")
    run.status = target


def update_metadata(run: SyncRun, **values) -> None:
    # JSON column: assign a new dict so the change is flushed
    metadata = dict(run.run_metadata or {})
    metadata.update(values)
    run.run_metadata = metadata


def start_run(run: SyncRun, repository: SyncRunRepository, now: Optional[datetime] = None) -> SyncRun:
    _transition(run, RUNNING)
    run.started_at = now or utcnow()
    logger.info(f"Sync run {run.id} started (mode={run.mode})")
    return repository.save(run)


def complete_run(
    run: SyncRun,
    repository: SyncRunRepository,
    now: Optional[datetime] = None,
    stopped_early: bool = False,
) -> SyncRun:
    _transition(run, COMPLETED)
    run.completed_at = now or utcnow()
    if stopped_early:
        update_metadata(run, stopped_early=True)
    if run.errors_count or run.skipped:
        run.error_summary = _record_error_summary(run)
    logger.info(
        f"Sync run {run.id} completed: processed={run.processed}, created={run.created}, "
        f"updated={run.updated}, skipped={run.skipped}, stopped_early={stopped_early}"
    )
    return repository.save(run)


def fail_run(
    run: SyncRun,
    repository: SyncRunRepository,
    error: str,
    now: Optional[datetime] = None,
) -> SyncRun:
    _transition(run, FAILED)
    run.completed_at = now or utcnow()
    run.error_summary = error
    logger.error(f"Sync run {run.id} failed: {error}")
    return repository.save(run)


def _record_error_summary(run: SyncRun) -> str:
    messages = []
    for resource in run.resources:
        messages.extend(resource.error_messages or [])
    summary = "\n".join(messages[:ERROR_HISTORY_SIZE])
    if len(messages) > ERROR_HISTORY_SIZE:
        summary += f"\n... and {len(messages) - ERROR_HISTORY_SIZE} more errors"
    return summary or None


def run_to_dict(run: SyncRun) -> Dict[str, Any]:
    """Operator-facing view of a run: counts and a readable summary, no traces"""
    metadata = run.run_metadata or {}
    return {
        "id": run.id,
        "mode": run.mode,
        "status": run.status,
        "triggered_by": metadata.get("triggered_by"),
        "date_range": metadata.get("date_range"),
        "stopped_early": bool(metadata.get("stopped_early", False)),
        "started_at": run.started_at,
        "completed_at": run.completed_at,
        "processed": run.processed,
        "created": run.created,
        "updated": run.updated,
        "skipped": run.skipped,
        "errors_count": run.errors_count,
        "error_summary": run.error_summary,
        "resources": [
            {
                "resource_type": r.resource_type,
                "received": r.received,
                "created": r.created,
                "updated": r.updated,
                "skipped": r.skipped,
                "errors": r.errors,
                "pages": r.pages,
                "duration_ms": r.duration_ms,
                "completed": r.completed,
            }
            for r in run.resources
        ],
    }


class ResourceRunTracker:
    """Per-resource counters for one run, flushed to SyncRunResource on finish"""

    def __init__(self, run: SyncRun, resource: SyncRunResource, repository: SyncRunRepository):
        self.run = run
        self.resource = resource
        self.repository = repository
        self._start = time.monotonic()
        logger.info(f"Starting sync for {resource.resource_type} (run={run.id}, mode={run.mode})")

    @property
    def resource_type(self) -> str:
        return self.resource.resource_type

    def record_page(self, record_count: int) -> None:
        self.resource.pages += 1
        self.resource.received += record_count

    def record_created(self) -> None:
        self.resource.created += 1

    def record_updated(self) -> None:
        self.resource.updated += 1

    def record_skipped(self, reason: str = "", external_id: Optional[str] = None) -> None:
        self.resource.skipped += 1
        if reason:
            logger.debug(f"Skipped {self.resource_type} record {external_id or ''}: {reason}")
            self._remember(reason)

    def record_error(self, message: str, external_id: Optional[str] = None) -> None:
        """Record-level failure: counted as skipped and kept on the run summary"""
        self.resource.skipped += 1
        self.resource.errors += 1
        logger.error(f"Error syncing {self.resource_type} record {external_id or 'unknown'}: {message}")
        self._remember(message)

    def _remember(self, message: str) -> None:
        messages = list(self.resource.error_messages or [])
        messages.append(message)
        self.resource.error_messages = messages[-ERROR_HISTORY_SIZE:]

    @property
    def processed(self) -> int:
        return self.resource.created + self.resource.updated

    def metrics(self) -> Dict[str, int]:
        return {
            "received": self.resource.received,
            "created": self.resource.created,
            "updated": self.resource.updated,
            "skipped": self.resource.skipped,
            "errors": self.resource.errors,
            "pages": self.resource.pages,
        }

    def finish(self, completed: bool) -> Dict[str, int]:
        """Persist counts and add them to the run totals"""
        self.resource.duration_ms = int((time.monotonic() - self._start) * 1000)
        self.resource.completed = completed

        self.run.processed += self.processed
        self.run.created += self.resource.created
        self.run.updated += self.resource.updated
        self.run.skipped += self.resource.skipped
        self.run.errors_count += self.resource.errors

        self.repository.save_resource(self.resource)
        self.repository.save(self.run)

        metrics = self.metrics()
        metrics["duration_ms"] = self.resource.duration_ms
        logger.info(f"Completed sync for {self.resource_type}: {metrics}")
        return metrics
