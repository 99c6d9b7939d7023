import asyncio
import logging
import time
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pmpulse.core.config import FeatureFlags, Settings, settings as default_settings
from pmpulse.core.error_handler import (
    ErrorCategory,
    ErrorContext,
    PermanentApiError,
    SyncTimeoutError,
    categorize_error,
    error_details,
    user_facing_message,
)
from pmpulse.core.logging import clear_sync_run_context, log_sync_operation, set_sync_run_context
from pmpulse.models.raw_event import RawEvent
from pmpulse.models.sync_run import SyncRun
from pmpulse.services.appfolio_client import AppfolioClient
from pmpulse.services.expense_processor import ExpenseProcessor
from pmpulse.services.resource_processor import (
    PropertyProcessor,
    ResourceProcessor,
    UnitProcessor,
    VendorProcessor,
    WorkOrderProcessor,
)
from pmpulse.services.sync_failure_alert_service import SyncFailureAlertService
from pmpulse.services.sync_run_service import (
    ResourceRunTracker,
    SyncRunRepository,
    complete_run,
    fail_run,
    start_run,
    update_metadata,
    utcnow,
)
from pmpulse.services.sync_state_service import ResumePoint, SyncStateTracker

logger = logging.getLogger(__name__)

# Later resources reference earlier ones; this order is never changed
RESOURCE_ORDER = ["properties", "units", "vendors", "work_orders", "expenses"]

# Reports that filter by from_date/to_date rather than modified_since
DATE_RANGE_RESOURCES = {"work_orders", "expenses"}

# Lower bound used when a window is unbounded
ALL_TIME_FROM_DATE = date(2000, 1, 1)

PROCESSORS = {
    "properties": PropertyProcessor,
    "units": UnitProcessor,
    "vendors": VendorProcessor,
    "work_orders": WorkOrderProcessor,
    "expenses": ExpenseProcessor,
}


def ordered_resources(configured: List[str]) -> List[str]:
    """Configured subset, always in dependency order"""
    unknown = [r for r in configured if r not in RESOURCE_ORDER]
    if unknown:
        raise ValueError(f"Unknown resource type(s): {', '.join(unknown)}")
    return [r for r in RESOURCE_ORDER if r in configured]


def publish_follow_up(task_name: str, kwargs: Dict[str, Any]) -> None:
    """Hand a follow-up job to the analytics/geocoding workers"""
    from pmpulse.celery_app import celery_app

    celery_app.send_task(task_name, kwargs=kwargs)


class IngestionService:
    """
    Drives one SyncRun through the configured AppFolio resources.

    Resources are processed in order; each page is stored as a RawEvent before it is
    upserted. A permanent API error fails the run but keeps the work committed for
    earlier resources. Running out of rate-limit budget ends the run early without
    error, leaving the rest for the next scheduled run.
    """

    def __init__(
        self,
        db: Session,
        client: AppfolioClient,
        feature_flags: Optional[FeatureFlags] = None,
        settings: Settings = None,
        alert_service: Optional[SyncFailureAlertService] = None,
        state_tracker: Optional[SyncStateTracker] = None,
        repository: Optional[SyncRunRepository] = None,
        publisher: Callable[[str, Dict[str, Any]], None] = publish_follow_up,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.client = client
        self.settings = settings or default_settings
        self.feature_flags = feature_flags or self.settings.feature_flags()
        self.alert_service = alert_service or SyncFailureAlertService(
            db, settings=self.settings, feature_flags=self.feature_flags
        )
        self.state_tracker = state_tracker or SyncStateTracker(db)
        self.repository = repository or SyncRunRepository(db)
        self.publisher = publisher
        self.clock = clock
        self.resources = ordered_resources(self.settings.sync_resources)
        self.timeout_seconds = self.settings.SYNC_TIMEOUT_SECONDS
        self._current_tracker: Optional[ResourceRunTracker] = None

    # Fetch window

    def is_incremental(self, sync_run: SyncRun) -> bool:
        return sync_run.mode == "incremental" and self.feature_flags.incremental_sync

    def fetch_window(self, sync_run: SyncRun, resource_type: str, now: datetime) -> Tuple[Optional[datetime], datetime]:
        """(lower bound or None for unbounded, upper bound) for a resource"""
        date_range = sync_run.date_range
        if date_range:
            lower = _parse_day(date_range.get("from_date"))
            upper = _parse_day(date_range.get("to_date"))
            upper = datetime.combine(upper, dt_time.max, tzinfo=timezone.utc) if upper else now
            return (datetime.combine(lower, dt_time.min, tzinfo=timezone.utc) if lower else None), upper

        full_lower = None
        if self.settings.FULL_SYNC_LOOKBACK_DAYS > 0:
            full_lower = now - timedelta(days=self.settings.FULL_SYNC_LOOKBACK_DAYS)

        if self.is_incremental(sync_run):
            watermark = self.state_tracker.get_watermark(resource_type)
            if watermark is not None:
                return watermark - timedelta(days=self.settings.INCREMENTAL_LOOKBACK_DAYS), now
            logger.info(f"No watermark for {resource_type}; using the full lookback window")
        return full_lower, now

    def build_query_params(self, sync_run: SyncRun, resource_type: str, now: datetime) -> Tuple[Dict[str, Any], datetime]:
        lower, upper = self.fetch_window(sync_run, resource_type, now)
        params: Dict[str, Any] = {"per_page": self.settings.SYNC_BATCH_SIZE}

        if resource_type in DATE_RANGE_RESOURCES:
            params["from_date"] = (lower.date() if lower else ALL_TIME_FROM_DATE).isoformat()
            params["to_date"] = upper.date().isoformat()
        elif lower is not None and (self.is_incremental(sync_run) or sync_run.date_range):
            params["modified_since"] = lower.isoformat()
        return params, upper

    # Run lifecycle

    async def run(self, sync_run: SyncRun) -> Dict[str, Any]:
        """Execute a pending run to completion or failure; returns a result summary"""
        start_run(sync_run, self.repository, now=self.clock())
        token = set_sync_run_context(str(sync_run.id))
        category = None
        self._current_tracker = None
        start_time = time.time()

        try:
            stopped_early = await asyncio.wait_for(self._process_all(sync_run), timeout=self.timeout_seconds)
            complete_run(sync_run, self.repository, now=self.clock(), stopped_early=stopped_early)
            self._mark_connection_success(sync_run)
            self._publish_follow_ups(sync_run)
        except asyncio.TimeoutError:
            error = SyncTimeoutError(self.timeout_seconds)
            category = self._fail(sync_run, error, exc_info=False)
        except PermanentApiError as e:
            category = self._fail(sync_run, e, exc_info=False)
        except Exception as e:
            category = self._fail(sync_run, e, exc_info=True)
        finally:
            clear_sync_run_context(token)

        self._notify_alerting(sync_run, category)

        duration = int(time.time() - start_time)
        return {
            "success": sync_run.status == "completed",
            "sync_run_id": sync_run.id,
            "status": sync_run.status,
            "mode": sync_run.mode,
            "processed": sync_run.processed,
            "created": sync_run.created,
            "updated": sync_run.updated,
            "skipped": sync_run.skipped,
            "errors_count": sync_run.errors_count,
            "stopped_early": bool((sync_run.run_metadata or {}).get("stopped_early")),
            "error": sync_run.error_summary if sync_run.status == "failed" else None,
            "duration_seconds": duration,
        }

    async def _process_all(self, sync_run: SyncRun) -> bool:
        """Process resources in order; True when the run stopped early on rate limit"""
        for index, resource_type in enumerate(self.resources):
            exhausted = await self.process_resource(sync_run, resource_type)
            if exhausted:
                remaining = self.resources[index + 1:]
                logger.warning(
                    f"Rate limit budget exhausted during {resource_type}; "
                    f"deferring {', '.join(remaining) or 'nothing else'} to the next run"
                )
                return True
        return False

    async def process_resource(self, sync_run: SyncRun, resource_type: str) -> bool:
        """
        Fetch and upsert every page of one resource.

        Returns True when fetching stopped because the rate limiter had no budget
        left. The next page is then saved as a resume point so a later run picks
        up where this one stopped; the watermark is only advanced once the
        resource has been fetched to its last page.
        """
        now = self.clock()
        params, fresh_window_end = self.build_query_params(sync_run, resource_type, now)
        window_end = fresh_window_end
        processor: ResourceProcessor = PROCESSORS[resource_type](self.db)
        resource_row = self.repository.add_resource(sync_run, resource_type)
        tracker = ResourceRunTracker(sync_run, resource_row, self.repository)
        self._current_tracker = tracker

        newest: Optional[datetime] = None
        page_url: Optional[str] = None

        # An explicit date range asks for its own window, not a leftover one
        resume = None if sync_run.date_range else self.state_tracker.get_resume_point(resource_type)
        if resume is not None:
            page_url = resume.page_url
            window_end = resume.window_end or window_end
            newest = resume.newest
            logger.info(
                f"Resuming {resource_type} at {page_url} "
                f"(stopped by sync run {resume.sync_run_id})"
            )

        page_number = 0
        exhausted = False
        finished = False

        try:
            while True:
                if self._budget_exhausted():
                    exhausted = True
                    break

                try:
                    page = await self.client.fetch_page(resource_type, params, page_url=page_url)
                except PermanentApiError as e:
                    if resume is None or page_number > 0 or categorize_error(e) == ErrorCategory.AUTHENTICATION:
                        raise
                    logger.warning(f"Resume position for {resource_type} was rejected ({str(e)}); starting over")
                    self.state_tracker.clear_resume_point(resource_type)
                    resume = None
                    page_url = None
                    newest = None
                    window_end = fresh_window_end
                    continue

                page_number += 1
                self._store_raw_page(sync_run, resource_type, page_number, page)
                tracker.record_page(len(page.records))

                page_newest = processor.process_page(page.records, tracker)
                if page_newest and (newest is None or page_newest > newest):
                    newest = page_newest

                logger.info(
                    f"Fetched page {page_number} for {resource_type}: {len(page.records)} records, "
                    f"has_more={page.has_more}"
                )
                if not page.has_more:
                    page_url = None
                    break
                page_url = page.next_page_url

            metrics = tracker.finish(completed=not exhausted)
            finished = True
        finally:
            if not finished:
                # Permanent error or timeout: keep the partial counts, not the watermark
                tracker.finish(completed=False)
        self._current_tracker = None

        if exhausted:
            if page_url is not None:
                self.state_tracker.save_resume_point(
                    resource_type,
                    ResumePoint(page_url=page_url, window_end=window_end, newest=newest, sync_run_id=sync_run.id),
                )
        else:
            self.state_tracker.advance(
                resource_type,
                newest or window_end,
                sync_run_id=sync_run.id,
            )

        log_sync_operation(
            operation_type=sync_run.mode,
            resource_type=resource_type,
            status="stopped_early" if exhausted else "completed",
            duration_ms=metrics.get("duration_ms", 0),
            records_received=metrics["received"],
            created=metrics["created"],
            updated=metrics["updated"],
            skipped=metrics["skipped"],
        )
        return exhausted

    def _budget_exhausted(self) -> bool:
        limiter = getattr(self.client, "rate_limiter", None)
        return limiter is not None and limiter.remaining_attempts() <= 0

    def _store_raw_page(self, sync_run: SyncRun, resource_type: str, page_number: int, page) -> None:
        # Committed before the page is transformed
        self.db.add(RawEvent(
            sync_run_id=sync_run.id,
            resource_type=resource_type,
            page_number=page_number,
            page_url=page.page_url,
            record_count=len(page.records),
            payload={"results": page.records, "next_page_url": page.next_page_url},
        ))
        self.db.commit()

    # Outcome handling

    def _fail(self, sync_run: SyncRun, error: BaseException, exc_info: bool):
        self.db.rollback()
        context = ErrorContext(
            operation="sync_run",
            resource_type=self._current_tracker.resource_type if self._current_tracker else None,
            sync_run_id=str(sync_run.id),
        )
        details = error_details(error, context)
        logger.error(f"Sync run {sync_run.id} failed: {details}", exc_info=exc_info)

        message = user_facing_message(error)
        fail_run(sync_run, self.repository, message, now=self.clock())

        connection = sync_run.connection
        if connection is not None:
            connection.status = "error"
            connection.last_error = message
            self.db.commit()
        return categorize_error(error)

    def _mark_connection_success(self, sync_run: SyncRun) -> None:
        connection = sync_run.connection
        if connection is None:
            return
        connection.status = "connected"
        connection.last_success_at = self.clock()
        connection.last_error = None
        self.db.commit()

    def _publish_follow_ups(self, sync_run: SyncRun) -> None:
        tasks = []
        if self.feature_flags.analytics_refresh:
            tasks.append(self.settings.ANALYTICS_REFRESH_TASK)
        if self.feature_flags.auto_geocoding:
            tasks.append(self.settings.GEOCODING_TASK)
        if not tasks:
            return

        published = []
        for task_name in tasks:
            try:
                self.publisher(task_name, {"sync_run_id": sync_run.id})
                published.append(task_name)
            except Exception as e:
                logger.error(f"Failed to publish follow-up task {task_name}: {str(e)}")
        update_metadata(sync_run, follow_ups=published)
        self.repository.save(sync_run)

    def _notify_alerting(self, sync_run: SyncRun, category) -> None:
        try:
            self.alert_service.handle_run_finished(sync_run, category=category, now=self.clock())
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failure alert evaluation failed for run {sync_run.id}: {str(e)}", exc_info=True)


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
