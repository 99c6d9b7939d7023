import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from pmpulse.core.config import FeatureFlags, Settings, settings as default_settings
from pmpulse.core.error_handler import ErrorCategory
from pmpulse.core.logging import log_alert_generated
from pmpulse.models.appfolio_connection import AppfolioConnection
from pmpulse.models.sync_failure_alert import SyncFailureAlert
from pmpulse.models.sync_run import SyncRun
from pmpulse.services.notification_service import NotificationService
from pmpulse.services.sync_run_service import COMPLETED, FAILED, SKIPPED_LOCK_MESSAGE

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SyncFailureAlertService:
    """
    Consecutive-failure alerting per AppFolio connection.

    A notification goes out once the streak reaches the threshold, at most once per
    cooldown window. Acknowledging a streak silences it until `threshold` more
    failures pile up on top of the acknowledged count; any successful run resets
    everything.
    """

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationService] = None,
        settings: Settings = None,
        feature_flags: Optional[FeatureFlags] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.notifier = notifier or NotificationService(self.settings)
        self.feature_flags = feature_flags or self.settings.feature_flags()
        self.threshold = self.settings.ALERT_FAILURE_THRESHOLD
        self.cooldown = timedelta(minutes=self.settings.ALERT_COOLDOWN_MINUTES)
        self.history_size = self.settings.ALERT_HISTORY_SIZE

    def for_connection(self, connection: AppfolioConnection) -> SyncFailureAlert:
        alert = (
            self.db.query(SyncFailureAlert)
            .filter(SyncFailureAlert.connection_id == connection.id)
            .first()
        )
        if alert is None:
            alert = SyncFailureAlert(connection_id=connection.id, consecutive_failures=0, failure_details=[])
            self.db.add(alert)
            self.db.flush()
        return alert

    def handle_run_finished(
        self,
        sync_run: SyncRun,
        category: Optional[ErrorCategory] = None,
        now: Optional[datetime] = None,
    ) -> Optional[SyncFailureAlert]:
        """Evaluate a finished run; lock-contention skips are ignored"""
        connection = sync_run.connection
        if connection is None:
            logger.warning(f"Sync run {sync_run.id} has no associated connection")
            return None

        if sync_run.status == COMPLETED:
            return self.handle_success(connection)
        if sync_run.status == FAILED:
            if sync_run.error_summary == SKIPPED_LOCK_MESSAGE:
                logger.info(f"Sync run {sync_run.id} was skipped by lock contention; not counted as a failure")
                return None
            return self.handle_failure(connection, sync_run, category=category, now=now)
        return None

    def handle_success(self, connection: AppfolioConnection) -> SyncFailureAlert:
        alert = self.for_connection(connection)
        if alert.consecutive_failures > 0 or alert.acknowledged_at is not None:
            logger.info(
                f"Sync succeeded, resetting failure count for connection {connection.id} "
                f"(previous failures: {alert.consecutive_failures})"
            )
        alert.consecutive_failures = 0
        alert.failure_details = []
        alert.acknowledged_at = None
        alert.acknowledged_by = None
        alert.acknowledged_failure_count = None
        self.db.commit()
        return alert

    def handle_failure(
        self,
        connection: AppfolioConnection,
        sync_run: SyncRun,
        category: Optional[ErrorCategory] = None,
        now: Optional[datetime] = None,
    ) -> SyncFailureAlert:
        now = now or datetime.now(timezone.utc)
        alert = self.for_connection(connection)

        details = list(alert.failure_details or [])
        details.append({
            "timestamp": now.isoformat(),
            "sync_run_id": sync_run.id,
            "error": sync_run.error_summary or "Unknown error",
            "category": (category or ErrorCategory.UNKNOWN).value,
            "mode": sync_run.mode,
        })
        alert.failure_details = details[-self.history_size:]
        alert.consecutive_failures = (alert.consecutive_failures or 0) + 1
        self.db.commit()

        logger.info(
            f"Sync failure recorded for connection {connection.id}: "
            f"{alert.consecutive_failures} consecutive"
        )

        if self.should_send_alert(alert, now):
            self._send_alert(alert, sync_run, connection, now)
        return alert

    def should_send_alert(self, alert: SyncFailureAlert, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)

        if not self.feature_flags.notifications:
            logger.info("Notifications disabled, skipping sync failure alert")
            return False

        failures = alert.consecutive_failures or 0
        if alert.acknowledged_at is not None:
            failures -= alert.acknowledged_failure_count or 0
        if failures < self.threshold:
            logger.debug(f"Failure threshold not reached ({failures}/{self.threshold})")
            return False

        last_sent = _aware(alert.last_alert_sent_at)
        if last_sent is not None and now - last_sent < self.cooldown:
            logger.info(f"Alert rate limited, last alert at {last_sent.isoformat()}")
            return False

        return True

    def _send_alert(
        self,
        alert: SyncFailureAlert,
        sync_run: SyncRun,
        connection: AppfolioConnection,
        now: datetime,
    ) -> None:
        log_alert_generated(
            alert_type="sync_failure",
            severity="critical",
            message=f"{alert.consecutive_failures} consecutive sync failures",
            connection_id=connection.id,
        )
        result = self.notifier.send_sync_failure_alert(alert, sync_run, connection.name or "AppFolio")
        if not result.get("success"):
            logger.warning(f"Sync failure alert not delivered: {result.get('error')}")
            return

        alert.last_alert_sent_at = now
        alert.acknowledged_at = None
        alert.acknowledged_by = None
        alert.acknowledged_failure_count = None
        self.db.commit()

    def acknowledge(
        self,
        connection: AppfolioConnection,
        user: str,
        now: Optional[datetime] = None,
    ) -> SyncFailureAlert:
        alert = self.for_connection(connection)
        alert.acknowledged_at = now or datetime.now(timezone.utc)
        alert.acknowledged_by = user
        alert.acknowledged_failure_count = alert.consecutive_failures
        self.db.commit()
        logger.info(
            f"Sync failure alert acknowledged for connection {connection.id} by {user} "
            f"at {alert.consecutive_failures} failures"
        )
        return alert

    def get_alert_status(self, connection: AppfolioConnection) -> Dict[str, Any]:
        alert = (
            self.db.query(SyncFailureAlert)
            .filter(SyncFailureAlert.connection_id == connection.id)
            .first()
        )
        if alert is None:
            return {
                "connection_id": connection.id,
                "has_alert": False,
                "consecutive_failures": 0,
                "is_acknowledged": False,
            }
        return self._alert_to_dict(alert)

    def get_active_alerts(self) -> List[Dict[str, Any]]:
        alerts = (
            self.db.query(SyncFailureAlert)
            .filter(
                SyncFailureAlert.consecutive_failures > 0,
                SyncFailureAlert.acknowledged_at.is_(None),
            )
            .all()
        )
        return [self._alert_to_dict(alert) for alert in alerts]

    def _alert_to_dict(self, alert: SyncFailureAlert) -> Dict[str, Any]:
        return {
            "connection_id": alert.connection_id,
            "connection_name": alert.connection.name if alert.connection else None,
            "has_alert": alert.consecutive_failures > 0 and alert.acknowledged_at is None,
            "consecutive_failures": alert.consecutive_failures,
            "is_acknowledged": alert.acknowledged_at is not None,
            "acknowledged_at": alert.acknowledged_at,
            "acknowledged_by": alert.acknowledged_by,
            "last_alert_sent_at": alert.last_alert_sent_at,
            "failure_details": alert.failure_details or [],
        }
