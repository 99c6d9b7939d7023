import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy.orm import Session

from pmpulse.models.sync_state import SyncState

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite returns naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _stamp(value: Optional[str]) -> Optional[datetime]:
    return _aware(datetime.fromisoformat(value)) if value else None


@dataclass
class ResumePoint:
    """Where a resource fetch stopped when the rate-limit budget ran out"""
    page_url: str
    window_end: Optional[datetime] = None
    newest: Optional[datetime] = None
    sync_run_id: Optional[int] = None


class SyncStateTracker:
    """Per-resource watermark and resume position storage"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, resource_type: str) -> Optional[SyncState]:
        return self.db.query(SyncState).filter(SyncState.resource_type == resource_type).first()

    def _get_or_create(self, resource_type: str) -> SyncState:
        state = self.get(resource_type)
        if state is None:
            state = SyncState(resource_type=resource_type)
            self.db.add(state)
        return state

    def get_watermark(self, resource_type: str) -> Optional[datetime]:
        state = self.get(resource_type)
        return _aware(state.watermark) if state else None

    def advance(
        self,
        resource_type: str,
        candidate: Optional[datetime],
        sync_run_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SyncState:
        """
        Record a fully fetched resource.

        The watermark never moves backwards: it becomes max(previous, candidate).
        Any saved resume position is cleared.
        """
        now = now or datetime.now(timezone.utc)
        state = self._get_or_create(resource_type)

        previous = _aware(state.watermark)
        candidate = _aware(candidate)
        if candidate is not None and (previous is None or candidate > previous):
            state.watermark = candidate
        state.cursor = None
        state.last_success_at = now
        state.last_sync_run_id = sync_run_id
        self.db.commit()

        logger.info(f"Watermark for {resource_type}: {previous} -> {_aware(state.watermark)}")
        return state

    def get_resume_point(self, resource_type: str) -> Optional[ResumePoint]:
        state = self.get(resource_type)
        if state is None or not state.cursor or not state.cursor.get("page_url"):
            return None
        cursor = state.cursor
        return ResumePoint(
            page_url=cursor["page_url"],
            window_end=_stamp(cursor.get("window_end")),
            newest=_stamp(cursor.get("newest")),
            sync_run_id=cursor.get("sync_run_id"),
        )

    def save_resume_point(self, resource_type: str, point: ResumePoint) -> SyncState:
        """Remember the next page of an unfinished fetch; the watermark is left alone"""
        state = self._get_or_create(resource_type)
        state.cursor = {
            "page_url": point.page_url,
            "window_end": point.window_end.isoformat() if point.window_end else None,
            "newest": point.newest.isoformat() if point.newest else None,
            "sync_run_id": point.sync_run_id,
        }
        self.db.commit()
        logger.info(f"Saved resume position for {resource_type}: {point.page_url}")
        return state

    def clear_resume_point(self, resource_type: str) -> None:
        state = self.get(resource_type)
        if state is not None and state.cursor is not None:
            state.cursor = None
            self.db.commit()

    def all_states(self) -> Dict[str, SyncState]:
        return {state.resource_type: state for state in self.db.query(SyncState).all()}

    def reset(self, resource_type: str) -> None:
        """Forget progress so the next incremental run falls back to the full lookback"""
        state = self.get(resource_type)
        if state is not None:
            state.watermark = None
            state.cursor = None
            self.db.commit()
            logger.info(f"Reset sync state for {resource_type}")
