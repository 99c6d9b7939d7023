from pydantic import BaseModel, Field, validator
from typing import List, Optional, Dict, Any, Literal
from datetime import date, datetime


class SyncTriggerRequest(BaseModel):
    """Schema for manual sync trigger requests"""
    mode: Literal["incremental", "full"] = Field("incremental", description="Sync mode")
    date_range_preset: Optional[Literal["6_months", "1_year", "2_years", "all_time", "custom"]] = Field(
        None, description="Optional date range override for the run"
    )
    from_date: Optional[date] = Field(None, description="Start date, required for a custom range")
    to_date: Optional[date] = Field(None, description="End date, required for a custom range")
    force: bool = Field(False, description="Queue even if another run is pending or running")

    @validator("to_date", always=True)
    def custom_range_requires_dates(cls, v, values):
        if values.get("date_range_preset") == "custom":
            from_date = values.get("from_date")
            if from_date is None or v is None:
                raise ValueError("from_date and to_date are required for a custom date range")
            if from_date > v:
                raise ValueError("from_date must be on or before to_date")
        return v


class SyncTriggerResponse(BaseModel):
    """Schema for sync trigger responses"""
    status: str = Field(..., description="'queued' or 'skipped'")
    sync_run_id: Optional[int] = Field(None, description="Identifier of the queued run")
    task_id: Optional[str] = Field(None, description="Celery task id")
    mode: Optional[str] = Field(None, description="Sync mode")
    date_range: Optional[Dict[str, Any]] = Field(None, description="Date range override applied to the run")
    reason: Optional[str] = Field(None, description="Why the trigger was skipped")
    active_run_id: Optional[int] = Field(None, description="Run that is already active")


class SyncRunResourceResponse(BaseModel):
    """Per-resource counts of a run"""
    resource_type: str
    received: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    pages: int = 0
    duration_ms: Optional[int] = None
    completed: bool = False


class SyncRunResponse(BaseModel):
    """Schema for sync run status"""
    id: int = Field(..., description="Sync run ID")
    mode: str = Field(..., description="Sync mode")
    status: str = Field(..., description="pending, running, completed or failed")
    triggered_by: Optional[str] = Field(None, description="scheduler, manual or command")
    date_range: Optional[Dict[str, Any]] = Field(None, description="Date range override")
    stopped_early: bool = Field(False, description="Run ended early on the API rate limit")
    started_at: Optional[datetime] = Field(None, description="Start timestamp")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")
    processed: int = Field(0, description="Records created or updated")
    created: int = Field(0, description="Records created")
    updated: int = Field(0, description="Records updated")
    skipped: int = Field(0, description="Records skipped")
    errors_count: int = Field(0, description="Record-level errors")
    error_summary: Optional[str] = Field(None, description="Human-readable error summary")
    resources: List[SyncRunResourceResponse] = Field(default_factory=list, description="Per-resource counts")


class SyncHistoryResponse(BaseModel):
    """Schema for sync run history"""
    total: int = Field(..., description="Total matching runs")
    runs: List[SyncRunResponse] = Field(..., description="Runs, newest first")


class AlertStatusResponse(BaseModel):
    """Schema for a connection's failure alert state"""
    connection_id: int
    connection_name: Optional[str] = None
    has_alert: bool = False
    consecutive_failures: int = 0
    is_acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    last_alert_sent_at: Optional[datetime] = None
    failure_details: List[Dict[str, Any]] = Field(default_factory=list)


class AcknowledgeAlertRequest(BaseModel):
    """Schema for acknowledging a failure streak"""
    acknowledged_by: str = Field(..., min_length=1, description="Operator acknowledging the alert")
    connection_id: Optional[int] = Field(None, description="Connection id; defaults to the configured connection")


class ScheduleResponse(BaseModel):
    """Schema for the incremental sync schedule"""
    enabled: bool
    timezone: str
    business_hours: str
    weekdays_only: bool
    business_hours_interval: int
    off_hours_interval: int
    current_mode: str
    current_interval: int
    description: str
    next_sync: str
    full_sync_time: str
