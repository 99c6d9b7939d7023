from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from pmpulse.core.database import get_db
from pmpulse.core.error_handler import ConnectionNotConfiguredError, SyncQueueError
from pmpulse.models.appfolio_connection import AppfolioConnection
from pmpulse.schemas.sync import (
    AcknowledgeAlertRequest,
    AlertStatusResponse,
    ScheduleResponse,
    SyncHistoryResponse,
    SyncRunResponse,
    SyncTriggerRequest,
    SyncTriggerResponse,
)
from pmpulse.services.business_hours_service import BusinessHoursService
from pmpulse.services.sync_failure_alert_service import SyncFailureAlertService
from pmpulse.services.sync_run_service import SyncRunRepository, run_to_dict
from pmpulse.services.sync_trigger_service import SyncTriggerService, resolve_date_range

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


def get_trigger_service(db: Session = Depends(get_db)) -> SyncTriggerService:
    return SyncTriggerService(db)


def get_alert_service(db: Session = Depends(get_db)) -> SyncFailureAlertService:
    return SyncFailureAlertService(db)


@router.post("/trigger", response_model=SyncTriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_sync(
    request: SyncTriggerRequest,
    trigger_service: SyncTriggerService = Depends(get_trigger_service),
):
    """Queue a manual sync run; returns immediately"""
    try:
        date_range = resolve_date_range(request.date_range_preset, request.from_date, request.to_date)
        result = trigger_service.trigger(
            request.mode,
            triggered_by="manual",
            date_range=date_range,
            force=request.force,
        )
    except ConnectionNotConfiguredError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except SyncQueueError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    if result["status"] == "skipped":
        # Another run is active: informational, not an error
        return JSONResponse(status_code=status.HTTP_200_OK, content=result)
    return result


@router.get("/runs/{run_id}", response_model=SyncRunResponse)
async def get_sync_run(run_id: int, db: Session = Depends(get_db)):
    """Status, counts and error summary of one run"""
    sync_run = SyncRunRepository(db).get(run_id)
    if sync_run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Sync run {run_id} not found")
    return run_to_dict(sync_run)


@router.get("/history", response_model=SyncHistoryResponse)
async def get_sync_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
):
    """Recent runs, newest first"""
    repository = SyncRunRepository(db)
    runs = repository.history(limit=limit, offset=offset, status=status_filter)
    return {
        "total": repository.count(status=status_filter),
        "runs": [run_to_dict(run) for run in runs],
    }


@router.get("/alerts", response_model=List[AlertStatusResponse])
async def get_active_alerts(alert_service: SyncFailureAlertService = Depends(get_alert_service)):
    """Unacknowledged failure streaks"""
    return alert_service.get_active_alerts()


@router.post("/alerts/acknowledge", response_model=AlertStatusResponse)
async def acknowledge_alert(
    request: AcknowledgeAlertRequest,
    db: Session = Depends(get_db),
    alert_service: SyncFailureAlertService = Depends(get_alert_service),
):
    """Silence the current failure streak until it grows past the threshold again"""
    query = db.query(AppfolioConnection)
    if request.connection_id is not None:
        query = query.filter(AppfolioConnection.id == request.connection_id)
    connection = query.order_by(AppfolioConnection.id).first()
    if connection is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="AppFolio connection not found")

    alert_service.acknowledge(connection, request.acknowledged_by)
    return alert_service.get_alert_status(connection)


@router.get("/schedule", response_model=ScheduleResponse)
async def get_sync_schedule():
    """Business-hours configuration, current mode and next incremental sync"""
    return BusinessHoursService().get_configuration()
