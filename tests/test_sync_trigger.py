from datetime import date
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from pmpulse.core.database import get_db
from pmpulse.core.error_handler import ConnectionNotConfiguredError, SyncQueueError
from pmpulse.main import app
from pmpulse.routers.sync import get_trigger_service
from pmpulse.services.sync_failure_alert_service import SyncFailureAlertService
from pmpulse.services.sync_run_service import FAILED, PENDING, complete_run, fail_run, start_run
from pmpulse.services.sync_trigger_service import SyncTriggerService, resolve_date_range

TODAY = date(2026, 3, 15)


class TestResolveDateRange:

    def test_presets_count_back_from_today(self):
        assert resolve_date_range("6_months", today=TODAY)["from_date"] == "2025-09-13"
        assert resolve_date_range("1_year", today=TODAY) == {
            "from_date": "2025-03-15",
            "to_date": "2026-03-15",
            "preset": "1_year",
        }
        assert resolve_date_range("2_years", today=TODAY)["from_date"] == "2024-03-15"
        assert resolve_date_range("all_time", today=TODAY)["from_date"] == "2000-01-01"

    def test_no_preset_means_no_override(self):
        assert resolve_date_range(None) is None

    def test_custom_range_is_validated(self):
        assert resolve_date_range("custom", date(2025, 1, 1), date(2025, 6, 30))["to_date"] == "2025-06-30"
        with pytest.raises(ValueError):
            resolve_date_range("custom", date(2025, 6, 30), date(2025, 1, 1))
        with pytest.raises(ValueError):
            resolve_date_range("custom", date(2025, 6, 30), None)
        with pytest.raises(ValueError):
            resolve_date_range("3_weeks")


class TestSyncTriggerService:

    @pytest.fixture
    def enqueue(self):
        return Mock(return_value="task-1")

    @pytest.fixture
    def service(self, db_session, test_settings, enqueue):
        return SyncTriggerService(db_session, settings=test_settings, enqueue=enqueue)

    def test_trigger_queues_pending_run(self, service, connection, enqueue):
        result = service.trigger("full", triggered_by="manual")

        assert result["status"] == "queued"
        assert result["task_id"] == "task-1"
        run = service.repository.get(result["sync_run_id"])
        assert run.status == PENDING
        assert run.connection_id == connection.id
        assert run.triggered_by == "manual"
        enqueue.assert_called_once_with(run.id)

    def test_trigger_refuses_while_a_run_is_active(self, service, connection, enqueue):
        first = service.trigger("incremental")

        second = service.trigger("incremental", triggered_by="scheduler")

        assert second == {
            "status": "skipped",
            "reason": "Another sync run is active",
            "active_run_id": first["sync_run_id"],
        }
        assert enqueue.call_count == 1

    def test_force_queues_anyway(self, service, connection, enqueue):
        service.trigger("incremental")

        assert service.trigger("full", force=True)["status"] == "queued"
        assert enqueue.call_count == 2

    def test_finished_runs_do_not_block(self, service, connection):
        run = service.repository.get(service.trigger("incremental")["sync_run_id"])
        start_run(run, service.repository)
        complete_run(run, service.repository)

        assert service.trigger("incremental")["status"] == "queued"

    def test_unconfigured_connection_is_rejected(self, service, enqueue):
        with pytest.raises(ConnectionNotConfiguredError):
            service.trigger("full")
        enqueue.assert_not_called()

    def test_invalid_mode_is_rejected(self, service, connection):
        with pytest.raises(ValueError):
            service.trigger("partial")

    def test_unreachable_queue_fails_the_new_run(self, db_session, test_settings, connection):
        broken = Mock(side_effect=ConnectionError("broker unavailable"))
        service = SyncTriggerService(db_session, settings=test_settings, enqueue=broken)

        with pytest.raises(SyncQueueError):
            service.trigger("incremental")

        run = service.repository.history(limit=1)[0]
        assert run.status == FAILED
        assert "broker unavailable" in run.error_summary

        service.enqueue = Mock(return_value="task-2")
        assert service.trigger("incremental")["status"] == "queued"


class TestSyncRouter:

    @pytest.fixture
    def enqueue(self):
        return Mock(return_value="task-1")

    @pytest.fixture
    def client(self, db_session, enqueue):
        app.dependency_overrides[get_db] = lambda: db_session
        app.dependency_overrides[get_trigger_service] = lambda: SyncTriggerService(db_session, enqueue=enqueue)
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_trigger_reports_unavailable_queue(self, client, connection, enqueue):
        enqueue.side_effect = ConnectionError("broker unavailable")

        response = client.post("/api/v1/sync/trigger", json={"mode": "incremental"})

        assert response.status_code == 503
        assert "could not be queued" in response.json()["detail"]

    def test_trigger_returns_accepted(self, client, connection):
        response = client.post("/api/v1/sync/trigger", json={"mode": "full", "date_range_preset": "1_year"})

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "queued"
        assert data["mode"] == "full"
        assert data["date_range"]["preset"] == "1_year"

    def test_trigger_while_active_is_informational(self, client, connection):
        first = client.post("/api/v1/sync/trigger", json={"mode": "incremental"}).json()

        response = client.post("/api/v1/sync/trigger", json={"mode": "incremental"})

        assert response.status_code == 200
        assert response.json()["status"] == "skipped"
        assert response.json()["active_run_id"] == first["sync_run_id"]

    def test_trigger_without_connection(self, client):
        response = client.post("/api/v1/sync/trigger", json={"mode": "full"})

        assert response.status_code == 422
        assert "not configured" in response.json()["detail"]

    def test_trigger_rejects_reversed_custom_range(self, client, connection):
        response = client.post(
            "/api/v1/sync/trigger",
            json={"mode": "full", "date_range_preset": "custom", "from_date": "2025-06-30", "to_date": "2025-01-01"},
        )

        assert response.status_code == 422

    def test_run_status_and_history(self, client, connection):
        run_id = client.post("/api/v1/sync/trigger", json={"mode": "full"}).json()["sync_run_id"]

        response = client.get(f"/api/v1/sync/runs/{run_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["triggered_by"] == "manual"

        history = client.get("/api/v1/sync/history", params={"status": "pending"}).json()
        assert history["total"] == 1
        assert history["runs"][0]["id"] == run_id

        assert client.get("/api/v1/sync/runs/9999").status_code == 404

    def test_acknowledge_alert(self, client, db_session, connection, repository):
        for _ in range(3):
            run = repository.create(mode="incremental", connection_id=connection.id)
            start_run(run, repository)
            fail_run(run, repository, "AppFolio server error: 502")
            SyncFailureAlertService(db_session, notifier=Mock()).handle_run_finished(run)

        active = client.get("/api/v1/sync/alerts").json()
        assert active[0]["consecutive_failures"] == 3

        response = client.post("/api/v1/sync/alerts/acknowledge", json={"acknowledged_by": "ops@example.com"})
        assert response.status_code == 200
        assert response.json()["is_acknowledged"] is True
        assert response.json()["acknowledged_by"] == "ops@example.com"
        assert client.get("/api/v1/sync/alerts").json() == []

    def test_acknowledge_requires_a_connection(self, client):
        response = client.post("/api/v1/sync/alerts/acknowledge", json={"acknowledged_by": "ops@example.com"})

        assert response.status_code == 404

    def test_schedule(self, client):
        response = client.get("/api/v1/sync/schedule")

        assert response.status_code == 200
        assert response.json()["current_mode"] in ("business_hours", "off_hours")
        assert "next_sync" in response.json()
