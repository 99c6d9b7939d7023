from unittest.mock import Mock, patch

import pytest
from cryptography.fernet import Fernet

from pmpulse.cli import configure_connection, parse_args, run_sync
from pmpulse.core.config import Settings
from pmpulse.core.error_handler import (
    ErrorCategory,
    ErrorContext,
    PermanentApiError,
    SyncTimeoutError,
    TransientApiError,
    categorize_error,
    error_details,
    user_facing_message,
)
from pmpulse.core.security import decrypt_secret
from pmpulse.models.appfolio_connection import AppfolioConnection
from pmpulse.models.sync_run import SyncRun


@pytest.fixture
def session_factory(db_session):
    return Mock(return_value=db_session)


def test_parse_sync_arguments():
    args = parse_args(["sync", "--mode", "full", "--force"])

    assert args.command == "sync"
    assert args.mode == "full"
    assert args.force is True
    assert args.inline is False


def test_configure_stores_encrypted_secret(db_session, session_factory):
    args = parse_args(["configure", "--database", "acme", "--client-id", "cid", "--client-secret", "s3cret"])

    with patch("pmpulse.cli.SessionLocal", session_factory):
        assert configure_connection(args) == 0

    connection = db_session.query(AppfolioConnection).one()
    assert connection.database == "acme"
    assert connection.client_secret_encrypted != "s3cret"
    assert decrypt_secret(connection.client_secret_encrypted) == "s3cret"
    assert connection.is_configured()


def test_configure_requires_a_secret(monkeypatch):
    monkeypatch.delenv("APPFOLIO_CLIENT_SECRET", raising=False)
    args = parse_args(["configure", "--database", "acme", "--client-id", "cid"])

    assert configure_connection(args) == 1


def test_configure_refuses_without_a_usable_key(db_session, session_factory):
    args = parse_args(["configure", "--database", "acme", "--client-id", "cid", "--client-secret", "s3cret"])

    with patch("pmpulse.core.security.settings", Settings(_env_file=None, ENCRYPTION_KEY="")), \
            patch("pmpulse.cli.SessionLocal", session_factory):
        assert configure_connection(args) == 1

    assert db_session.query(AppfolioConnection).count() == 0


def test_sync_command_queues_run(db_session, connection, session_factory):
    enqueue = Mock(return_value="task-5")

    with patch("pmpulse.cli.SessionLocal", session_factory), \
            patch("pmpulse.services.sync_trigger_service.enqueue_sync_run", enqueue):
        assert run_sync(parse_args(["sync", "--mode", "incremental"])) == 0

    run = db_session.query(SyncRun).one()
    assert run.triggered_by == "command"
    enqueue.assert_called_once_with(run.id)


def test_sync_command_without_connection(session_factory):
    with patch("pmpulse.cli.SessionLocal", session_factory):
        assert run_sync(parse_args(["sync"])) == 1


class TestErrorHandling:

    def test_categories(self):
        assert categorize_error(TransientApiError("x", status_code=429)) == ErrorCategory.RATE_LIMIT
        assert categorize_error(TransientApiError("x", status_code=503)) == ErrorCategory.CONNECTION
        assert categorize_error(PermanentApiError("x", status_code=403)) == ErrorCategory.AUTHENTICATION
        assert categorize_error(PermanentApiError("x", status_code=404)) == ErrorCategory.PERMANENT
        assert categorize_error(SyncTimeoutError(600)) == ErrorCategory.TIMEOUT
        assert categorize_error(RuntimeError("x")) == ErrorCategory.UNKNOWN

    def test_user_facing_messages_are_readable(self):
        assert user_facing_message(SyncTimeoutError(600)) == "Sync run timed out after 600 seconds"
        assert "credentials" in user_facing_message(PermanentApiError("401 - Unauthorized", status_code=401))

    def test_error_details_carry_context(self):
        details = error_details(
            PermanentApiError("AppFolio request failed: 404", status_code=404),
            ErrorContext(operation="sync_run", resource_type="units", sync_run_id="7"),
        )

        assert details == {
            "operation": "sync_run",
            "category": "permanent",
            "message": "AppFolio request failed: 404",
            "error_type": "PermanentApiError",
            "resource_type": "units",
            "sync_run_id": "7",
            "status_code": 404,
        }


def test_startup_requires_environment(monkeypatch):
    from pmpulse.startup import validate_environment

    monkeypatch.setenv("DATABASE_URL", "postgresql://pmpulse@db/pmpulse")
    monkeypatch.setenv("REDIS_URL", "redis://redis:6379/0")
    monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
    assert validate_environment() is False

    monkeypatch.setenv("ENCRYPTION_KEY", "change-me-to-a-fernet-key")
    assert validate_environment() is False

    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())
    assert validate_environment() is True
