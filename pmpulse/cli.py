"""
Command line entry point.

    python -m pmpulse.cli sync --mode incremental|full [--force] [--inline]
    python -m pmpulse.cli configure --database acme --client-id ID [--client-secret SECRET]
"""
import argparse
import logging
import os
import sys
from typing import List, Optional

from pmpulse.core.config import settings
from pmpulse.core.database import SessionLocal
from pmpulse.core.error_handler import ConnectionNotConfiguredError, SyncQueueError
from pmpulse.core.lock import SyncLock, get_redis_client
from pmpulse.core.logging import setup_logging
from pmpulse.core.security import EncryptionKeyError, encrypt_secret
from pmpulse.models.appfolio_connection import AppfolioConnection
from pmpulse.services.sync_trigger_service import SyncTriggerService

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pmpulse", description="PMPulse AppFolio sync")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Queue an AppFolio sync run")
    sync.add_argument("--mode", choices=["incremental", "full"], default="incremental", help="Sync mode")
    sync.add_argument("--force", action="store_true", help="Queue even if another sync is pending or running")
    sync.add_argument(
        "--inline",
        action="store_true",
        help="Run in this process instead of queueing for a worker (still takes the sync lock)",
    )

    configure = subparsers.add_parser("configure", help="Store AppFolio connection credentials")
    configure.add_argument("--name", default="AppFolio", help="Connection display name")
    configure.add_argument("--database", required=True, help="AppFolio database (vhost) name")
    configure.add_argument("--client-id", required=True, help="Reports API client id")
    configure.add_argument(
        "--client-secret",
        default=None,
        help="Reports API client secret (defaults to $APPFOLIO_CLIENT_SECRET)",
    )
    return parser.parse_args(argv)


def run_sync(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        # Inline runs are executed below instead of being handed to Celery
        enqueue = (lambda run_id: "inline") if args.inline else None
        trigger_service = SyncTriggerService(db, enqueue=enqueue)
        try:
            result = trigger_service.trigger(args.mode, triggered_by="command", force=args.force)
        except ConnectionNotConfiguredError:
            print("AppFolio connection is not configured. Run 'configure' first.", file=sys.stderr)
            return 1
        except SyncQueueError as e:
            print(str(e), file=sys.stderr)
            return 1

        if result["status"] == "skipped":
            print(f"Another sync is currently active (ID: {result['active_run_id']}). Use --force to queue anyway.")
            return 1

        print(f"Created sync run ID: {result['sync_run_id']}")
        print(f"Mode: {args.mode}")
        if not args.inline:
            print("Sync job has been queued.")
            return 0

        from pmpulse.tasks.sync_tasks import process_sync_run

        outcome = process_sync_run(db, result["sync_run_id"], SyncLock(get_redis_client()))
        print(f"Sync run {result['sync_run_id']} {outcome.get('status')}: "
              f"created={outcome.get('created', 0)} updated={outcome.get('updated', 0)} "
              f"skipped={outcome.get('skipped', 0)}")
        if outcome.get("error") or outcome.get("reason"):
            print(outcome.get("error") or outcome.get("reason"), file=sys.stderr)
        return 0 if outcome.get("status") == "completed" else 1
    finally:
        db.close()


def configure_connection(args: argparse.Namespace) -> int:
    secret = args.client_secret or os.getenv("APPFOLIO_CLIENT_SECRET")
    if not secret:
        print("A client secret is required (--client-secret or $APPFOLIO_CLIENT_SECRET).", file=sys.stderr)
        return 1

    try:
        encrypted = encrypt_secret(secret)
    except EncryptionKeyError as e:
        print(f"Cannot store the client secret: {e}", file=sys.stderr)
        return 1

    db = SessionLocal()
    try:
        connection = db.query(AppfolioConnection).order_by(AppfolioConnection.id).first()
        if connection is None:
            connection = AppfolioConnection()
            db.add(connection)
        connection.name = args.name
        connection.database = args.database
        connection.client_id = args.client_id
        connection.client_secret_encrypted = encrypted
        connection.last_error = None
        db.commit()
        print(f"AppFolio connection '{connection.name}' saved for {args.database}.")
        return 0
    finally:
        db.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(environment=settings.ENVIRONMENT, log_level=settings.LOG_LEVEL, log_file=settings.LOG_FILE_PATH)
    if args.command == "sync":
        return run_sync(args)
    return configure_connection(args)


if __name__ == "__main__":
    sys.exit(main())
