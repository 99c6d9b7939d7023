"""
Production startup: wait for the database, apply migrations, then start the
Celery worker and beat alongside the API server.
"""
import logging
import os
import subprocess
import sys
import time
from multiprocessing import Process

from alembic import command
from alembic.config import Config
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

REQUIRED_VARS = ["DATABASE_URL", "REDIS_URL", "ENCRYPTION_KEY"]


def validate_environment() -> bool:
    """Required settings must come from the environment, never the defaults"""
    missing_vars = [var for var in REQUIRED_VARS if not os.getenv(var)]
    if missing_vars:
        logger.error(f"Missing required environment variables: {missing_vars}")
        return False

    from pmpulse.core.security import EncryptionKeyError, encrypt_secret

    try:
        encrypt_secret("startup-check", key=os.getenv("ENCRYPTION_KEY"))
    except EncryptionKeyError as e:
        logger.error(str(e))
        return False
    logger.info("Environment validation passed")
    return True


def wait_for_database(max_retries=30, delay=2) -> bool:
    logger.info("Waiting for database to be available...")
    from pmpulse.core.database import engine

    for attempt in range(max_retries):
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            logger.info("Database is available")
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database not ready (attempt {attempt + 1}/{max_retries}): {e}")
            time.sleep(delay)

    logger.error("Database is not available after maximum retries")
    return False


def run_migrations(config_path: str = "alembic.ini") -> None:
    logger.info("Applying database migrations...")
    command.upgrade(Config(config_path), "head")
    logger.info("Database migrations applied")


def _run(cmd, name: str) -> None:
    logger.info(f"Starting {name}: {' '.join(cmd)}")
    try:
        subprocess.run(cmd, check=True)
    except subprocess.CalledProcessError as e:
        logger.error(f"{name} failed: {e}")
    except KeyboardInterrupt:
        logger.info(f"{name} stopped")


def start_celery_worker():
    _run(
        [sys.executable, "-m", "celery", "-A", "pmpulse.celery_app", "worker",
         "-Q", "sync,scheduler", "--concurrency=1", "--loglevel=info"],
        "Celery worker",
    )


def start_celery_beat():
    _run([sys.executable, "-m", "celery", "-A", "pmpulse.celery_app", "beat", "--loglevel=info"], "Celery beat")


def start_application() -> bool:
    if os.getenv("BACKGROUND_SYNC_ENABLED", "true").lower() == "true":
        worker_process = Process(target=start_celery_worker)
        worker_process.start()
        logger.info(f"Started Celery worker process (PID: {worker_process.pid})")

        beat_process = Process(target=start_celery_beat)
        beat_process.start()
        logger.info(f"Started Celery beat process (PID: {beat_process.pid})")
    else:
        logger.info("Background sync is disabled, skipping Celery services")

    cmd = [
        "uvicorn",
        "pmpulse.main:app",
        "--host", os.getenv("HOST", "0.0.0.0"),
        "--port", os.getenv("PORT", "8000"),
        "--workers", os.getenv("WORKERS", "2"),
        "--access-log",
        "--log-level", "info",
    ]
    logger.info(f"Starting server with command: {' '.join(cmd)}")
    try:
        subprocess.run(cmd, check=True)
    except subprocess.CalledProcessError as e:
        logger.error(f"Failed to start application: {e}")
        return False
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
    return True


def main():
    if not validate_environment():
        sys.exit(1)
    if not wait_for_database():
        sys.exit(1)
    run_migrations()
    if not start_application():
        sys.exit(1)


if __name__ == "__main__":
    main()
