"""
Error taxonomy for the sync pipeline and helpers to categorize errors for logs and alerts.
"""
import asyncio
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Dict, Any

import aiohttp

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Error categories for better handling"""
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class AppfolioApiError(Exception):
    """Base class for errors talking to the AppFolio API"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientApiError(AppfolioApiError):
    """Network error, 5xx or 429: retried with backoff inside the client"""

    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class PermanentApiError(AppfolioApiError):
    """4xx other than 429, or retries exhausted: aborts the current run"""


class ConnectionNotConfiguredError(PermanentApiError):
    """No usable AppFolio connection/credentials"""


class SyncTimeoutError(Exception):
    """A sync run exceeded its wall-clock budget"""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Sync run timed out after {int(timeout_seconds)} seconds")
        self.timeout_seconds = timeout_seconds


class SyncQueueError(Exception):
    """A pending run could not be handed to the worker queue"""


class InvalidTransitionError(Exception):
    """SyncRun status change not allowed by the run state machine"""


class RecordProcessingError(Exception):
    """A single external record could not be mapped or stored"""

    def __init__(self, message: str, external_id: Optional[str] = None):
        super().__init__(message)
        self.external_id = external_id


@dataclass
class ErrorContext:
    """Context information for errors"""
    operation: str
    resource_type: Optional[str] = None
    sync_run_id: Optional[str] = None
    status_code: Optional[int] = None
    retry_count: int = 0


def categorize_error(error: BaseException) -> ErrorCategory:
    """Categorize error for better handling"""
    if isinstance(error, (SyncTimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, AppfolioApiError):
        if error.status_code == 429:
            return ErrorCategory.RATE_LIMIT
        if error.status_code in (401, 403) or isinstance(error, ConnectionNotConfiguredError):
            return ErrorCategory.AUTHENTICATION
        if isinstance(error, TransientApiError):
            return ErrorCategory.CONNECTION
        return ErrorCategory.PERMANENT
    if isinstance(error, (aiohttp.ClientConnectionError, ConnectionError)):
        return ErrorCategory.CONNECTION
    if isinstance(error, (RecordProcessingError, ValueError, KeyError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


def error_details(error: BaseException, context: ErrorContext) -> Dict[str, Any]:
    """Build the operator-facing description of an error, without traceback"""
    category = categorize_error(error)
    details = {
        "operation": context.operation,
        "category": category.value,
        "message": str(error),
        "error_type": type(error).__name__,
    }
    if context.resource_type:
        details["resource_type"] = context.resource_type
    if context.sync_run_id:
        details["sync_run_id"] = context.sync_run_id
    status_code = context.status_code or getattr(error, "status_code", None)
    if status_code:
        details["status_code"] = status_code
    return details


def user_facing_message(error: BaseException) -> str:
    """Human-readable summary shown on run status, never a stack trace"""
    category = categorize_error(error)
    if category == ErrorCategory.TIMEOUT:
        return str(error) if isinstance(error, SyncTimeoutError) else "Sync run timed out"
    if category == ErrorCategory.AUTHENTICATION:
        return f"AppFolio rejected the connection credentials: {error}"
    return str(error) or type(error).__name__
