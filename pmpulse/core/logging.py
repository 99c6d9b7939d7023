import logging
import logging.config
import json
import sys
import uuid
from datetime import datetime
from typing import Optional
from contextvars import ContextVar
from fastapi import Request
import structlog

# Context variables for request and sync run tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
sync_run_id_var: ContextVar[Optional[str]] = ContextVar('sync_run_id', default=None)

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName', 'created', 'msecs',
    'relativeCreated', 'thread', 'threadName', 'processName', 'process', 'getMessage',
    'taskName', 'message',
}


def add_run_context_processor(logger, method_name, event_dict):
    """Add request and sync run context to structlog entries"""
    if request_id_var.get():
        event_dict['request_id'] = request_id_var.get()
    if sync_run_id_var.get():
        event_dict['sync_run_id'] = sync_run_id_var.get()
    return event_dict


# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_run_context_processor,
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)


class JsonFormatter(logging.Formatter):
    """JSON formatter for production log shipping"""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.utcnow().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Fields passed through `extra=` and the context filter
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_entry:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class RunContextFilter(logging.Filter):
    """Filter to add request and sync run context to log records"""

    def filter(self, record):
        record.request_id = request_id_var.get() or 'no-request'
        record.sync_run_id = sync_run_id_var.get() or 'no-run'
        return True


def setup_logging(environment: str = "development", log_level: str = "INFO", log_file: Optional[str] = None):
    """
    Setup structured logging configuration
    """
    handlers = {
        'console': {
            'class': 'logging.StreamHandler',
            'level': log_level,
            'formatter': 'json' if environment == 'production' else 'simple',
            'filters': ['run_context'],
            'stream': sys.stdout,
        },
    }
    root_handlers = ['console']

    if log_file:
        handlers['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'level': log_level,
            'formatter': 'json',
            'filters': ['run_context'],
            'filename': log_file,
            'maxBytes': 10485760,  # 10MB
            'backupCount': 5,
        }
        root_handlers.append('file')

    config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'json': {
                '()': JsonFormatter,
            },
            'simple': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - [run=%(sync_run_id)s] %(message)s'
            }
        },
        'filters': {
            'run_context': {
                '()': RunContextFilter,
            }
        },
        'handlers': handlers,
        'loggers': {
            '': {  # Root logger
                'handlers': root_handlers,
                'level': log_level,
                'propagate': False,
            },
            'uvicorn.access': {
                'handlers': root_handlers,
                'level': 'INFO',
                'propagate': False,
            },
            'sqlalchemy.engine': {
                'handlers': ['console'],
                'level': 'WARNING',
                'propagate': False,
            },
            'celery': {
                'handlers': root_handlers,
                'level': 'INFO',
                'propagate': False,
            },
        }
    }

    logging.config.dictConfig(config)

    logger = structlog.get_logger()
    logger.info("Logging setup completed", environment=environment, log_level=log_level)


def get_logger(name: str = None) -> structlog.BoundLogger:
    """Get a structured logger instance"""
    return structlog.get_logger(name)


def set_sync_run_context(sync_run_id: Optional[str]):
    """Bind a sync run id to every log line emitted from this context"""
    return sync_run_id_var.set(sync_run_id)


def clear_sync_run_context(token=None):
    if token is not None:
        sync_run_id_var.reset(token)
    else:
        sync_run_id_var.set(None)


def set_request_context(request_id: Optional[str] = None):
    """Set request context for logging"""
    if request_id:
        request_id_var.set(request_id)


def clear_request_context():
    request_id_var.set(None)


def generate_request_id() -> str:
    return str(uuid.uuid4())


class LoggingMiddleware:
    """
    ASGI middleware that tags every request with an id and logs its outcome
    """

    def __init__(self, app):
        self.app = app
        self.logger = get_logger("middleware")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        request_id = request.headers.get("x-request-id") or generate_request_id()
        set_request_context(request_id=request_id)
        start_time = datetime.utcnow()

        try:
            await self.app(scope, receive, send)
        except Exception as e:
            self.logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
            )
            raise
        finally:
            duration = (datetime.utcnow() - start_time).total_seconds()
            self.logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                duration_seconds=duration,
            )
            clear_request_context()

def log_sync_operation(operation_type: str, resource_type: str, status: str,
                       duration_ms: int, records_received: int, **kwargs):
    """Log per-resource sync outcome"""
    logger = get_logger("sync")
    logger.info(
        "Sync operation completed",
        operation_type=operation_type,
        resource_type=resource_type,
        status=status,
        duration_ms=duration_ms,
        records_received=records_received,
        **kwargs
    )


def log_alert_generated(alert_type: str, severity: str, message: str, **kwargs):
    """Log alert generation"""
    logger = get_logger("alerts")
    logger.warning(
        "Alert generated",
        alert_type=alert_type,
        severity=severity,
        message=message,
        **kwargs
    )
