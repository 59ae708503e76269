"""
Structured logging configuration for the orders service.

Log records are emitted as single-line JSON documents so they can be shipped
unchanged to ELK / CloudWatch. Request and caller identifiers travel through
context variables and are attached to every record written while a request
is being served.
"""

import logging
import logging.handlers
import os
import re
import sys
import json
import time
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
caller_id_var: ContextVar[Optional[str]] = ContextVar('caller_id', default=None)
caller_role_var: ContextVar[Optional[str]] = ContextVar('caller_role', default=None)

REDACTED = "***REDACTED***"

# Probes hit these every few seconds; only failures are worth a log line
QUIET_PATHS = frozenset({"/health", "/health/live", "/health/ready", "/health/startup", "/metrics"})

class StructuredFormatter(logging.Formatter):
    """JSON formatter; one document per record."""

    def format(self, record: logging.LogRecord) -> str:
        document: Dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": os.getenv('SERVICE_NAME', 'orders-service'),
            "environment": os.getenv('ENVIRONMENT', 'development'),
            "version": os.getenv('SERVICE_VERSION', '1.0.0'),
            "location": {
                "module": record.module,
                "function": record.funcName,
                "line": record.lineno
            }
        }

        trace = {
            "request_id": request_id_var.get(),
            "correlation_id": correlation_id_var.get(),
            "caller_id": caller_id_var.get(),
            "caller_role": caller_role_var.get(),
        }
        trace = {key: value for key, value in trace.items() if value}
        if trace:
            document["trace"] = trace

        if record.exc_info:
            document["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info)
            }

        extra_fields = getattr(record, 'extra_fields', None)
        if extra_fields:
            document["custom"] = extra_fields

        if hasattr(record, 'duration_ms'):
            document["performance"] = {"duration_ms": round(record.duration_ms, 3)}

        return json.dumps(document, default=str)

class PerformanceFilter(logging.Filter):
    """Converts a ``duration`` attribute (seconds) into ``duration_ms``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if hasattr(record, 'duration'):
            record.duration_ms = record.duration * 1000
        return True

class SecurityFilter(logging.Filter):
    """
    Redact credentials and payment instrument data.

    ``key=value`` / ``key: value`` pairs in the message are masked, and so are
    matching keys anywhere inside ``extra_fields`` (payment details are logged
    as nested dicts).
    """

    SENSITIVE_FIELDS = (
        'password', 'token', 'api_key', 'secret', 'authorization',
        'card_number', 'cvv', 'upi_pin',
    )
    _pattern = re.compile(
        r"(?i)\b(" + "|".join(SENSITIVE_FIELDS) + r")(\s*[=:]\s*)([^\s,;]+)"
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._pattern.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", record.msg)
        extra_fields = getattr(record, 'extra_fields', None)
        if isinstance(extra_fields, dict):
            record.extra_fields = self._scrub(extra_fields)
        return True

    def _scrub(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                key: REDACTED if str(key).lower() in self.SENSITIVE_FIELDS else self._scrub(item)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [self._scrub(item) for item in value]
        return value

def setup_logging(
    service_name: str,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = False,
    log_file: Optional[str] = None
) -> None:
    """
    Install the JSON formatter on the root logger.

    Args:
        service_name: Name reported in every record
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Write to stdout
        enable_file: Also write to a rotating file
        log_file: Path of the rotating file
    """
    os.environ['SERVICE_NAME'] = service_name

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = []

    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if enable_file and log_file:
        handlers.append(logging.handlers.RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5))

    formatter = StructuredFormatter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(PerformanceFilter())
        handler.addFilter(SecurityFilter())
        root_logger.addHandler(handler)

    for noisy in ('uvicorn.access', 'sqlalchemy.engine', 'httpx', 'httpcore'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized",
        extra={'extra_fields': {'service': service_name, 'level': level, 'file': bool(enable_file and log_file)}}
    )

class LoggerAdapter(logging.LoggerAdapter):
    """Keeps ``extra`` from the call site instead of replacing it with the adapter's."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs

def get_logger(name: str) -> LoggerAdapter:
    return LoggerAdapter(logging.getLogger(name), {})

def set_request_context(
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    caller_id: Optional[str] = None,
    caller_role: Optional[str] = None
) -> None:
    """Bind tracing identifiers for the current request."""
    if request_id:
        request_id_var.set(request_id)
    if correlation_id:
        correlation_id_var.set(correlation_id)
    if caller_id:
        caller_id_var.set(caller_id)
    if caller_role:
        caller_role_var.set(caller_role)

def generate_request_id() -> str:
    return str(uuid.uuid4())

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each request with its outcome and duration and echoes the
    ``X-Request-ID`` / ``X-Correlation-ID`` headers.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        correlation_id = request.headers.get('X-Correlation-ID') or request_id
        set_request_context(request_id=request_id, correlation_id=correlation_id)

        logger = get_logger(__name__)
        path = request.url.path
        fields = {'method': request.method, 'path': path}
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f"Request failed: {request.method} {path}",
                exc_info=True,
                extra={'extra_fields': fields, 'duration': time.perf_counter() - start}
            )
            raise

        fields['status_code'] = response.status_code
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.DEBUG if path in QUIET_PATHS else logging.INFO
        logger.log(
            level,
            f"{request.method} {path} -> {response.status_code}",
            extra={'extra_fields': fields, 'duration': time.perf_counter() - start}
        )

        response.headers['X-Request-ID'] = request_id
        response.headers['X-Correlation-ID'] = correlation_id
        return response
