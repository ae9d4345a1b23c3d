"""
Structured JSON logging for the checkout service.

Every record is rendered as one JSON object carrying the service identity,
the request/correlation context of the HTTP call that produced it and any
structured ``extra_fields`` supplied by the caller. Payment payloads travel
through these fields, so secrets and signatures are redacted before output.
"""

import logging
import logging.handlers
import os
import sys
import json
import time
import traceback
import uuid
from datetime import datetime
from typing import Any, Dict, Optional
from contextvars import ContextVar
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)

REDACTED = "***REDACTED***"

class StructuredFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def __init__(self, service_name: Optional[str] = None):
        super().__init__()
        self.service_name = service_name or os.getenv('SERVICE_NAME', 'unknown-service')
        self.environment = os.getenv('ENVIRONMENT', 'development')
        self.version = os.getenv('SERVICE_VERSION', '1.0.0')

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "@timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "version": self.version,
        }

        trace_context = _current_trace_context()
        if trace_context:
            log_obj["trace"] = trace_context

        log_obj["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info),
            }

        if getattr(record, 'security_event', False):
            log_obj["security_event"] = True

        extra_fields = getattr(record, 'extra_fields', None)
        if extra_fields:
            log_obj["custom"] = extra_fields

        if hasattr(record, 'duration_ms'):
            log_obj["performance"] = {"duration_ms": record.duration_ms}

        return json.dumps(log_obj, default=str)

def _current_trace_context() -> Optional[Dict[str, str]]:
    context = {
        "request_id": request_id_var.get(),
        "correlation_id": correlation_id_var.get(),
        "user_id": user_id_var.get(),
    }
    context = {key: value for key, value in context.items() if value}
    return context or None

class SecurityFilter(logging.Filter):
    """Redact credentials and payment signatures from structured fields."""

    SENSITIVE_KEYS = (
        'password', 'token', 'secret', 'api_key', 'authorization', 'cookie',
        'signature', 'x-verify', 'xverify', 'salt',
    )

    def filter(self, record: logging.LogRecord) -> bool:
        extra_fields = getattr(record, 'extra_fields', None)
        if isinstance(extra_fields, dict):
            record.extra_fields = self._redact(extra_fields)
        return True

    def _redact(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {}
        for key, value in fields.items():
            lowered = str(key).lower()
            if any(marker in lowered for marker in self.SENSITIVE_KEYS):
                cleaned[key] = REDACTED
            elif isinstance(value, dict):
                cleaned[key] = self._redact(value)
            else:
                cleaned[key] = value
        return cleaned

def setup_logging(
    service_name: str,
    level: str = "INFO",
    enable_console: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure the root logger for a service.

    Args:
        service_name: Name reported in every record
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Write JSON lines to stdout
        log_file: Optional path of a rotating log file
    """
    os.environ['SERVICE_NAME'] = service_name

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    formatter = StructuredFormatter(service_name)
    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=5
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(SecurityFilter())
        root_logger.addHandler(handler)

    logging.getLogger('uvicorn').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized",
        extra={'extra_fields': {'service': service_name, 'level': level, 'file': bool(log_file)}}
    )

class LoggerAdapter(logging.LoggerAdapter):
    """Pass ``extra`` through untouched; trace context is read by the formatter."""

    def process(self, msg, kwargs):
        kwargs.setdefault('extra', {})
        return msg, kwargs

def get_logger(name: str) -> LoggerAdapter:
    return LoggerAdapter(logging.getLogger(name), {})

def log_security_event(logger: logging.LoggerAdapter, message: str, **fields: Any) -> None:
    """Emit a WARNING flagged as a security event (signature failures, tampering)."""
    logger.warning(
        message,
        extra={'security_event': True, 'extra_fields': {'event_type': 'security', **fields}}
    )

def set_request_context(
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    user_id: Optional[str] = None
) -> None:
    if request_id:
        request_id_var.set(request_id)
    if correlation_id:
        correlation_id_var.set(correlation_id)
    if user_id:
        user_id_var.set(user_id)

def generate_request_id() -> str:
    return str(uuid.uuid4())

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its duration and echo ``X-Request-ID`` back."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        set_request_context(
            request_id=request_id,
            correlation_id=request.headers.get('X-Correlation-ID'),
            user_id=request.headers.get('X-User-ID'),
        )

        logger = get_logger(__name__)
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra={'extra_fields': {
                    'method': request.method,
                    'path': request.url.path,
                    'duration_ms': (time.time() - start_time) * 1000
                }}
            )
            raise

        logger.info(
            f"Request completed: {request.method} {request.url.path}",
            extra={'extra_fields': {
                'method': request.method,
                'path': request.url.path,
                'status_code': response.status_code,
                'duration_ms': (time.time() - start_time) * 1000
            }}
        )
        response.headers['X-Request-ID'] = request_id
        return response
