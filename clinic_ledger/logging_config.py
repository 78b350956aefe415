"""Structured logging for the ledger, stores and HTTP layer.

Events are key-value pairs rendered as one JSON object per line, e.g.

    {"event": "appointment_scheduled", "appointment_id": "APT-...",
     "provider_id": "D001", "request_id": "req-...", "level": "info", ...}

Pattern: structlog on top of the standard library logging module, with the
request ID carried in structlog's contextvars.
"""
import logging
import re
import sys
import uuid
from typing import IO, Optional

import structlog

PACKAGE_LOGGER = "clinic_ledger"
REQUEST_ID_HEADER = "X-Request-ID"

# Accept caller-supplied IDs only if they are short and header-safe
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def setup_structured_logging(log_level: str = "INFO", stream: Optional[IO] = None):
    """
    Configure structlog and the package's stdlib logger.

    Safe to call more than once; the package handler is replaced, not stacked.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        stream: Where JSON lines go (stdout if None)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.set_name("clinic_ledger_json")

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in list(package_logger.handlers):
        if existing.get_name() == handler.get_name():
            package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(getattr(logging, log_level.upper()))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger for ``name`` (usually __name__)."""
    return structlog.get_logger(name)


def generate_request_id() -> str:
    """Generate unique request ID."""
    return f"req-{uuid.uuid4().hex[:12]}"


class RequestIDMiddleware:
    """WSGI middleware tagging each request with an ID.

    A well-formed ``X-Request-ID`` from the caller is reused; otherwise a new
    one is generated. The ID is bound into structlog's context while the
    request is served, so ledger events emitted for it carry ``request_id``,
    and is echoed back in the response header.
    """

    def __init__(self, app):
        self.app = app

    @staticmethod
    def _request_id(environ) -> str:
        incoming = environ.get("HTTP_X_REQUEST_ID", "")
        if _REQUEST_ID_PATTERN.match(incoming):
            return incoming
        return generate_request_id()

    def __call__(self, environ, start_response):
        request_id = self._request_id(environ)
        environ['REQUEST_ID'] = request_id

        def start_response_with_id(status, headers, exc_info=None):
            headers.append((REQUEST_ID_HEADER, request_id))
            return start_response(status, headers, exc_info)

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            return self.app(environ, start_response_with_id)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
