"""
Process-wide logging setup.

``setup_logging`` installs a single stdout handler on the root
logger: one JSON object per line in production, a pipe-separated
text line when ``DEBUG`` is on.  ``datasheet_api.main`` calls it
once at import time.

Every record gets a ``request_id`` attribute.  The value comes
from a context variable bound by ``RequestIDMiddleware`` for the
lifetime of an HTTP request; FastAPI copies the context into the
threadpool that runs sync endpoints, so service code logging on
that thread is tagged too.  Outside a request the ID is ``"-"``.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER: str = "X-Request-ID"

_request_id: ContextVar[str] = ContextVar("request_id", default="-")

# Third-party loggers that are chatty at INFO.
_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "LiteLLM", "litellm", "urllib3")

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | [%(request_id)s] %(message)s"


class JsonLineFormatter(logging.Formatter):
    """Render a record as one JSON object.

    Keys: ``time``, ``level``, ``logger``, ``request_id``,
    ``message`` and, when present, ``exc_info``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class RequestIDFilter(logging.Filter):
    """Stamp ``record.request_id`` from the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = _request_id.get()  # type: ignore[attr-defined]
        return True


def setup_logging(level: str = "INFO", *, json_format: bool = False) -> None:
    """Configure the root logger.

    Safe to call more than once; earlier handlers are replaced.

    Args:
        level: Level name such as ``"INFO"`` or ``"DEBUG"``.
            Unknown names fall back to ``INFO``.
        json_format: Emit JSON lines instead of text.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLineFormatter() if json_format else logging.Formatter(_TEXT_FORMAT))
    handler.addFilter(RequestIDFilter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level)

    # Third-party chatter only shows when it is a warning or worse.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind a request ID for logging and echo it on the response.

    A client-supplied ``X-Request-ID`` is reused; otherwise a
    random hex ID is generated.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = _request_id.set(rid)
        try:
            response = await call_next(request)
        finally:
            _request_id.reset(token)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
