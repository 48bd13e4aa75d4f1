"""
Structured logging for the storefront backend (structlog over stdlib logging).

Production writes one JSON object per line, development gets colored console
output. Every line logged while a request is handled carries its request id
and, when the request names one, the store id.
"""
import logging
import sys
import uuid
from decimal import Decimal
from typing import Any, List

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-Id"

# Library loggers kept at WARNING unless the app itself logs at a stricter level
QUIET_LOGGERS = ("sqlalchemy.engine", "asyncio", "uvicorn.access")


def _render_decimals(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Money amounts are Decimals; log them as plain strings so JSON keeps the exact value."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


def setup_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _render_decimals,
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Bind a request id to the logging context of each request.

    An inbound X-Request-Id is reused, otherwise a new one is generated; the
    id is echoed on the response. A `store_id` query parameter is bound too.
    """

    async def dispatch(self, request: Request, call_next):
        inbound = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
        request_id = inbound or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        store_id = request.query_params.get("store_id")
        if store_id and store_id.isdigit():
            structlog.contextvars.bind_contextvars(store_id=int(store_id))

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
