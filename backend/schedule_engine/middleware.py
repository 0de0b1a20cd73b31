"""
Request logging middleware and WebSocket session logging.
"""

import time
from typing import Callable, Optional

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .logging_config import get_logger, set_correlation_id

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every HTTP request with timing and a correlation ID.

    The ID is taken from the X-Correlation-ID header when present, otherwise
    generated, and echoed back on the response so clients can quote it.
    """

    EXCLUDED_PATHS = {'/health', '/favicon.ico', '/docs', '/redoc', '/openapi.json'}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(request.headers.get('X-Correlation-ID'))

        should_log = request.url.path not in self.EXCLUDED_PATHS
        client_ip = request.client.host if request.client else 'unknown'
        method = request.method
        path = request.url.path

        if should_log:
            logger.info(
                f"→ {method} {path}",
                extra={'extra_data': {
                    'event': 'request_start',
                    'method': method,
                    'path': path,
                    'query': str(request.query_params) if request.query_params else '',
                    'client_ip': client_ip,
                }}
            )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"✗ {method} {path} failed ({duration_ms:.2f}ms): {e}",
                exc_info=True,
                extra={'extra_data': {
                    'event': 'request_error',
                    'method': method,
                    'path': path,
                    'duration_ms': round(duration_ms, 2),
                    'error': str(e),
                }}
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        if should_log:
            log_level = 'info' if response.status_code < 400 else 'warning' if response.status_code < 500 else 'error'
            getattr(logger, log_level)(
                f"← {method} {path} {response.status_code} ({duration_ms:.2f}ms)",
                extra={'extra_data': {
                    'event': 'request_complete',
                    'method': method,
                    'path': path,
                    'status_code': response.status_code,
                    'duration_ms': round(duration_ms, 2),
                }}
            )

        response.headers['X-Correlation-ID'] = correlation_id
        response.headers['X-Response-Time'] = f"{duration_ms:.2f}ms"
        return response


class ChangeFeedLogger:
    """
    Logging helper for one WebSocket change-feed session.
    Not a true middleware; the WebSocket handler calls it directly.
    """

    def __init__(self, project_id: str, client_id: str):
        self.project_id = project_id
        self.client_id = client_id
        self.connection_start = time.perf_counter()
        self.events_sent = 0
        self.logger = get_logger(f"{__name__}.ws")

    def log_connect(self) -> None:
        set_correlation_id(f"ws-{self.client_id[:8]}")
        self.logger.info(
            "Change feed connected",
            extra={'extra_data': {
                'event': 'ws_connect',
                'project_id': self.project_id,
                'client_id': self.client_id,
            }}
        )

    def log_event(self, kind: str) -> None:
        self.events_sent += 1
        self.logger.debug(
            f"Change event sent: {kind}",
            extra={'extra_data': {'event': 'ws_send', 'kind': kind, 'sequence': self.events_sent}}
        )

    def log_disconnect(self, reason: Optional[str] = None) -> None:
        self.logger.info(
            f"Change feed disconnected: {reason or 'client disconnected'}",
            extra={'extra_data': {
                'event': 'ws_disconnect',
                'project_id': self.project_id,
                'client_id': self.client_id,
                'duration_seconds': round(time.perf_counter() - self.connection_start, 2),
                'events_sent': self.events_sent,
            }}
        )


def add_logging_middleware(app: FastAPI) -> None:
    """Add all logging middleware to the FastAPI app."""
    app.add_middleware(RequestLoggingMiddleware)
