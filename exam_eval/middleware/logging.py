"""Request logging middleware."""

import logging
import time
from typing import Callable
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Exam submissions wait on the oracle for every question
SLOW_REQUEST_MS = 30_000


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with an id, its status and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id

        start_time = time.perf_counter()
        logger.info(
            f"{request.method} {request.url.path} started",
            extra={
                "request_id": request_id,
                "client_ip": request.client.host if request.client else None,
            },
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            logger.error(
                f"{request.method} {request.url.path} failed after {duration_ms}ms: {e}",
                extra={"request_id": request_id},
            )
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        log = logger.warning if duration_ms > SLOW_REQUEST_MS else logger.info
        log(
            f"{request.method} {request.url.path} -> {response.status_code} in {duration_ms}ms",
            extra={"request_id": request_id},
        )

        response.headers["X-Request-ID"] = request_id
        return response
