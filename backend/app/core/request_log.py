# backend/app/core/request_log.py

from __future__ import annotations

import logging
import time
from typing import Optional

from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.core.security import decode_token

logger = logging.getLogger(__name__)


def _caller(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    try:
        payload = decode_token(auth_header[7:])
    except JWTError:
        return None
    return payload.get("sub") if isinstance(payload, dict) else None


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and latency of every request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start_time) * 1000

        client_ip = request.client.host if request.client else None
        logger.info(
            "%s %s -> %s in %.1fms (user=%s ip=%s)",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            _caller(request) or "-",
            client_ip or "-",
        )
        return response
