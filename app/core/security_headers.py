"""Middleware to append security-related HTTP headers.

Key responses must never be cached by browsers or intermediaries. The
``server`` header is added by uvicorn below the middleware stack and is
switched off in ``run.py`` instead.
"""
from __future__ import annotations

from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.config import SECURITY_HEADERS


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Append security headers to every response."""

    def __init__(self, app: ASGIApp, headers: Optional[Dict[str, Optional[str]]] = None):
        super().__init__(app)
        self.headers = SECURITY_HEADERS if headers is None else headers

    async def dispatch(self, request, call_next):  # type: ignore[override]
        response = await call_next(request)

        for header, value in self.headers.items():
            if value:  # Only set if value is not None
                response.headers[header] = value

        return response
