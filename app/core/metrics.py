"""Prometheus metrics for the key server.

Labels stay low-cardinality: route templates rather than raw paths, and key
lookups are counted by outcome, never by the requested name.
"""
from __future__ import annotations

import hmac
import logging
import time
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

HTTP_REQUESTS_TOTAL = Counter(
    "hls_http_requests",
    "Total number of HTTP requests processed",
    ["method", "path", "status"],
)
HTTP_REQUEST_DURATION = Histogram(
    "hls_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
CONCURRENT_CONNECTIONS = Gauge(
    "hls_concurrent_connections",
    "Number of HTTP requests currently in flight",
)
KEY_REQUESTS_TOTAL = Counter(
    "hls_key_requests",
    "Total number of HLS key requests",
    ["status"],
)
KEY_CACHE_HITS = Counter("hls_key_cache_hits", "Total number of key cache hits")
KEY_CACHE_MISSES = Counter("hls_key_cache_misses", "Total number of key cache misses")
ACTIVE_KEYS = Gauge("hls_active_keys", "Number of currently cached HLS keys")
KEY_RELOADS_TOTAL = Counter(
    "hls_key_reloads",
    "Total number of key reloads",
    ["result"],
)
KEY_RELOAD_DURATION = Histogram(
    "hls_key_reload_duration_seconds",
    "Duration of key reload operations in seconds",
)
KEY_RELOAD_SKIPPED = Gauge(
    "hls_key_reload_skipped_entries",
    "Entries skipped by the last successful reload",
)
AUTH_ATTEMPTS_TOTAL = Counter(
    "hls_auth_attempts",
    "Total number of token issuance attempts",
    ["result"],
)
TOKEN_GENERATIONS_TOTAL = Counter("hls_token_generations", "Total number of access tokens generated")
TOKEN_VALIDATIONS_TOTAL = Counter(
    "hls_token_validations",
    "Total number of access token validations",
    ["result"],
)
ERRORS_TOTAL = Counter(
    "hls_errors",
    "Total number of error responses by type",
    ["type"],
)
API_VERSION_INFO = Gauge(
    "hls_api_version_info",
    "API version information",
    ["version", "mode"],
)


def record_key_request(status: str) -> None:
    KEY_REQUESTS_TOTAL.labels(status=status).inc()


def record_cache_lookup(hit: bool) -> None:
    if hit:
        KEY_CACHE_HITS.inc()
    else:
        KEY_CACHE_MISSES.inc()


def record_reload(count: int, skipped: int, duration: float) -> None:
    KEY_RELOADS_TOTAL.labels(result="success").inc()
    KEY_RELOAD_DURATION.observe(duration)
    ACTIVE_KEYS.set(count)
    KEY_RELOAD_SKIPPED.set(skipped)


def record_reload_failure(duration: float) -> None:
    KEY_RELOADS_TOTAL.labels(result="failure").inc()
    KEY_RELOAD_DURATION.observe(duration)


def record_auth_attempt(success: bool) -> None:
    AUTH_ATTEMPTS_TOTAL.labels(result="success" if success else "failure").inc()


def record_token_generated() -> None:
    TOKEN_GENERATIONS_TOTAL.inc()


def record_token_validation(result: str) -> None:
    TOKEN_VALIDATIONS_TOTAL.labels(result=result).inc()


def record_error(error_type: str) -> None:
    ERRORS_TOTAL.labels(type=error_type).inc()


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    # Unmatched URLs share one label.
    return path or "unmatched"


def _basic_auth_ok(credentials: Optional[HTTPBasicCredentials], user: str, password: str) -> bool:
    if credentials is None:
        return False
    user_ok = hmac.compare_digest(credentials.username.encode("utf-8"), user.encode("utf-8"))
    password_ok = hmac.compare_digest(credentials.password.encode("utf-8"), password.encode("utf-8"))
    return user_ok and password_ok


def instrument_app(app: FastAPI, user: Optional[str] = None, password: Optional[str] = None, mode: str = "development") -> None:
    """
    Attach the request metrics middleware and ``GET /metrics`` to ``app``.

    When both ``user`` and ``password`` are set the endpoint requires HTTP
    basic auth; otherwise it is open.
    """
    API_VERSION_INFO.labels(version=API_VERSION, mode=mode).set(1)

    @app.middleware("http")
    async def record_http_metrics(request: Request, call_next):
        start = time.perf_counter()
        status = 500
        try:
            with CONCURRENT_CONNECTIONS.track_inprogress():
                response = await call_next(request)
            status = response.status_code
            return response
        finally:
            path = _route_path(request)
            HTTP_REQUESTS_TOTAL.labels(method=request.method, path=path, status=str(status)).inc()
            HTTP_REQUEST_DURATION.labels(method=request.method, path=path).observe(time.perf_counter() - start)

    protected = bool(user and password)
    if not protected:
        logger.warning("Metrics endpoint is not protected, set METRICS_USER and METRICS_PASSWORD")

    basic = HTTPBasic(auto_error=False)

    @app.get("/metrics", include_in_schema=False)
    def metrics_endpoint(request: Request, credentials: Optional[HTTPBasicCredentials] = Depends(basic)):
        if protected and not _basic_auth_ok(credentials, user, password):
            logger.warning("Metrics endpoint accessed with invalid credentials")
            return Response(status_code=401, headers={"WWW-Authenticate": 'Basic realm="metrics"'})
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
