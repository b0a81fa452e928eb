# app/main.py
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.api.v1.api import api_router
from app.core import metrics
from app.core.config import LOG_LEVEL, Settings, load_settings
from app.core.errors import AuthenticationError, KeyServerError, ScanFailure
from app.core.key_store import KeyStore
from app.core.limiter import limiter
from app.core.security import Clock, TokenIssuer, TokenVerifier, utcnow
from app.core.security_headers import SecurityHeadersMiddleware
from app.schemas.auth import HealthResponse

# Configure logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


async def reload_on_signal(store: KeyStore) -> None:
    """SIGHUP handler body: reload keys off the event loop."""
    logger.info("Received SIGHUP, reloading keys...")
    try:
        count = await asyncio.to_thread(store.reload)
    except ScanFailure as e:
        logger.error(f"Failed to reload keys: {e}")
        return
    logger.info(f"Keys reloaded successfully ({count} keys)")


def _install_reload_signal(app: FastAPI) -> bool:
    if not hasattr(signal, "SIGHUP"):
        return False

    loop = asyncio.get_running_loop()
    tasks = app.state.reload_tasks

    def _schedule() -> None:
        task = loop.create_task(reload_on_signal(app.state.key_store))
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    try:
        loop.add_signal_handler(signal.SIGHUP, _schedule)
    except (NotImplementedError, RuntimeError, ValueError) as e:
        # Not on the main thread (e.g. under a test client) or unsupported loop.
        logger.debug(f"SIGHUP reload handler not installed: {e}")
        return False
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    installed = _install_reload_signal(app)
    logger.info(f"Key server started with {len(app.state.key_store)} keys")

    try:
        yield  # ----- Application running -----
    finally:
        if installed:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGHUP)
        for task in list(app.state.reload_tasks):
            task.cancel()
        logger.info("Key server stopped")


async def key_server_error_handler(request: Request, exc: KeyServerError) -> JSONResponse:
    metrics.record_error(type(exc).__name__)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse({"error": exc.public_message}, status_code=exc.status_code, headers=headers)


def create_app(
    settings: Optional[Settings] = None,
    key_store: Optional[KeyStore] = None,
    clock: Clock = utcnow,
) -> FastAPI:
    """
    Build the key server application.

    Settings are read from the environment and the key store is loaded from
    ``settings.key_dir`` unless they are passed in.
    """
    if settings is None:
        settings = load_settings()
    if key_store is None:
        key_store = KeyStore.from_directory(settings.key_dir)

    app = FastAPI(
        title="HLS Key Server",
        description="Serves HLS encryption keys to authenticated players.",
        version="1.0.0",
        lifespan=lifespan,
        exception_handlers={
            RateLimitExceeded: _rate_limit_exceeded_handler,
            KeyServerError: key_server_error_handler,
        },
        docs_url="/docs" if not settings.is_production else None,  # Disable docs in production
        redoc_url="/redoc" if not settings.is_production else None,
    )

    app.state.settings = settings
    app.state.key_store = key_store
    app.state.token_issuer = TokenIssuer(settings, clock=clock)
    app.state.token_verifier = TokenVerifier(settings, clock=clock)
    app.state.limiter = limiter
    app.state.reload_tasks = set()

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", settings.auth_header_key],
        )

    @app.middleware("http")
    async def request_timeout(request: Request, call_next):
        """Abandon requests that run past the configured deadline."""
        try:
            return await asyncio.wait_for(call_next(request), timeout=settings.request_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Request timeout: {request.method} {request.url.path}")
            return JSONResponse({"error": "Request timeout"}, status_code=504)

    # Added last, so it wraps the timeout middleware and sees 504s.
    if settings.metrics_enabled:
        metrics.instrument_app(
            app,
            user=settings.metrics_user,
            password=settings.metrics_password,
            mode="production" if settings.is_production else "development",
        )

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/healthz", response_model=HealthResponse, tags=["health"])
    def health_check(request: Request):
        """Returns OK with the number of cached keys."""
        store: KeyStore = request.app.state.key_store
        now = datetime.now()
        return {
            "status": "OK",
            "recv_time": now.strftime("%Y-%m-%dT%H:%M:%S"),
            "recv_time_utc": utcnow().isoformat(timespec="seconds"),
            "keys": len(store),
            "last_reload": store.last_reload.isoformat(timespec="seconds") if store.last_reload else None,
        }

    return app
