"""
Endpoints serving HLS encryption keys from the in-memory key store.
Every route requires a valid access token (see ``require_principal``).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import Response

from app.api.v1.dependencies import get_client_ip, get_key_store, get_settings, require_principal
from app.core import metrics
from app.core.config import RATE_LIMITS, Settings
from app.core.errors import InvalidKeyName, KeyNotFound, ScanFailure
from app.core.key_store import KeyStore
from app.core.limiter import limiter
from app.schemas.auth import ErrorResponse, KeyListResponse, ReloadResponse

logger = logging.getLogger(__name__)
router = APIRouter()

KEY_MEDIA_TYPE = "application/octet-stream"


@router.api_route(
    "/key",
    methods=["GET", "POST"],
    response_class=Response,
    responses={
        200: {"content": {KEY_MEDIA_TYPE: {}}},
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
@limiter.limit(RATE_LIMITS["key"])
def get_key(
    request: Request,
    key: Optional[str] = Query(None),
    form_key: Optional[str] = Form(None, alias="key"),
    principal: str = Depends(require_principal),
    store: KeyStore = Depends(get_key_store),
    settings: Settings = Depends(get_settings),
):
    """
    Returns the raw bytes of an encryption key.
    The key name comes from the ``key`` query parameter, then the ``key`` form
    field, and defaults to the configured stream key.
    """
    key_name = key or form_key or settings.default_key_name
    logger.info(f"Key request {key_name!r} by {principal} from IP {get_client_ip(request)}")

    try:
        key_data = store.get(key_name)
    except InvalidKeyName as e:
        metrics.record_key_request("invalid")
        logger.warning(f"Rejected key name {key_name!r}: {e}")
        raise
    except KeyNotFound as e:
        metrics.record_key_request("not_found")
        logger.warning(f"Failed to get key {key_name!r}: {e}")
        raise

    metrics.record_key_request("ok")
    return Response(content=key_data, media_type=KEY_MEDIA_TYPE)


@router.get("/keys", response_model=KeyListResponse, responses={401: {"model": ErrorResponse}})
def list_keys(
    principal: str = Depends(require_principal),
    store: KeyStore = Depends(get_key_store),
):
    """Lists the names of all cached keys."""
    keys = sorted(store.list())
    return {"keys": keys, "count": len(keys)}


@router.post(
    "/reload",
    response_model=ReloadResponse,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMITS["reload"])
def reload_keys(
    request: Request,
    principal: str = Depends(require_principal),
    store: KeyStore = Depends(get_key_store),
):
    """Reloads every key from the key directory without interrupting lookups."""
    logger.info(f"Key reload requested by {principal} from IP {get_client_ip(request)}")

    try:
        count = store.reload()
    except ScanFailure as e:
        logger.error(f"Failed to reload keys: {e}")
        raise

    return {"message": "Keys reloaded successfully", "count": count, "skipped": store.skipped}
