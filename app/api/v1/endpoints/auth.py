# app/api/v1/endpoints/auth.py
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Form, Request

from app.api.v1.dependencies import get_client_ip, get_settings, get_token_issuer
from app.core.auth import check_issuance_credentials
from app.core.config import RATE_LIMITS, Settings
from app.core.errors import InvalidCredentials, SigningFailure
from app.core.limiter import limiter
from app.core.security import TokenIssuer
from app.schemas.auth import ErrorResponse, TokenResponse

# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter()

@router.post(
    "/token",
    response_model=TokenResponse,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMITS["auth"])
def issue_token(
    request: Request,
    username: Optional[str] = Form(None),
    settings: Settings = Depends(get_settings),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Issues an access token when the username and the custom header are valid."""
    client_ip = get_client_ip(request)
    logger.info(f"Token generation request for {username!r} from IP {client_ip}")

    try:
        check_issuance_credentials(username, request.headers.get(settings.auth_header_key), settings)
    except InvalidCredentials as e:
        logger.warning(f"Invalid credentials for {username!r} from IP {client_ip}: {e}")
        raise

    try:
        token = issuer.issue(username)
    except SigningFailure as e:
        logger.error(f"Failed to generate token for {username!r}: {e}")
        raise

    return {"token": token}
