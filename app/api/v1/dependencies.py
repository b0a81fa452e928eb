# app/api/v1/dependencies.py
import logging
from fastapi import Depends, Request

from app.core.auth import authenticate_request
from app.core.config import Settings
from app.core.errors import AuthenticationError
from app.core.key_store import KeyStore
from app.core.security import TokenIssuer, TokenVerifier

logger = logging.getLogger(__name__)

def get_client_ip(request: Request) -> str:
    """Extract client IP address securely"""
    # Check for proxy headers (be careful with spoofing)
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        # Take the first IP in the chain (original client)
        client_ip = forwarded_for.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else None

    return client_ip or "unknown"

def get_settings(request: Request) -> Settings:
    return request.app.state.settings

def get_key_store(request: Request) -> KeyStore:
    return request.app.state.key_store

def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer

def get_token_verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier

def require_principal(
    request: Request,
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> str:
    """Resource gate for key endpoints. Returns the authenticated username."""
    try:
        claims = authenticate_request(request, verifier)
    except AuthenticationError as e:
        # The token itself is never logged.
        logger.warning(f"Token rejected from IP {get_client_ip(request)}: {e}")
        raise
    return claims.sub
