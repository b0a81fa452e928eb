"""
Request gates in front of token issuance and key access.

The issuance gate compares a shared static header value and the allowed
username; the resource gate finds the bearer token a player sent and hands it
to the ``TokenVerifier``.
"""
import hmac
import logging
from typing import Optional

from fastapi import Request

from app.core import metrics
from app.core.config import Settings
from app.core.errors import InvalidCredentials, TokenInvalid, TokenMissing
from app.core.security import TokenVerifier
from app.schemas.auth import TokenClaims

logger = logging.getLogger(__name__)

TOKEN_QUERY_PARAM = "token"
TOKEN_COOKIE = "token"
_BEARER_PREFIX = "Bearer "


def _matches(supplied: Optional[str], expected: str) -> bool:
    if not supplied or not expected:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def check_issuance_credentials(username: Optional[str], header_value: Optional[str], settings: Settings) -> str:
    """
    Validate the custom header and the username before a token is issued.

    Both checks always run so the outcome does not depend on which one failed.

    Raises:
        InvalidCredentials: If either the header or the username does not match
    """
    header_ok = _matches(header_value, settings.auth_header_value)
    user_ok = _matches(username, settings.auth_user)
    metrics.record_auth_attempt(header_ok and user_ok)
    if not (header_ok and user_ok):
        raise InvalidCredentials(f"header_ok={header_ok} user_ok={user_ok}")
    return username


def _strip_bearer(value: Optional[str]) -> Optional[str]:
    if value and value.startswith(_BEARER_PREFIX):
        return value[len(_BEARER_PREFIX):].strip()
    return value


def extract_token(request: Request) -> Optional[str]:
    """
    Find the access token on a request.

    Looks at, in order: ``Authorization: Bearer <token>``, the ``token`` query
    parameter and the ``token`` cookie (which may itself carry the ``Bearer``
    prefix). A ``Bearer`` Authorization header is final: when it carries no
    token, the query parameter and the cookie are not consulted.
    """
    auth_header = request.headers.get("Authorization")
    if auth_header and (auth_header == _BEARER_PREFIX.strip() or auth_header.startswith(_BEARER_PREFIX)):
        return auth_header[len(_BEARER_PREFIX):].strip() or None

    token = request.query_params.get(TOKEN_QUERY_PARAM)
    if token:
        return token

    return _strip_bearer(request.cookies.get(TOKEN_COOKIE)) or None


def authenticate_request(request: Request, verifier: TokenVerifier) -> TokenClaims:
    """
    Resource gate: verify the request's token and record the principal.

    On success ``request.state.user`` holds the token subject.

    Raises:
        TokenMissing: If the request carries no token
        TokenInvalid: If verification fails
    """
    token = extract_token(request)
    if not token:
        metrics.record_token_validation("missing")
        raise TokenMissing("no token in header, query or cookie")

    try:
        claims = verifier.verify(token)
    except TokenInvalid:
        metrics.record_token_validation("invalid")
        raise
    metrics.record_token_validation("success")
    request.state.user = claims.sub
    return claims
