# app/core/security.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from jose import JOSEError, JWTError, jwt

from app.core import metrics
from app.core.config import HMAC_ALGORITHMS, Settings
from app.core.errors import SigningFailure, TokenInvalid, TokenMissing
from app.schemas.auth import TokenClaims

# Configure logging
logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

REQUIRED_CLAIMS = ("sub", "iat", "exp", "iss", "aud")

# Claim checks run against the injected clock, so jose's own time and
# audience checks are switched off.
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_aud": False,
    "verify_iat": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
    "verify_at_hash": False,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Creates signed access tokens for an authenticated principal."""

    def __init__(self, settings: Settings, clock: Clock = utcnow):
        self._settings = settings
        self._clock = clock

    def issue(self, principal: str) -> str:
        """Creates a JWT access token bound to the configured issuer and audience."""
        now = self._clock()
        expire = now + timedelta(minutes=self._settings.token_expire_minutes)
        claims = {
            "sub": principal,
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
            "iss": self._settings.issuer,
            "aud": self._settings.audience,
        }

        try:
            encoded_jwt = jwt.encode(claims, self._settings.secret_key, algorithm=self._settings.algorithm)
        except JOSEError as e:
            raise SigningFailure(f"sign token: {e}") from e

        metrics.record_token_generated()
        logger.info(f"Access token created for user: {principal}")
        return encoded_jwt


class TokenVerifier:
    """Validates presented access tokens and returns their claims."""

    def __init__(self, settings: Settings, clock: Clock = utcnow):
        self._settings = settings
        self._clock = clock

    def verify(self, token: Optional[str]) -> TokenClaims:
        """
        Verify a JWT access token

        Args:
            token: Encoded JWT as presented by the client

        Returns:
            The token claims; ``sub`` is the authenticated principal

        Raises:
            TokenMissing: If no token was presented
            TokenInvalid: If the signature, claims, lifetime, issuer or audience are wrong
        """
        if not token:
            raise TokenMissing("empty token")

        try:
            payload = jwt.decode(
                token,
                self._settings.secret_key,
                algorithms=HMAC_ALGORITHMS,
                options=_DECODE_OPTIONS,
            )
        except JWTError as e:
            raise TokenInvalid(f"parse token: {e}") from e

        claims = _typed_claims(payload)
        if claims is None:
            raise TokenInvalid("missing or malformed claims")

        now = self._clock().timestamp()
        if now >= claims.exp:
            raise TokenInvalid("token has expired")

        if claims.iat > now:
            raise TokenInvalid("token issued in the future")

        if claims.iss != self._settings.issuer:
            raise TokenInvalid("invalid token issuer")

        if claims.aud != self._settings.audience:
            raise TokenInvalid("invalid token audience")

        return claims


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _typed_claims(payload: Dict[str, Any]) -> Optional[TokenClaims]:
    if any(name not in payload for name in REQUIRED_CLAIMS):
        return None

    if not all(isinstance(payload[name], str) for name in ("sub", "iss", "aud")):
        return None

    if not (_is_number(payload["iat"]) and _is_number(payload["exp"])):
        return None

    return TokenClaims(
        sub=payload["sub"],
        iat=int(payload["iat"]),
        exp=int(payload["exp"]),
        iss=payload["iss"],
        aud=payload["aud"],
    )
