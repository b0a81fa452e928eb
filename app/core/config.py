# app/core/config.py
import os
import logging
from typing import List, Optional
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()

logger = logging.getLogger(__name__)

class SecurityConfigError(Exception):
    """Raised when security configuration is invalid"""
    pass

HMAC_ALGORITHMS = ["HS256", "HS384", "HS512"]

def validate_secret_key(key: Optional[str]) -> str:
    """Validate SECRET_KEY meets security requirements"""
    if not key:
        raise SecurityConfigError("SECRET_KEY environment variable is required")

    if len(key) < 32:
        raise SecurityConfigError("SECRET_KEY must be at least 32 characters long")

    # Check complexity
    has_upper = any(c.isupper() for c in key)
    has_lower = any(c.islower() for c in key)
    has_digit = any(c.isdigit() for c in key)
    has_special = any(not c.isalnum() for c in key)

    if not (has_upper and has_lower and has_digit and has_special):
        logger.warning("SECRET_KEY does not meet complexity requirements")

    return key

def validate_algorithm(algorithm: Optional[str]) -> str:
    """Validate JWT algorithm belongs to the HMAC family"""
    if not algorithm:
        algorithm = "HS256"

    if algorithm not in HMAC_ALGORITHMS:
        raise SecurityConfigError(f"Unsupported algorithm: {algorithm}")

    return algorithm

def validate_token_expire_minutes(expire_str: Optional[str]) -> int:
    """Validate token expiration time"""
    if not expire_str:
        return 10

    try:
        expire_minutes = int(expire_str)
    except ValueError:
        raise SecurityConfigError("ACCESS_TOKEN_EXPIRE_MINUTES must be a valid integer")

    if expire_minutes < 1:
        raise SecurityConfigError("Token expiration too short (minimum 1 minute)")

    if expire_minutes > 1440:  # 24 hours
        logger.warning("Token expiration is very long (>24 hours), consider reducing")

    return expire_minutes

def validate_required(name: str, value: Optional[str]) -> str:
    if not value:
        raise SecurityConfigError(f"{name} environment variable is required")
    return value

def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    """Immutable runtime settings shared by the auth components and the key store."""

    model_config = ConfigDict(frozen=True)

    secret_key: str = Field(..., min_length=1)
    algorithm: str = "HS256"
    token_expire_minutes: int = Field(10, ge=1)
    issuer: str
    audience: str
    auth_user: str
    auth_header_key: str = "X-Auth-Key"
    auth_header_value: str

    key_dir: str = "./keys"
    default_key_name: str = "stream.key"
    request_timeout_seconds: float = Field(30.0, gt=0)
    cors_allow_origins: List[str] = []
    metrics_enabled: bool = True
    metrics_user: Optional[str] = None
    metrics_password: Optional[str] = None
    is_production: bool = False


def load_settings() -> Settings:
    """Read and validate settings from the environment (and ``.env``)."""
    try:
        settings = Settings(
            secret_key=validate_secret_key(os.getenv("SECRET_KEY")),
            algorithm=validate_algorithm(os.getenv("ALGORITHM")),
            token_expire_minutes=validate_token_expire_minutes(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES")),
            issuer=validate_required("TOKEN_ISSUER", os.getenv("TOKEN_ISSUER")),
            audience=validate_required("TOKEN_AUDIENCE", os.getenv("TOKEN_AUDIENCE")),
            auth_user=validate_required("AUTH_USER", os.getenv("AUTH_USER")),
            auth_header_key=os.getenv("AUTH_HEADER_KEY", "X-Auth-Key"),
            auth_header_value=validate_required("AUTH_HEADER_VALUE", os.getenv("AUTH_HEADER_VALUE")),
            key_dir=os.getenv("KEY_DIR", "./keys"),
            default_key_name=os.getenv("DEFAULT_KEY_NAME", "stream.key"),
            request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30")),
            cors_allow_origins=_split_csv(os.getenv("CORS_ALLOW_ORIGINS")),
            metrics_enabled=os.getenv("METRICS_ENABLED", "true").lower() == "true",
            metrics_user=os.getenv("METRICS_USER") or None,
            metrics_password=os.getenv("METRICS_PASSWORD") or None,
            is_production=IS_PRODUCTION,
        )
    except SecurityConfigError as e:
        logger.error(f"Security configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"Unexpected configuration error: {e}")
        raise SecurityConfigError(f"Configuration validation failed: {e}")

    logger.info("Security configuration validated successfully")
    return settings


# Production security flags
IS_PRODUCTION = os.getenv("ENVIRONMENT", "development").lower() == "production"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Security headers configuration
SECURITY_HEADERS = {
    "Cache-Control": "no-store, private",
    "Referrer-Policy": "no-referrer",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains" if IS_PRODUCTION else None,
}

# Rate limiting configuration
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
RATE_LIMITS = {
    "auth": os.getenv("RATE_LIMIT_AUTH", "5/minute"),
    "key": os.getenv("RATE_LIMIT_KEY", "120/minute"),
    "reload": os.getenv("RATE_LIMIT_RELOAD", "10/minute"),
    "default": os.getenv("RATE_LIMIT_DEFAULT", "100/minute"),
}
