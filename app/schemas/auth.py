# app/schemas/auth.py
from pydantic import BaseModel, ConfigDict
from typing import List, Optional


class TokenClaims(BaseModel):
    """Claims carried by an access token."""

    model_config = ConfigDict(frozen=True)

    sub: str
    iat: int
    exp: int
    iss: str
    aud: str


class TokenResponse(BaseModel):
    token: str


class KeyListResponse(BaseModel):
    keys: List[str]
    count: int


class ReloadResponse(BaseModel):
    message: str
    count: int
    skipped: int = 0


class HealthResponse(BaseModel):
    status: str
    recv_time: str
    recv_time_utc: str
    keys: int
    last_reload: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
