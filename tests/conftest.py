import os

# Must be set before app.core.config is imported.
os.environ["RATE_LIMIT_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.core.key_store import KeyStore
from app.core.security import TokenIssuer, TokenVerifier
from app.main import create_app

STREAM_KEY = bytes(range(16))
HEADER_VALUE = "let-me-in-0123456789"


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now=None):
        self.now = now or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def key_dir(tmp_path):
    d = tmp_path / "keys"
    d.mkdir()
    (d / "stream.key").write_bytes(STREAM_KEY)
    (d / "other.key").write_bytes(b"\xff" * 16)
    return d


@pytest.fixture
def settings(key_dir):
    return Settings(
        secret_key="T3st-Secret-Key-For-The-HLS-Key-Server!",
        token_expire_minutes=10,
        issuer="svc",
        audience="hls",
        auth_user="alice",
        auth_header_key="X-Auth-Key",
        auth_header_value=HEADER_VALUE,
        key_dir=str(key_dir),
    )


@pytest.fixture
def issuer(settings, clock):
    return TokenIssuer(settings, clock=clock)


@pytest.fixture
def verifier(settings, clock):
    return TokenVerifier(settings, clock=clock)


@pytest.fixture
def key_store(key_dir):
    return KeyStore.from_directory(str(key_dir))


@pytest.fixture
def app(settings, key_store, clock):
    return create_app(settings=settings, key_store=key_store, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(issuer):
    return {"Authorization": f"Bearer {issuer.issue('alice')}"}
