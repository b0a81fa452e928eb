import shutil

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from app.core.errors import ScanFailure
from app.main import create_app

from conftest import HEADER_VALUE

KEY_URL = "/api/v1/hls/key"


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_metrics_endpoint_serves_prometheus_text(client):
    client.get("/healthz")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert 'hls_http_requests_total{method="GET",path="/healthz",status="200"}' in resp.text
    assert "hls_active_keys" in resp.text


def test_http_requests_counted_by_route(client, auth_headers):
    labels = {"method": "GET", "path": "/api/v1/hls/key"}
    ok = sample("hls_http_requests_total", status="200", **labels)
    unauthorized = sample("hls_http_requests_total", status="401", **labels)
    observed = sample("hls_http_request_duration_seconds_count", **labels)

    client.get(KEY_URL, headers=auth_headers)
    client.get(KEY_URL)

    assert sample("hls_http_requests_total", status="200", **labels) == ok + 1
    assert sample("hls_http_requests_total", status="401", **labels) == unauthorized + 1
    assert sample("hls_http_request_duration_seconds_count", **labels) == observed + 2


def test_unmatched_paths_share_one_label(client):
    before = sample("hls_http_requests_total", method="GET", path="unmatched", status="404")
    client.get("/no/such/path")
    client.get("/another/missing/path")
    assert sample("hls_http_requests_total", method="GET", path="unmatched", status="404") == before + 2


@pytest.mark.parametrize("key, status, hits, misses", [
    ("stream.key", "ok", 1, 0),
    ("missing.key", "not_found", 0, 1),
    ("../stream.key", "invalid", 0, 0),
])
def test_key_requests_by_outcome(client, auth_headers, key, status, hits, misses):
    requests_before = sample("hls_key_requests_total", status=status)
    hits_before = sample("hls_key_cache_hits_total")
    misses_before = sample("hls_key_cache_misses_total")

    client.get(KEY_URL, params={"key": key}, headers=auth_headers)

    assert sample("hls_key_requests_total", status=status) == requests_before + 1
    assert sample("hls_key_cache_hits_total") == hits_before + hits
    assert sample("hls_key_cache_misses_total") == misses_before + misses


def test_reload_records_active_keys_and_skipped_entries(key_store, key_dir):
    (key_dir / "notes.txt").write_text("not a key")
    (key_dir / "nested").mkdir()
    (key_dir / "third.key").write_bytes(b"3" * 16)
    reloads = sample("hls_key_reloads_total", result="success")
    observed = sample("hls_key_reload_duration_seconds_count")

    assert key_store.reload() == 3

    assert sample("hls_active_keys") == 3
    assert sample("hls_key_reload_skipped_entries") == 2
    assert sample("hls_key_reloads_total", result="success") == reloads + 1
    assert sample("hls_key_reload_duration_seconds_count") == observed + 1


def test_failed_reload_recorded(key_store, key_dir):
    failures = sample("hls_key_reloads_total", result="failure")
    shutil.rmtree(key_dir)

    with pytest.raises(ScanFailure):
        key_store.reload()

    assert sample("hls_key_reloads_total", result="failure") == failures + 1


def test_auth_attempts_and_token_generations(client):
    success = sample("hls_auth_attempts_total", result="success")
    failure = sample("hls_auth_attempts_total", result="failure")
    generated = sample("hls_token_generations_total")

    client.post("/api/v1/auth/token", data={"username": "alice"}, headers={"X-Auth-Key": HEADER_VALUE})
    client.post("/api/v1/auth/token", data={"username": "alice"}, headers={"X-Auth-Key": "wrong"})

    assert sample("hls_auth_attempts_total", result="success") == success + 1
    assert sample("hls_auth_attempts_total", result="failure") == failure + 1
    assert sample("hls_token_generations_total") == generated + 1


def test_token_validations_by_result(client, auth_headers):
    before = {r: sample("hls_token_validations_total", result=r) for r in ("success", "missing", "invalid")}

    client.get(KEY_URL, headers=auth_headers)
    client.get(KEY_URL)
    client.get(KEY_URL, headers={"Authorization": "Bearer not-a-token"})

    for result in ("success", "missing", "invalid"):
        assert sample("hls_token_validations_total", result=result) == before[result] + 1


def test_error_responses_counted_by_type(client, auth_headers):
    before = sample("hls_errors_total", type="KeyNotFound")
    client.get(KEY_URL, params={"key": "missing.key"}, headers=auth_headers)
    assert sample("hls_errors_total", type="KeyNotFound") == before + 1


@pytest.fixture
def protected_client(settings, key_store, clock):
    app = create_app(
        settings=settings.model_copy(update={"metrics_user": "prom", "metrics_password": "scrape"}),
        key_store=key_store,
        clock=clock,
    )
    with TestClient(app) as c:
        yield c


def test_metrics_basic_auth(protected_client):
    resp = protected_client.get("/metrics")
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == 'Basic realm="metrics"'

    assert protected_client.get("/metrics", auth=("prom", "wrong")).status_code == 401
    assert protected_client.get("/metrics", auth=("other", "scrape")).status_code == 401
    assert protected_client.get("/metrics", auth=("prom", "scrape")).status_code == 200


def test_metrics_can_be_disabled(settings, key_store, clock):
    app = create_app(
        settings=settings.model_copy(update={"metrics_enabled": False}),
        key_store=key_store,
        clock=clock,
    )
    with TestClient(app) as c:
        assert c.get("/metrics").status_code == 404
