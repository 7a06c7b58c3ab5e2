"""HTTP surface: diff endpoint, stream pre-flight checks, health and metrics."""

from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient
import pytest

from app.auth import create_access_token
from app.core.exceptions import StoreUnavailable
from app.main import app
from app.services.updates.service import UpdatesService, get_updates_service

DIFF_URL = "/api/org/org-1/updates/diff"
STREAM_URL = "/api/org/org-1/updates/stream"


def _auth(user_id: str = "u1", organization_id: str = "org-1") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, organization_id)}"}


@pytest.fixture
def client(store):
    service = UpdatesService(store)
    app.dependency_overrides[get_updates_service] = lambda: service
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def test_diff_returns_envelopes_in_camel_case(client, store):
    for n in (1, 2, 3):
        store.append_sync("u1", "message.created", {"n": n})

    response = client.post(DIFF_URL, json={"offset": 0, "limit": 10}, headers=_auth())

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    data = body["data"]
    assert [env["seqno"] for env in data["envelopes"]] == [1, 2, 3]
    assert data["envelopes"][0]["eventType"] == "message.created"
    assert data["envelopes"][0]["userId"] == "u1"
    assert data["nextOffset"] == 3
    assert data["hasMore"] is False
    assert data["headOffset"] == 3
    assert data["resetRequired"] is False


def test_diff_from_offset(client, store):
    for n in (1, 2, 3):
        store.append_sync("u1", "message.created", {"n": n})

    response = client.post(DIFF_URL, json={"offset": 2, "limit": 10}, headers=_auth())

    envelopes = response.json()["data"]["envelopes"]
    assert [env["payload"] for env in envelopes] == [{"n": 3}]


def test_diff_only_returns_callers_log(client, store):
    store.append_sync("u2", "x", {})

    response = client.post(DIFF_URL, json={}, headers=_auth("u1"))

    assert response.json()["data"]["envelopes"] == []


def test_diff_without_body_uses_defaults(client, store):
    store.append_sync("u1", "x", {})

    response = client.post(DIFF_URL, headers=_auth())

    assert response.status_code == 200
    assert response.json()["data"]["nextOffset"] == 1


def test_diff_accepts_query_token(client):
    token = create_access_token("u1", "org-1")

    response = client.post(f"{DIFF_URL}?token={token}", json={})

    assert response.status_code == 200


@pytest.mark.parametrize(
    "body",
    [{"offset": -1}, {"offset": "5"}, {"offset": 1.5}, {"limit": 0}, {"limit": 501}],
)
def test_diff_rejects_invalid_window(client, body):
    response = client.post(DIFF_URL, json=body, headers=_auth())

    assert response.status_code == 400
    payload = response.json()
    assert payload["ok"] is False
    assert payload["error"]["code"] == "VALIDATION_ERROR"


def test_diff_requires_token(client):
    response = client.post(DIFF_URL, json={})

    assert response.status_code == 401
    assert response.json() == {
        "ok": False,
        "error": {"code": "UNAUTHORIZED", "message": "Not authenticated"},
    }


def test_diff_rejects_other_organization(client):
    response = client.post(DIFF_URL, json={}, headers=_auth(organization_id="org-2"))

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


def test_store_outage_maps_to_503(client):
    failing = MagicMock()
    failing.is_stopped = False
    failing.diff_get = AsyncMock(side_effect=StoreUnavailable("Update log unavailable"))
    app.dependency_overrides[get_updates_service] = lambda: failing

    response = client.post(DIFF_URL, json={}, headers=_auth())

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "STORE_UNAVAILABLE"


def test_stream_requires_token(client):
    response = client.get(STREAM_URL)

    assert response.status_code == 401


def test_stream_rejects_bad_last_event_id(client):
    headers = {**_auth(), "Last-Event-ID": "abc"}

    response = client.get(STREAM_URL, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_OFFSET"


def test_stream_rejects_negative_offset(client):
    response = client.get(f"{STREAM_URL}?offset=-1", headers=_auth())

    assert response.status_code == 400


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/api/org/org-1/nothing-here")

    assert response.status_code == 404
    assert response.json()["ok"] is False
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_health_reports_database_and_pubsub(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"] == {"database": True, "pubsub": True}


def test_metrics_exposes_update_counters(client, store):
    client.post(DIFF_URL, json={}, headers=_auth())
    store.append_sync("u1", "x", {})

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "updates_appended_total" in response.text
    assert "updates_stream_connections" in response.text
