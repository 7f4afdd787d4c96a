from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import auth

# ---- 404: undefined routes ----


def test_undefined_route_returns_404(client: TestClient) -> None:
    resp = client.get("/nonexistent")
    assert resp.status_code == 404
    body = resp.json()
    assert body["success"] is False
    assert body["code"] == "NOT_FOUND"
    assert body["path"] == "/nonexistent"
    assert body["method"] == "GET"


def test_undefined_nested_route_returns_404(client: TestClient) -> None:
    resp = client.get("/api/v2/credentials")
    assert resp.status_code == 404


# ---- 405: wrong HTTP method on existing routes ----


def test_delete_credential_returns_405(client: TestClient, token: str) -> None:
    resp = client.delete("/api/credentials/cred-1", headers=auth(token))
    assert resp.status_code == 405
    assert resp.json()["code"] == "METHOD_NOT_ALLOWED"


def test_put_health_returns_405(client: TestClient) -> None:
    resp = client.put("/health", json={"status": "bad"})
    assert resp.status_code == 405


def test_get_on_issue_path_is_an_id_lookup(client: TestClient) -> None:
    resp = client.get("/api/credentials/issue")
    # GET /api/credentials/{id} matches and the id is looked up.
    assert resp.status_code == 404


# ---- status route is not captured by /{credential_id} ----


def test_verify_status_is_not_an_id_lookup(client: TestClient) -> None:
    resp = client.get("/api/verify/status")
    assert resp.status_code == 200
    assert resp.json()["data"]["service"] == "CredVerse Verification Service"
