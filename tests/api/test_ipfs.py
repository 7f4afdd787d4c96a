"""IPFS upload and retrieval endpoints."""

from __future__ import annotations

import asyncio
import json

from fastapi.testclient import TestClient

from app.api.ipfs import MAX_UPLOAD_BYTES
from app.gateways.content_store import compute_cid
from tests.conftest import Gateways, auth

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def _put(gateways: Gateways, data: bytes) -> str:
    return asyncio.run(gateways.store.put(data)).cid


# ---- Upload ----


def test_upload_file(client: TestClient, token: str, gateways: Gateways) -> None:
    resp = client.post(
        "/api/ipfs/upload",
        files={"file": ("logo.png", PNG, "image/png")},
        headers=auth(token),
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["type"] == "file"
    assert data["cid"] == compute_cid(PNG)
    assert data["mimetype"] == "image/png"
    assert data["fileName"] == "logo.png"
    assert data["size"] == len(PNG)
    assert data["cid"] in gateways.store.pinned


def test_upload_json_file_echoes_content(client: TestClient, token: str) -> None:
    resp = client.post(
        "/api/ipfs/upload",
        files={"file": ("meta.json", b'{"k": 1}', "application/json")},
        headers=auth(token),
    )
    data = resp.json()["data"]
    assert data["type"] == "json_file"
    assert data["content"] == {"k": 1}


def test_upload_json_body(client: TestClient, token: str) -> None:
    resp = client.post("/api/ipfs/upload", json={"hello": "world"}, headers=auth(token))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["type"] == "json_payload"
    assert data["content"] == {"hello": "world"}
    assert data["mimetype"] == "application/json"


def test_upload_json_body_rejects_non_finite_numbers(client: TestClient, token: str) -> None:
    resp = client.post(
        "/api/ipfs/upload",
        content=b'{"score": NaN}',
        headers={**auth(token), "Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid JSON body"


def test_upload_text_body(client: TestClient, token: str) -> None:
    resp = client.post(
        "/api/ipfs/upload",
        content="plain notes",
        headers={**auth(token), "Content-Type": "text/plain"},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["type"] == "text_data"
    assert data["content"] == "plain notes"


def test_upload_requires_token(client: TestClient) -> None:
    resp = client.post("/api/ipfs/upload", json={"hello": "world"})
    assert resp.status_code == 401


def test_upload_rejects_empty_json(client: TestClient, token: str) -> None:
    resp = client.post("/api/ipfs/upload", json={}, headers=auth(token))
    assert resp.status_code == 400


def test_upload_rejects_disallowed_file_type(client: TestClient, token: str) -> None:
    resp = client.post(
        "/api/ipfs/upload",
        files={"file": ("page.html", b"<html></html>", "text/html")},
        headers=auth(token),
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "File type not allowed"


def test_upload_rejects_unknown_body(client: TestClient, token: str) -> None:
    resp = client.post(
        "/api/ipfs/upload",
        content=b"<a/>",
        headers={**auth(token), "Content-Type": "application/xml"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("No file or JSON payload provided")


def test_upload_over_limit_is_413(client: TestClient, token: str) -> None:
    resp = client.post(
        "/api/ipfs/upload",
        content=b"x" * (MAX_UPLOAD_BYTES + 1),
        headers={**auth(token), "Content-Type": "text/plain"},
    )
    assert resp.status_code == 413
    assert resp.json()["code"] == "TOO_LARGE"


def test_upload_store_down_is_503(client: TestClient, token: str, gateways: Gateways) -> None:
    gateways.store.unreachable = True
    resp = client.post("/api/ipfs/upload", json={"a": 1}, headers=auth(token))
    assert resp.status_code == 503


# ---- Retrieve ----


def test_get_json_is_parsed(client: TestClient, gateways: Gateways) -> None:
    cid = _put(gateways, b'{"credentialId": "cred-1"}')
    resp = client.get(f"/api/ipfs/{cid}")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["type"] == "json"
    assert data["content"] == {"credentialId": "cred-1"}
    assert data["cid"] == cid


def test_get_json_raw_and_download(client: TestClient, gateways: Gateways) -> None:
    cid = _put(gateways, b'{"a":1}')

    raw = client.get(f"/api/ipfs/{cid}", params={"format": "raw"})
    assert raw.headers["content-type"].startswith("application/json")
    assert json.loads(raw.content) == {"a": 1}
    assert "content-disposition" not in raw.headers

    download = client.get(f"/api/ipfs/{cid}", params={"download": "true"})
    assert download.headers["content-disposition"] == f'attachment; filename="{cid}.json"'


def test_get_text(client: TestClient, gateways: Gateways) -> None:
    cid = _put(gateways, b"hello there")
    data = client.get(f"/api/ipfs/{cid}").json()["data"]
    assert data["type"] == "text"
    assert data["content"] == "hello there"


def test_get_non_finite_json_falls_back_to_text(client: TestClient, gateways: Gateways) -> None:
    cid = _put(gateways, b"NaN")
    resp = client.get(f"/api/ipfs/{cid}")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["type"] == "text"
    assert data["content"] == "NaN"


def test_get_binary_is_summarized_unless_raw(client: TestClient, gateways: Gateways) -> None:
    cid = _put(gateways, PNG)

    data = client.get(f"/api/ipfs/{cid}").json()["data"]
    assert data["type"] == "binary"
    assert data["contentType"] == "image/png"
    assert data["content"] == f"<Binary data: {len(PNG)} bytes>"

    raw = client.get(f"/api/ipfs/{cid}", params={"format": "raw"})
    assert raw.content == PNG
    assert raw.headers["content-type"] == "image/png"


def test_get_invalid_cid_is_400(client: TestClient) -> None:
    resp = client.get("/api/ipfs/short")
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid CID format"


def test_get_missing_cid_is_404(client: TestClient) -> None:
    resp = client.get(f"/api/ipfs/{compute_cid(b'never stored')}")
    assert resp.status_code == 404


def test_get_bad_format_is_400(client: TestClient, gateways: Gateways) -> None:
    cid = _put(gateways, b"x")
    resp = client.get(f"/api/ipfs/{cid}", params={"format": "xml"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"
