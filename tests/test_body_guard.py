import base64

from conftest import png_bytes


def test_oversized_json_is_rejected(monkeypatch, app_env):
    from fastapi.testclient import TestClient

    from poster_studio.config import get_settings
    from poster_studio.main import create_app

    monkeypatch.setenv("MAX_JSON_BYTES", "512")
    get_settings.cache_clear()

    with TestClient(create_app()) as client:
        response = client.post("/api/products", json={"name": "x" * 2000})

    assert response.status_code == 413
    assert response.json()["error"] == "payload_too_large"


def test_inline_base64_image_is_rejected(client, auth_headers):
    inline = "data:image/png;base64," + base64.b64encode(png_bytes(size=(32, 32)) * 4).decode()

    response = client.post(
        "/api/products", headers=auth_headers, json={"name": "Logo", "image_path": inline}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "inline_base64_rejected"


def test_multipart_uploads_pass_the_guard(client, auth_headers):
    response = client.post(
        "/api/backgrounds/upload",
        headers=auth_headers,
        files={"file": ("bg.png", png_bytes(size=(512, 512)), "image/png")},
    )

    assert response.status_code == 201


def test_health_and_root(client):
    assert client.get("/health").json() == {"ok": True}
    assert client.get("/").json()["ok"] is True
