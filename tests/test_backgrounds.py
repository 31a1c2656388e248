from poster_studio.services.backgrounds import build_background_prompt
from poster_studio.services.image_provider import ImageProviderError, set_provider

from conftest import FakeProvider, login, png_bytes, wait_for_background


def test_generate_background_reaches_ready(client, auth_headers, provider):
    response = client.post(
        "/api/backgrounds/generate", headers=auth_headers, json={"theme_text": "  Summer sale at the beach  "}
    )

    assert response.status_code == 202
    started = response.json()
    assert started["status"] in {"generating", "ready"}
    assert started["theme_text"] == "Summer sale at the beach"

    done = wait_for_background(client, auth_headers, started["id"])
    assert done["status"] == "ready"
    assert done["url"].startswith("/media/backgrounds/")
    assert done["asset_id"] is not None
    assert provider.prompts == [build_background_prompt("Summer sale at the beach")]

    image = client.get(done["url"])
    assert image.status_code == 200
    assert image.content == provider.data

    asset = client.get(f"/api/assets/{done['asset_id']}/url", headers=auth_headers)
    assert asset.json() == {"url": done["url"]}


def test_prompt_wording():
    assert build_background_prompt("Autumn") == (
        "A professional marketing poster background for: Autumn. "
        "Minimalist, clean, suitable for overlaying text."
    )


def test_short_theme_is_rejected_before_any_record(client, auth_headers, provider):
    response = client.post("/api/backgrounds/generate", headers=auth_headers, json={"theme_text": " abc "})

    assert response.status_code == 400
    assert response.json()["field"] == "theme_text"
    assert client.get("/api/backgrounds", headers=auth_headers).json() == []
    assert provider.prompts == []


def test_collaborator_failure_marks_background_failed(client, auth_headers):
    set_provider(FakeProvider(error=ImageProviderError("upstream exploded")))

    started = client.post(
        "/api/backgrounds/generate", headers=auth_headers, json={"theme_text": "Winter clearance"}
    ).json()
    done = wait_for_background(client, auth_headers, started["id"])

    assert done["status"] == "failed"
    assert "upstream exploded" in done["error"]
    assert done["url"] is None


def test_empty_image_bytes_mark_background_failed(client, auth_headers):
    set_provider(FakeProvider(data=b""))

    started = client.post(
        "/api/backgrounds/generate", headers=auth_headers, json={"theme_text": "Winter clearance"}
    ).json()

    assert wait_for_background(client, auth_headers, started["id"])["status"] == "failed"


def test_collaborator_timeout_marks_background_failed(monkeypatch, app_env):
    from fastapi.testclient import TestClient

    from poster_studio.config import get_settings
    from poster_studio.main import create_app

    monkeypatch.setenv("IMAGE_API_TIMEOUT", "0.2")
    get_settings.cache_clear()
    set_provider(FakeProvider(delay=1.0))

    with TestClient(create_app()) as client:
        headers = login(client)
        started = client.post(
            "/api/backgrounds/generate", headers=headers, json={"theme_text": "Slow motion sale"}
        ).json()
        done = wait_for_background(client, headers, started["id"])

    assert done["status"] == "failed"
    assert "timed out" in done["error"]


def test_terminal_background_never_changes(client, auth_headers):
    started = client.post(
        "/api/backgrounds/generate", headers=auth_headers, json={"theme_text": "Spring flowers"}
    ).json()
    first = wait_for_background(client, auth_headers, started["id"])
    second = client.get(f"/api/backgrounds/{started['id']}", headers=auth_headers).json()

    assert first["status"] == second["status"] == "ready"
    assert first["url"] == second["url"]


def test_upload_background_is_ready_immediately(client, auth_headers):
    response = client.post(
        "/api/backgrounds/upload",
        headers=auth_headers,
        files={"file": ("bg.png", png_bytes(), "image/png")},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "ready"
    assert body["url"].startswith("/media/backgrounds/")
    listing = client.get("/api/backgrounds", headers=auth_headers).json()
    assert [bg["id"] for bg in listing] == [body["id"]]


def test_upload_rejects_non_images(client, auth_headers):
    wrong_type = client.post(
        "/api/backgrounds/upload",
        headers=auth_headers,
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    broken = client.post(
        "/api/backgrounds/upload",
        headers=auth_headers,
        files={"file": ("bg.png", b"not really a png", "image/png")},
    )

    assert wrong_type.status_code == 400
    assert broken.status_code == 400
    assert broken.json()["field"] == "file"


def test_background_of_another_user_is_not_found(client, auth_headers, other_headers):
    mine = client.post(
        "/api/backgrounds/upload",
        headers=auth_headers,
        files={"file": ("bg.png", png_bytes(), "image/png")},
    ).json()

    response = client.get(f"/api/backgrounds/{mine['id']}", headers=other_headers)

    assert response.status_code == 404
    assert response.json()["message"] == "Background not found"
