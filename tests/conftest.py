from __future__ import annotations

import sqlite3
import threading
import time
from io import BytesIO
from pathlib import Path
from typing import Callable, Optional

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from poster_studio.config import get_settings
from poster_studio.db import get_engine, get_session_maker
from poster_studio.services.image_provider import set_provider

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "password123"

_ISOLATED_ENV = (
    "IMAGE_API_BASE",
    "IMAGE_API_KIND",
    "IMAGE_API_KEY",
    "OPENAI_API_KEY",
    "IMAGE_API_PROXY",
    "IMAGE_API_TIMEOUT",
    "API_PREFIX",
    "ENVIRONMENT",
    "R2_ENDPOINT",
    "S3_ENDPOINT",
    "R2_ACCESS_KEY_ID",
    "S3_ACCESS_KEY",
    "R2_SECRET_ACCESS_KEY",
    "S3_SECRET_KEY",
    "R2_BUCKET",
    "S3_BUCKET",
    "R2_SIGNED_GET_TTL",
    "R2_PUBLIC_BASE",
    "S3_PUBLIC_BASE",
    "MIN_THEME_LENGTH",
    "MAX_JSON_BYTES",
    "UPLOAD_MAX_BYTES",
    "UPLOAD_ALLOWED_MIME",
)


def png_bytes(color: tuple[int, int, int] = (255, 0, 0), size: tuple[int, int] = (64, 64)) -> bytes:
    image = Image.new("RGB", size, color)
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class FakeProvider:
    """Stand-in for the image collaborator; records prompts."""

    def __init__(
        self,
        data: Optional[bytes] = None,
        *,
        error: Optional[Exception] = None,
        gate: Optional[threading.Event] = None,
        delay: float = 0.0,
    ) -> None:
        self.data = data if data is not None else png_bytes((20, 120, 200), (128, 128))
        self.error = error
        self.gate = gate
        self.delay = delay
        self.prompts: list[str] = []

    def generate(self, *, prompt: str, size: Optional[str] = None) -> bytes:
        self.prompts.append(prompt)
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.data


def _clear_caches() -> None:
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_maker.cache_clear()
    set_provider(None)


@pytest.fixture()
def app_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    db_path = tmp_path / "poster_studio.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("ASSET_DIR", str(tmp_path / "assets"))
    monkeypatch.setenv("ADMIN_USERNAME", ADMIN_USERNAME)
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    _clear_caches()
    yield db_path
    _clear_caches()


@pytest.fixture()
def provider(app_env: Path) -> FakeProvider:
    fake = FakeProvider()
    set_provider(fake)
    return fake


@pytest.fixture()
def client(app_env: Path, provider: FakeProvider) -> TestClient:
    from poster_studio.main import create_app

    with TestClient(create_app()) as test_client:
        yield test_client


def login(client: TestClient, username: str = ADMIN_USERNAME, password: str = ADMIN_PASSWORD) -> dict[str, str]:
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture()
def auth_headers(client: TestClient) -> dict[str, str]:
    return login(client)


@pytest.fixture()
def other_headers(client: TestClient) -> dict[str, str]:
    response = client.post("/api/auth/register", json={"username": "bob", "password": "hunter2hunter2"})
    assert response.status_code == 201, response.text
    return login(client, "bob", "hunter2hunter2")


@pytest.fixture()
def run_sql(app_env: Path) -> Callable[..., list[tuple]]:
    """Run raw SQL against the test database file (for state the API cannot set)."""

    def _run(statement: str, *params: object) -> list[tuple]:
        with sqlite3.connect(app_env) as conn:
            rows = conn.execute(statement, params).fetchall()
            conn.commit()
        return rows

    return _run


def wait_for(
    fetch: Callable[[], dict],
    done: Callable[[dict], bool],
    *,
    timeout: float = 10.0,
    interval: float = 0.05,
) -> dict:
    deadline = time.monotonic() + timeout
    payload = fetch()
    while not done(payload):
        if time.monotonic() > deadline:
            raise AssertionError(f"condition not reached, last payload: {payload}")
        time.sleep(interval)
        payload = fetch()
    return payload


def wait_for_background(client: TestClient, headers: dict[str, str], background_id: str) -> dict:
    def fetch() -> dict:
        response = client.get(f"/api/backgrounds/{background_id}", headers=headers)
        assert response.status_code == 200, response.text
        return response.json()

    return wait_for(fetch, lambda body: body["status"] in {"ready", "failed"})


def ready_background(client: TestClient, headers: dict[str, str]) -> dict:
    response = client.post(
        "/api/backgrounds/upload",
        headers=headers,
        files={"file": ("bg.png", png_bytes((0, 90, 40), (200, 300)), "image/png")},
    )
    assert response.status_code == 201, response.text
    return response.json()
