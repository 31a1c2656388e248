import base64
from types import SimpleNamespace

import pytest

from poster_studio.config import ImageAPIConfig
from poster_studio.services.image_provider import ImageProvider, ImageProviderError


def test_generate_placeholder_when_backend_missing():
    provider = ImageProvider(ImageAPIConfig(base=""))

    data = provider.generate(prompt="Placeholder", size="64x48")

    assert data.startswith(b"\x89PNG")
    assert provider.name == "placeholder"


def test_generate_via_openai_sdk(monkeypatch):
    fake_b64 = base64.b64encode(b"openai-image").decode()
    calls: dict[str, object] = {}

    class FakeImages:
        def generate(self, **kwargs):
            calls["params"] = kwargs
            return SimpleNamespace(data=[SimpleNamespace(b64_json=fake_b64, url=None)])

    class FakeOpenAI:
        def __init__(self, **kwargs):
            calls["client"] = kwargs
            self.images = FakeImages()

    monkeypatch.setattr("poster_studio.services.image_provider.OpenAI", FakeOpenAI)

    provider = ImageProvider(ImageAPIConfig(base="https://example.com", api_key="sk-test", kind="openai"))
    result = provider.generate(prompt="Hummingbird", size="512x512")

    assert result == b"openai-image"
    assert calls["client"]["base_url"] == "https://example.com/v1"
    assert calls["client"]["api_key"] == "sk-test"
    assert "http_client" not in calls["client"]
    assert calls["params"]["prompt"] == "Hummingbird"
    assert calls["params"]["size"] == "512x512"
    assert "response_format" not in calls["params"]


def test_openai_falls_back_to_raw_http_when_sdk_signature_breaks(monkeypatch):
    fake_b64 = base64.b64encode(b"raw-image").decode()
    calls: dict[str, object] = {}

    class BrokenImages:
        def generate(self, **kwargs):
            raise TypeError("unexpected keyword argument")

    class FakeOpenAI:
        def __init__(self, **kwargs):
            self.images = BrokenImages()

    class DummyResponse:
        status_code = 200
        text = ""

        def json(self):
            return {"data": [{"b64_json": fake_b64}]}

    class DummyClient:
        def __init__(self, *args, **kwargs):
            calls["kwargs"] = kwargs

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            calls["exited"] = True

        def post(self, url, json, headers):
            calls["request"] = {"url": url, "json": json, "headers": headers}
            return DummyResponse()

    monkeypatch.setattr("poster_studio.services.image_provider.OpenAI", FakeOpenAI)
    monkeypatch.setattr("poster_studio.services.image_provider.httpx.Client", DummyClient)

    provider = ImageProvider(
        ImageAPIConfig(base="https://example.com/v1", api_key="sk-test", kind="openai", model="dall-e-3")
    )
    result = provider.generate(prompt="Hummingbird", size="512x512")

    assert result == b"raw-image"
    request = calls["request"]
    assert request["url"] == "https://example.com/v1/images/generations"
    assert request["json"]["response_format"] == "b64_json"
    assert request["headers"]["Authorization"] == "Bearer sk-test"
    assert calls["exited"] is True


def test_generate_via_vertex_backend(monkeypatch):
    calls: dict[str, object] = {}

    class DummyResponse:
        status_code = 200
        content = b"vertex-bytes"
        text = ""

    class DummyClient:
        def __init__(self, *args, **kwargs):
            calls["kwargs"] = kwargs

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return None

        def post(self, url, json, headers):
            calls["request"] = {"url": url, "json": json, "headers": headers}
            return DummyResponse()

    monkeypatch.setattr("poster_studio.services.image_provider.httpx.Client", DummyClient)

    provider = ImageProvider(ImageAPIConfig(base="https://vertex.example.com", proxy="http://proxy:8080"))
    result = provider.generate(prompt="Mountains", size="256x256")

    assert provider.name == "vertex"
    assert result == b"vertex-bytes"
    assert calls["request"]["url"] == "https://vertex.example.com/generate"
    assert calls["request"]["json"] == {"prompt": "Mountains", "size": "256x256"}
    assert calls["kwargs"]["proxy"] == "http://proxy:8080"


def test_vertex_error_status_raises_provider_error(monkeypatch):
    class DummyResponse:
        status_code = 503
        content = b""
        text = '{"error": "overloaded"}'

    class DummyClient:
        def __init__(self, *args, **kwargs):
            pass

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return None

        def post(self, url, json, headers):
            return DummyResponse()

    monkeypatch.setattr("poster_studio.services.image_provider.httpx.Client", DummyClient)

    provider = ImageProvider(ImageAPIConfig(base="https://vertex.example.com", kind="vertex"))
    with pytest.raises(ImageProviderError, match="HTTP 503"):
        provider.generate(prompt="Mountains")


def test_auto_kind_detects_openai_from_base_url():
    provider = ImageProvider(ImageAPIConfig(base="https://api.openai.com/v1"))
    assert provider.name == "openai"
