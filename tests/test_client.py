import httpx
import pytest

from poster_studio.client import (
    ApiClientError,
    BackgroundGenerationFailed,
    FileTokenStore,
    MemoryTokenStore,
    PollTimeout,
    PosterProduct,
    PosterStudioClient,
    Unauthorized,
)

from conftest import ADMIN_PASSWORD, ADMIN_USERNAME, png_bytes


def _mock_client(handler, **kwargs) -> PosterStudioClient:
    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://poster.test")
    return PosterStudioClient(http_client=http, **kwargs)


def test_end_to_end_against_the_app(client):
    api = PosterStudioClient(http_client=client, sleep=lambda _: None)

    user = api.login(ADMIN_USERNAME, ADMIN_PASSWORD)
    assert user["username"] == ADMIN_USERNAME

    started = api.generate_background("Festive window display")
    background = api.poll_background(started["id"], interval=0.05, max_attempts=200)
    assert background["status"] == "ready"

    poster = api.create_poster(
        background_id=background["id"],
        template_key="2_products",
        sale_title="Weihnachten",
        products=[
            PosterProduct("X-1", ("x1.png", png_bytes(), "image/png"), price="9.99"),
            PosterProduct("X-2", ("x2.png", png_bytes(), "image/png")),
        ],
    )
    assert poster["status"] == "completed"

    exported = api.export_poster(poster["id"], format="png")
    assert api.asset_url(exported["asset_id"]) == exported["url"]

    api.logout()
    assert api.tokens.get() is None


def test_poll_returns_ready_background():
    states = iter(["queued", "generating", "ready"])
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "bg-1", "status": next(states), "url": "/media/x.png"})

    api = _mock_client(handler, sleep=sleeps.append)

    assert api.poll_background("bg-1", interval=0.5)["url"] == "/media/x.png"
    assert sleeps == [0.5, 0.5]


def test_poll_raises_on_failed_background():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "bg-1", "status": "failed", "error": "quota"})

    api = _mock_client(handler, sleep=lambda _: None)

    with pytest.raises(BackgroundGenerationFailed) as excinfo:
        api.poll_background("bg-1")
    assert excinfo.value.message == "quota"


def test_poll_gives_up_after_max_attempts():
    calls = []
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json={"id": "bg-1", "status": "generating"})

    api = _mock_client(handler, sleep=sleeps.append)

    with pytest.raises(PollTimeout) as excinfo:
        api.poll_background("bg-1", interval=2.0, max_attempts=3)
    assert excinfo.value.attempts == 3
    assert calls == ["/api/backgrounds/bg-1"] * 3
    assert sleeps == [2.0, 2.0]


def test_poll_does_not_hide_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    api = _mock_client(handler, sleep=lambda _: None)

    with pytest.raises(httpx.ConnectError):
        api.poll_background("bg-1")


def test_unauthorized_clears_token():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer stale"
        return httpx.Response(401, json={"message": "Unauthorized"})

    tokens = MemoryTokenStore("stale")
    api = _mock_client(handler, token_store=tokens)

    with pytest.raises(Unauthorized) as excinfo:
        api.me()
    assert excinfo.value.status == 401
    assert tokens.get() is None


def test_error_envelope_becomes_api_client_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"message": "poster cannot move", "error": "invalid_transition"})

    api = _mock_client(handler)

    with pytest.raises(ApiClientError) as excinfo:
        api.generate_poster_background(1, "Black Friday")
    assert excinfo.value.status == 409
    assert excinfo.value.message == "poster cannot move"
    assert not isinstance(excinfo.value, Unauthorized)


def test_file_token_store(tmp_path):
    store = FileTokenStore(tmp_path / "nested" / "token.json")
    assert store.get() is None

    store.set("abc")
    assert FileTokenStore(tmp_path / "nested" / "token.json").get() == "abc"

    store.clear()
    assert store.get() is None
    store.clear()
