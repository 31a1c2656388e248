from io import BytesIO

import pytest
from botocore.exceptions import ClientError

from poster_studio.config import get_settings
from poster_studio.services import asset_store, r2_client

from conftest import png_bytes


def test_upload_logo_and_resolve_url(client, auth_headers):
    response = client.post(
        "/api/assets/upload",
        headers=auth_headers,
        data={"kind": "logo"},
        files={"file": ("logo.png", png_bytes(), "image/png")},
    )

    assert response.status_code == 201
    asset = response.json()
    assert asset["kind"] == "logo"
    assert asset["content_type"] == "image/png"

    resolved = client.get(f"/api/assets/{asset['id']}/url", headers=auth_headers)
    assert resolved.json() == {"url": asset["url"]}


def test_upload_rejects_unknown_kind(client, auth_headers):
    response = client.post(
        "/api/assets/upload",
        headers=auth_headers,
        data={"kind": "poster"},
        files={"file": ("x.png", png_bytes(), "image/png")},
    )

    assert response.status_code == 400
    assert response.json()["field"] == "kind"


def test_asset_of_another_user_is_not_found(client, auth_headers, other_headers):
    asset = client.post(
        "/api/assets/upload",
        headers=auth_headers,
        files={"file": ("p.png", png_bytes(), "image/png")},
    ).json()

    assert client.get(f"/api/assets/{asset['id']}/url", headers=other_headers).status_code == 404
    assert client.get("/api/assets/999999/url", headers=auth_headers).status_code == 404


def _configure_r2(monkeypatch, public_base="https://cdn.example.com"):
    monkeypatch.setenv("R2_ENDPOINT", "https://acct.r2.cloudflarestorage.com")
    monkeypatch.setenv("R2_ACCESS_KEY_ID", "key")
    monkeypatch.setenv("R2_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setenv("R2_BUCKET", "posters")
    if public_base:
        monkeypatch.setenv("R2_PUBLIC_BASE", public_base + "/")
    get_settings.cache_clear()
    return get_settings().r2


class StubS3:
    def __init__(self, *, fail=False):
        self.fail = fail
        self.objects = {}

    def put_object(self, *, Bucket, Key, Body, ContentType):
        if self.fail:
            raise ClientError({"Error": {"Code": "503", "Message": "SlowDown"}}, "PutObject")
        self.objects[(Bucket, Key)] = (Body, ContentType)

    def get_object(self, *, Bucket, Key):
        return {"Body": BytesIO(self.objects[(Bucket, Key)][0])}

    def generate_presigned_url(self, *, ClientMethod, Params, ExpiresIn, HttpMethod):
        return f"https://signed.example.com/{Params['Bucket']}/{Params['Key']}?ttl={ExpiresIn}"


def test_r2_settings_are_read_from_environment(app_env, monkeypatch):
    assert not get_settings().r2.is_configured

    r2 = _configure_r2(monkeypatch)

    assert r2.is_configured
    assert r2.bucket == "posters"
    assert r2.public_base == "https://cdn.example.com"
    assert r2.signed_get_ttl == 900


def test_store_bytes_prefers_r2_when_configured(app_env, monkeypatch):
    _configure_r2(monkeypatch)
    s3 = StubS3()
    monkeypatch.setattr(r2_client, "_client", lambda config: s3)

    stored = asset_store.store_bytes(png_bytes(), folder="logos", filename="brand logo.png")

    assert stored.backend == "r2"
    assert stored.url == f"https://cdn.example.com/{stored.key}"
    assert stored.key.startswith("logos/") and stored.key.endswith("brand_logo.png")
    assert s3.objects[("posters", stored.key)][1] == "image/png"
    assert asset_store.load_bytes(stored.url) == png_bytes()


def test_store_bytes_falls_back_to_local_when_r2_fails(app_env, monkeypatch):
    _configure_r2(monkeypatch)
    monkeypatch.setattr(r2_client, "_client", lambda config: StubS3(fail=True))

    stored = asset_store.store_bytes(b"data", folder="posters", filename="p.png")

    assert stored.backend == "local"
    assert stored.url == f"/media/{stored.key}"
    assert asset_store.load_bytes(stored.url) == b"data"


def test_put_object_wraps_bucket_errors(app_env, monkeypatch):
    r2 = _configure_r2(monkeypatch)
    monkeypatch.setattr(r2_client, "_client", lambda config: StubS3(fail=True))

    with pytest.raises(r2_client.R2Error):
        r2_client.put_object(r2, "logos/x.png", b"x", content_type="image/png")


def test_private_bucket_urls_are_signed_on_lookup(app_env, monkeypatch):
    r2 = _configure_r2(monkeypatch, public_base=None)
    monkeypatch.setattr(r2_client, "_client", lambda config: StubS3())

    assert r2_client.key_for_url(r2, "https://anything/x.png") is None
    url = asset_store.resolve_url("https://old-signature", "products/20240101/abc/p.png")

    assert url == "https://signed.example.com/posters/products/20240101/abc/p.png?ttl=900"
    assert asset_store.resolve_url("/media/products/p.png", "products/p.png") == "/media/products/p.png"
