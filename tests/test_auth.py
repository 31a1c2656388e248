import pyotp

from conftest import ADMIN_PASSWORD, ADMIN_USERNAME, login


def test_login_returns_token_and_user(client):
    response = client.post(
        "/api/auth/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["access_token"]
    assert body["user"]["username"] == ADMIN_USERNAME
    assert body["user"]["role"] == "store_owner"
    assert "password_hash" not in body["user"]


def test_login_accepts_email_field(client):
    response = client.post("/api/auth/login", json={"email": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
    assert response.status_code == 200


def test_login_failures_are_indistinguishable(client):
    wrong_password = client.post("/api/auth/login", json={"username": ADMIN_USERNAME, "password": "nope"})
    unknown_user = client.post("/api/auth/login", json={"username": "ghost", "password": "nope"})

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json()["message"] == unknown_user.json()["message"] == "Authentication failed"
    assert "access_token" not in wrong_password.json()


def test_totp_is_required_when_account_has_a_secret(client, run_sql):
    secret = pyotp.random_base32()
    run_sql("UPDATE users SET totp_secret = ? WHERE username = ?", secret, ADMIN_USERNAME)

    missing = client.post("/api/auth/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
    wrong = client.post(
        "/api/auth/login",
        json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD, "totp_code": "000000"},
    )
    ok = client.post(
        "/api/auth/login",
        json={
            "username": ADMIN_USERNAME,
            "password": ADMIN_PASSWORD,
            "totp_code": pyotp.TOTP(secret).now(),
        },
    )

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert missing.json()["message"] == wrong.json()["message"] == "Authentication failed"
    assert ok.status_code == 200


def test_protected_route_requires_token(client):
    response = client.get("/api/auth/me")

    assert response.status_code == 401
    assert response.json()["message"] == "Unauthorized"
    assert response.headers["www-authenticate"] == "Bearer"


def test_invalid_token_is_rejected(client):
    response = client.get("/api/products", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_me_and_logout(client, auth_headers):
    me = client.get("/api/auth/me", headers=auth_headers)
    assert me.status_code == 200
    assert me.json()["username"] == ADMIN_USERNAME

    logout = client.post("/api/auth/logout", headers=auth_headers)
    assert logout.status_code == 200
    assert logout.json() == {"message": "Logged out"}


def test_register_then_login(client):
    created = client.post("/api/auth/register", json={"username": " carol ", "password": "s3cret-pass"})
    assert created.status_code == 201
    assert created.json()["username"] == "carol"

    duplicate = client.post("/api/auth/register", json={"username": "carol", "password": "s3cret-pass"})
    assert duplicate.status_code == 400
    assert duplicate.json()["field"] == "username"

    headers = login(client, "carol", "s3cret-pass")
    assert client.get("/api/auth/me", headers=headers).json()["username"] == "carol"


def test_register_validation_errors_use_400(client):
    response = client.post("/api/auth/register", json={"username": "dan", "password": "short"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "validation_error"
    assert body["field"] == "password"
