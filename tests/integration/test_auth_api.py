from __future__ import annotations

from jose import jwt

from chama.core.config import get_settings

SIGNUP = {
    "first_name": "Wanjiru",
    "last_name": "Kamau",
    "email": "Wanjiru@Example.com",
    "phone_number": "0712345678",
    "password": "s3cret-pass",
}


def test_signup_then_login_returns_tokens_and_profile(client) -> None:
    signup = client.post("/api/auth/signup", json=SIGNUP)
    assert signup.status_code == 201
    user_id = signup.json()["user_id"]

    response = client.post("/api/auth/login", json={"email": "wanjiru@example.com", "password": "s3cret-pass"})

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["id"] == user_id
    assert body["user"]["role"] == "USER"
    settings = get_settings()
    claims = jwt.decode(body["access_token"], settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    assert claims["sub"] == user_id
    assert claims["type"] == "access"
    assert claims["role"] == "USER"


def test_signup_rejects_duplicate_email(client) -> None:
    assert client.post("/api/auth/signup", json=SIGNUP).status_code == 201

    response = client.post("/api/auth/signup", json={**SIGNUP, "email": "wanjiru@example.com"})

    assert response.status_code == 409


def test_login_rejects_wrong_password(client) -> None:
    client.post("/api/auth/signup", json=SIGNUP)

    response = client.post("/api/auth/login", json={"email": SIGNUP["email"], "password": "wrong-password"})

    assert response.status_code == 401


def test_refresh_rotates_tokens(client) -> None:
    client.post("/api/auth/signup", json={**SIGNUP, "role": "SECRETARY"})
    tokens = client.post("/api/auth/login", json={"email": SIGNUP["email"], "password": SIGNUP["password"]}).json()

    rotated = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    replayed = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

    assert rotated.status_code == 200
    assert replayed.status_code == 401
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {rotated.json()['access_token']}"})
    assert me.status_code == 200
    assert me.json()["role"] == "SECRETARY"


def test_refresh_token_cannot_be_used_as_access_token(client) -> None:
    client.post("/api/auth/signup", json=SIGNUP)
    tokens = client.post("/api/auth/login", json={"email": SIGNUP["email"], "password": SIGNUP["password"]}).json()

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})

    assert response.status_code == 401
