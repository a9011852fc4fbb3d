"""Tests for the registration and sign-in routes."""

import pytest

import identity
from errors import Unauthorized


def register(client, **overrides):
    body = {
        "email": "Ada@Example.com",
        "password": "correct-horse",
        "firstName": "Ada",
        "lastName": "Lovelace",
        "termsAccepted": True,
    }
    body.update(overrides)
    return client.post("/auth/register", json=body)


class TestRegister:
    def test_creates_account(self, client, store):
        response = register(client, emailOptIn=True)

        assert response.status_code == 201
        data = response.json()
        assert data["user"]["email"] == "ada@example.com"
        assert data["user"]["displayName"] == "Ada Lovelace"
        assert data["user"]["role"] == "customer"
        claims = identity.verify_token(data["token"])
        assert claims["sub"] == data["user"]["id"]

        stored = store.get("users", data["user"]["id"])
        assert stored["passwordHash"] != "correct-horse"
        assert stored["emailOptIn"] is True
        assert stored["smsOptIn"] is False
        assert stored["trackingOptIn"] is False
        assert stored["termsAcceptedAt"] is not None

    def test_terms_required(self, client, store):
        response = register(client, termsAccepted=False)
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"
        assert store.count("users") == 0

    def test_short_password(self, client):
        response = register(client, password="short")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid input"

    def test_duplicate_email(self, client):
        assert register(client).status_code == 201
        response = register(client, email="ada@example.com")
        assert response.status_code == 409
        assert response.json()["error"] == "ConflictError"

    def test_names_are_trimmed(self, client):
        data = register(client, firstName="  Ada ", lastName=" Lovelace  ").json()
        assert data["user"]["displayName"] == "Ada Lovelace"


class TestLogin:
    def test_round_trip(self, client):
        register(client)
        response = client.post("/auth/login", json={"email": "ADA@example.com", "password": "correct-horse"})
        assert response.status_code == 200
        token = response.json()["token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["user"]["email"] == "ada@example.com"
        assert "passwordHash" not in me.json()["user"]

    def test_password_keeps_surrounding_spaces(self, client):
        assert register(client, password="  abcdef  ").status_code == 201
        response = client.post("/auth/login", json={"email": "ada@example.com", "password": "  abcdef  "})
        assert response.status_code == 200
        trimmed = client.post("/auth/login", json={"email": "ada@example.com", "password": "abcdef"})
        assert trimmed.status_code == 401

    def test_wrong_password(self, client):
        register(client)
        response = client.post("/auth/login", json={"email": "ada@example.com", "password": "nope"})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized", "message": "Invalid credentials"}

    def test_unknown_email(self, client):
        response = client.post("/auth/login", json={"email": "ghost@example.com", "password": "whatever"})
        assert response.status_code == 401


class TestGoogleSignIn:
    @pytest.fixture(autouse=True)
    def google(self, monkeypatch):
        profile = {"uid": "google-123", "email": "Seer@Example.com", "name": "Madame Seer", "picture": "http://img"}
        monkeypatch.setattr(identity, "verify_google_token", lambda token: dict(profile))

    def test_first_sign_in_creates_account(self, client, store):
        response = client.post("/auth/google", json={"idToken": "tok", "termsAccepted": True})

        assert response.status_code == 201
        data = response.json()
        assert data["isNewUser"] is True
        assert data["user"]["id"] == "google-123"
        stored = store.get("users", "google-123")
        assert stored["email"] == "seer@example.com"
        assert stored["authProvider"] == "google"
        assert stored["firstName"] == "Madame"
        assert stored["photoURL"] == "http://img"

    def test_second_sign_in_logs_in(self, client, store):
        client.post("/auth/google", json={"idToken": "tok"})
        response = client.post("/auth/google", json={"idToken": "tok"})
        assert response.status_code == 200
        assert response.json()["isNewUser"] is False
        assert store.count("users") == 1

    def test_invalid_token(self, client, monkeypatch):
        def reject(token):
            raise Unauthorized("Invalid Google ID token")

        monkeypatch.setattr(identity, "verify_google_token", reject)
        response = client.post("/auth/google", json={"idToken": "bad"})
        assert response.status_code == 401


class TestBearerTokens:
    def test_missing_token(self, client):
        response = client.get("/auth/me")
        assert response.status_code == 401
        assert response.json()["message"] == "Access token required"

    def test_garbage_token(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid or expired token"

    def test_token_for_missing_account(self, client):
        token = identity.issue_token("ghost", "ghost@example.com")
        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["message"] == "User not found"
