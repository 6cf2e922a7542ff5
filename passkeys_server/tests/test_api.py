from __future__ import annotations

import pytest
from webauthn.helpers import bytes_to_base64url

from passkeys_server.app import create_app
from passkeys_server.services import ensure_user, store_passkey
from passkeys_server.verifier import RegisteredCredential


@pytest.fixture
def fake_app(settings, verifier):
    return create_app(settings, verifier=verifier)


@pytest.fixture
def fake_client(fake_app):
    return fake_app.test_client()


def seed_passkey(app, username: str, label: str) -> str:
    cred_id = bytes_to_base64url(label.encode())
    coordinator = app.extensions["passkeys"]
    with coordinator.db.session() as session:
        user = ensure_user(session, username)
        store_passkey(
            session,
            user,
            RegisteredCredential(cred_id, b"public-key", 0, "single_device", False),
            ["internal"],
        )
    return cred_id


def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_generate_options_returns_challenge_id(client):
    resp = client.post("/api/generate-authentication-options", json={"username": "  "})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["challengeId"]
    assert body["challenge"]
    assert body["allowCredentials"] == []
    assert body["rpId"] == "localhost"


def test_generate_options_without_body(client):
    resp = client.post("/api/generate-authentication-options")
    assert resp.status_code == 200
    assert resp.get_json()["challengeId"]


def test_generate_options_lists_user_passkeys(fake_app, fake_client):
    cred = seed_passkey(fake_app, "alice", "alice-phone")

    body = fake_client.post("/api/generate-authentication-options", json={"username": "alice"}).get_json()

    assert [item["id"] for item in body["allowCredentials"]] == [cred]


def test_invalid_user_verification_is_rejected(client):
    resp = client.post("/api/generate-authentication-options", json={"userVerification": "always"})
    assert resp.status_code == 400
    assert "userVerification" in resp.get_json()["error"]


def test_verify_requires_challenge_id(client):
    resp = client.post("/api/verify-authentication", json={"response": {"id": "abc"}})

    assert resp.status_code == 400
    assert resp.get_json() == {"error": "challengeId is required"}


def test_verify_with_unknown_challenge(client):
    resp = client.post(
        "/api/verify-authentication",
        json={"response": {"id": "abc"}, "challengeId": "never-issued"},
    )

    assert resp.status_code == 400
    body = resp.get_json()
    assert body == {"error": "No challenge found. Please start sign-in again."}
    assert "username" not in body


def test_verify_with_unknown_credential_is_generic(client):
    challenge_id = client.post("/api/generate-authentication-options", json={}).get_json()["challengeId"]

    resp = client.post(
        "/api/verify-authentication",
        json={"response": {"id": "Z2hvc3Q", "rawId": "Z2hvc3Q"}, "challengeId": challenge_id},
    )

    assert resp.status_code == 200
    assert resp.get_json() == {"verified": False}


def test_verify_and_replay(fake_app, fake_client):
    cred = seed_passkey(fake_app, "alice", "alice-phone")
    challenge_id = fake_client.post("/api/generate-authentication-options", json={}).get_json()["challengeId"]
    payload = {
        "response": {"id": cred, "rawId": cred, "counter": 1, "response": {"signature": "good"}},
        "challengeId": challenge_id,
    }

    first = fake_client.post("/api/verify-authentication", json=payload)
    replay = fake_client.post("/api/verify-authentication", json=payload)

    assert first.get_json() == {"verified": True, "username": "alice"}
    assert replay.status_code == 400


def test_non_object_body_is_rejected(client):
    resp = client.post("/api/verify-authentication", json=["not", "an", "object"])
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Request body must be a JSON object"}


def test_registration_requires_username(client):
    resp = client.post("/api/generate-registration-options", json={"username": ""})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Username is required"}


def test_registration_and_sign_in_over_http(client, software_authenticator, settings):
    options = client.post("/api/generate-registration-options", json={"username": "alice"}).get_json()
    challenge_id = options.pop("challengeId")
    credential = software_authenticator.make_credential(options, settings.origin)

    registered = client.post(
        "/api/verify-registration", json={"response": credential, "challengeId": challenge_id}
    ).get_json()
    assert registered["verified"] is True
    assert registered["registrationInfo"]["credentialID"] == credential["id"]

    options = client.post("/api/generate-authentication-options", json={"username": "alice"}).get_json()
    challenge_id = options.pop("challengeId")
    signed = software_authenticator.get_assertion(options, settings.origin)
    result = client.post(
        "/api/verify-authentication", json={"response": signed, "challengeId": challenge_id}
    ).get_json()
    assert result == {"verified": True, "username": "alice"}

    users = client.get("/api/users").get_json()
    assert users[0]["username"] == "alice"
    assert users[0]["passkeysCount"] == 1
    assert users[0]["passkeys"][0]["cloneSuspected"] is False


def test_tampered_registration_is_not_verified(client, software_authenticator, settings):
    options = client.post("/api/generate-registration-options", json={"username": "alice"}).get_json()
    challenge_id = options.pop("challengeId")
    credential = software_authenticator.make_credential(options, "https://evil.example")

    resp = client.post("/api/verify-registration", json={"response": credential, "challengeId": challenge_id})

    assert resp.status_code == 200
    assert resp.get_json() == {"verified": False}


def test_malformed_json_is_rejected(client):
    resp = client.post(
        "/api/generate-authentication-options",
        data="{username:",
        content_type="application/json",
    )
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Request body must be valid JSON"}
