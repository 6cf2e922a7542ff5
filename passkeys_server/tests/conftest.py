from __future__ import annotations

from typing import Dict, Optional, Tuple

import pytest
from webauthn.helpers import bytes_to_base64url

from passkeys_client.authenticator import SoftwareAuthenticator
from passkeys_client.config import ClientSettings
from passkeys_server.app import create_app
from passkeys_server.ceremony import CeremonyCoordinator
from passkeys_server.challenges import MemoryChallengeStore
from passkeys_server.config import RPSettings
from passkeys_server.database import Database
from passkeys_server.services import ensure_user, store_passkey
from passkeys_server.verifier import RegisteredCredential, VerificationResult

ORIGIN = "http://localhost:3000"


def credential_id(label: str) -> str:
    return bytes_to_base64url(label.encode())


class FakeVerifier:
    """Accepts assertions whose signature is ``good`` and reports ``counter``."""

    def __init__(self) -> None:
        self.calls = []

    def verify_authentication(self, *, credential, current_sign_count, **kwargs):
        self.calls.append((credential, current_sign_count, kwargs))
        if credential.get("response", {}).get("signature") != "good":
            return VerificationResult(verified=False, reason="bad signature")
        return VerificationResult(
            verified=True,
            new_counter=credential.get("counter", 0),
            device_type="single_device",
        )

    def verify_registration(self, *, credential, **kwargs):
        return RegisteredCredential(
            credential_id=credential["id"],
            public_key=b"public-key",
            sign_count=0,
            device_type="single_device",
            backed_up=False,
        )


@pytest.fixture
def settings() -> RPSettings:
    return RPSettings(database_url="sqlite://", rp_id="localhost", origin=ORIGIN)


@pytest.fixture
def db(settings) -> Database:
    database = Database(settings)
    database.create_all()
    return database


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def coordinator(settings, db, verifier) -> CeremonyCoordinator:
    return CeremonyCoordinator(settings, db, MemoryChallengeStore(settings.challenge_ttl_seconds), verifier)


@pytest.fixture
def add_passkey(db):
    def add(username: str, label: str, sign_count: int = 0, transports: Optional[list] = None) -> str:
        with db.session() as session:
            user = ensure_user(session, username)
            registered = RegisteredCredential(
                credential_id=credential_id(label),
                public_key=b"public-key",
                sign_count=sign_count,
                device_type="multi_device",
                backed_up=True,
            )
            store_passkey(session, user, registered, transports or ["internal"])
        return credential_id(label)

    return add


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fake_keyring(monkeypatch):
    storage: Dict[Tuple[str, str], str] = {}

    def set_password(service: str, username: str, password: str) -> None:
        storage[(service, username)] = password

    def get_password(service: str, username: str) -> str | None:
        return storage.get((service, username))

    def delete_password(service: str, username: str) -> None:
        storage.pop((service, username), None)

    monkeypatch.setattr("passkeys_client.storage.keyring.set_password", set_password)
    monkeypatch.setattr("passkeys_client.storage.keyring.get_password", get_password)
    monkeypatch.setattr("passkeys_client.storage.keyring.delete_password", delete_password)
    yield storage


@pytest.fixture
def software_authenticator(tmp_path, fake_keyring) -> SoftwareAuthenticator:
    settings = ClientSettings(
        origin=ORIGIN,
        keyring_service="rp-tests",
        credential_index_path=str(tmp_path / "index.json"),
    )
    return SoftwareAuthenticator(settings)
