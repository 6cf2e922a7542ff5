from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Dict, Tuple

import cbor2
import pytest

from passkeys_client.authenticator import SoftwareAuthenticator
from passkeys_client.config import ClientSettings
from passkeys_client.storage import CredentialStore
from passkeys_client.webauthn import FLAG_AT, AuthenticatorData


@pytest.fixture(autouse=True)
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
def anyio_backend():
    return "asyncio"


@pytest.fixture
def temp_settings(tmp_path: Path) -> ClientSettings:
    return ClientSettings(
        base_url="http://rp.test",
        origin="https://example.com",
        keyring_service="test-service",
        credential_index_path=str(tmp_path / "index.json"),
    )


@pytest.fixture
def store(temp_settings) -> CredentialStore:
    return CredentialStore(temp_settings)


@pytest.fixture
def authenticator(temp_settings, store) -> SoftwareAuthenticator:
    return SoftwareAuthenticator(settings=temp_settings, credential_store=store)


@pytest.fixture
def parse_auth_data():
    """Decode authenticator data back into an ``AuthenticatorData``."""

    def parse(data: bytes) -> AuthenticatorData:
        if len(data) < 37:
            raise ValueError("Authenticator data too short")
        flags = data[32]
        credential_id = None
        credential_public_key = None
        if flags & FLAG_AT:
            cred_len = int.from_bytes(data[53:55], "big")
            credential_id = data[55 : 55 + cred_len]
            stream = BytesIO(data[55 + cred_len :])
            cbor2.CBORDecoder(stream).decode()
            credential_public_key = data[55 + cred_len : 55 + cred_len + stream.tell()]
        return AuthenticatorData(
            rp_id_hash=data[:32],
            flags=flags,
            sign_count=int.from_bytes(data[33:37], "big"),
            credential_id=credential_id,
            credential_public_key=credential_public_key,
        )

    return parse
