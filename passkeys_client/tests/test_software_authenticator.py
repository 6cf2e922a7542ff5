from __future__ import annotations

import json

import cbor2
import pytest
from fido2 import cbor
from fido2.cose import ES256

from passkeys_client.authenticator import SoftwareAuthenticator
from passkeys_client.errors import CredentialProviderError, CredentialStoreError, NoCredentialAvailable, UserCancelled
from passkeys_client.models import b64url_decode
from passkeys_client.presence import ConsolePrompt
from passkeys_client.webauthn import client_data_hash


def make_creation_options(alg: int = -7) -> dict:
    return {
        "challenge": "cmVnaXN0ZXItY2hhbGxlbmdl",
        "rp": {"id": "example.com", "name": "Example"},
        "user": {"id": "dXNlci1pZA", "name": "alice", "displayName": "alice"},
        "pubKeyCredParams": [{"type": "public-key", "alg": alg}],
        "timeout": 60000,
        "attestation": "none",
        "authenticatorSelection": {"userVerification": "preferred", "residentKey": "preferred"},
        "excludeCredentials": [],
    }


def make_request_options(*credential_ids: str) -> dict:
    return {
        "challenge": "YXNzZXJ0aW9uLWNoYWxsZW5nZQ",
        "rpId": "example.com",
        "allowCredentials": [{"id": cid, "type": "public-key"} for cid in credential_ids],
        "timeout": 60000,
        "userVerification": "preferred",
    }


def test_make_credential_produces_es256_attestation(authenticator, parse_auth_data):
    result = authenticator.make_credential(make_creation_options())

    assert result["id"] == result["rawId"]
    attestation = cbor2.loads(b64url_decode(result["response"]["attestationObject"]))
    assert attestation["fmt"] == "none"
    auth_data = parse_auth_data(attestation["authData"])
    assert auth_data.credential_id == b64url_decode(result["id"])
    assert cbor2.loads(auth_data.credential_public_key)[3] == -7
    client_data = json.loads(b64url_decode(result["response"]["clientDataJSON"]))
    assert client_data["type"] == "webauthn.create"
    assert client_data["origin"] == "https://example.com"


def test_exclude_list_blocks_duplicate_registration(authenticator):
    created = authenticator.make_credential(make_creation_options())
    options = make_creation_options()
    options["excludeCredentials"] = [{"id": created["id"], "type": "public-key"}]

    with pytest.raises(CredentialStoreError):
        authenticator.make_credential(options)


def test_unsupported_algorithm_is_refused(authenticator):
    with pytest.raises(CredentialProviderError):
        authenticator.make_credential(make_creation_options(alg=-8))


def test_assertion_signature_verifies_and_counter_grows(authenticator, store, parse_auth_data):
    created = authenticator.make_credential(make_creation_options())
    first = authenticator.get_assertion(make_request_options(created["id"]))
    second = authenticator.get_assertion(make_request_options())

    record = store.load(created["id"])
    public_key = ES256(cbor.decode(b64url_decode(record.public_key)))
    for assertion, expected_count in ((first, 1), (second, 2)):
        response = assertion["response"]
        auth_data = b64url_decode(response["authenticatorData"])
        client_data = b64url_decode(response["clientDataJSON"])
        assert parse_auth_data(auth_data).sign_count == expected_count
        public_key.verify(auth_data + client_data_hash(client_data), b64url_decode(response["signature"]))
        assert response["userHandle"] == "dXNlci1pZA"
    assert record.sign_count == 2


def test_get_assertion_without_credentials(authenticator):
    with pytest.raises(NoCredentialAvailable):
        authenticator.get_assertion(make_request_options())


def test_declined_presence_cancels(temp_settings, store):
    created = SoftwareAuthenticator(temp_settings, store).make_credential(make_creation_options())
    refusing = SoftwareAuthenticator(temp_settings, store, presence=ConsolePrompt(ask=lambda _: "n"))

    with pytest.raises(UserCancelled):
        refusing.get_assertion(make_request_options(created["id"]))
    assert store.load(created["id"]).sign_count == 0


def test_console_prompt_treats_eof_as_cancel():
    def ask(_prompt):
        raise EOFError

    with pytest.raises(UserCancelled):
        ConsolePrompt(ask=ask).confirm("Sign in")
    ConsolePrompt(ask=lambda _: "Yes").confirm("Sign in")


def test_metadata_lists_created_credentials(authenticator):
    created = authenticator.make_credential(make_creation_options())
    metadata = authenticator.list_credentials_metadata()
    assert metadata == [
        {"id": created["id"], "rp_id": "example.com", "user_name": "alice", "sign_count": 0, "last_used": 1}
    ]
