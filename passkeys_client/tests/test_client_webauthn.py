from __future__ import annotations

import json

import cbor2
import pytest

from passkeys_client.webauthn import (
    AuthenticatorData,
    build_attestation_object,
    build_client_data,
    client_data_hash,
)


def test_authenticator_data_with_attested_credential(parse_auth_data):
    cose_key = cbor2.dumps({1: 2, 3: -7, -1: 1, -2: b"x" * 32, -3: b"y" * 32})
    auth_data = AuthenticatorData.create(
        rp_id="example.com",
        sign_count=5,
        credential_id=b"abc",
        credential_public_key=cose_key,
    )
    encoded = auth_data.encode()
    flags = encoded[32]
    assert flags & 0x01
    assert flags & 0x04
    assert flags & 0x40
    assert int.from_bytes(encoded[33:37], "big") == 5

    parsed = parse_auth_data(encoded)
    assert parsed == auth_data
    assert cbor2.loads(parsed.credential_public_key)[3] == -7


def test_assertion_authenticator_data_has_no_credential():
    encoded = AuthenticatorData.create(rp_id="example.com", sign_count=1, user_verified=False).encode()
    assert len(encoded) == 37
    assert encoded[32] == 0x01


def test_parse_rejects_truncated_data(parse_auth_data):
    with pytest.raises(ValueError):
        parse_auth_data(b"\x00" * 20)


def test_attestation_object_is_none_format():
    auth_data = AuthenticatorData.create("example.com", 0, b"id", cbor2.dumps({1: 2}))
    decoded = cbor2.loads(build_attestation_object(auth_data))
    assert decoded["fmt"] == "none"
    assert decoded["attStmt"] == {}
    assert decoded["authData"] == auth_data.encode()


def test_client_data_is_compact_json():
    raw = build_client_data("webauthn.get", "chal", "https://example.com")
    assert b" " not in raw
    assert json.loads(raw) == {
        "type": "webauthn.get",
        "challenge": "chal",
        "origin": "https://example.com",
        "crossOrigin": False,
    }
    assert len(client_data_hash(raw)) == 32
