"""Utilities for constructing WebAuthn-compliant binary structures."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fido2 import cbor

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40
AAGUID = bytes(16)


@dataclass(frozen=True)
class AuthenticatorData:
    rp_id_hash: bytes
    flags: int
    sign_count: int
    credential_id: Optional[bytes] = None
    credential_public_key: Optional[bytes] = None

    @classmethod
    def create(
        cls,
        rp_id: str,
        sign_count: int,
        credential_id: Optional[bytes] = None,
        credential_public_key: Optional[bytes] = None,
        user_verified: bool = True,
    ) -> "AuthenticatorData":
        flags = FLAG_UP
        if user_verified:
            flags |= FLAG_UV
        if credential_id is not None and credential_public_key is not None:
            flags |= FLAG_AT
        return cls(
            rp_id_hash=hashlib.sha256(rp_id.encode("idna")).digest(),
            flags=flags,
            sign_count=sign_count,
            credential_id=credential_id,
            credential_public_key=credential_public_key,
        )

    @property
    def attested(self) -> bool:
        return bool(self.flags & FLAG_AT)

    def encode(self) -> bytes:
        data = bytearray(self.rp_id_hash)
        data.append(self.flags)
        data.extend(self.sign_count.to_bytes(4, "big"))
        if self.attested:
            data.extend(AAGUID)
            data.extend(len(self.credential_id).to_bytes(2, "big"))
            data.extend(self.credential_id)
            data.extend(self.credential_public_key)
        return bytes(data)


def build_attestation_object(auth_data: AuthenticatorData) -> bytes:
    return cbor.encode({"fmt": "none", "attStmt": {}, "authData": auth_data.encode()})


def build_client_data(ceremony: str, challenge: str, origin: str) -> bytes:
    """Serialize clientDataJSON; ``ceremony`` is ``webauthn.create`` or ``webauthn.get``."""
    payload: Dict[str, Any] = {
        "type": ceremony,
        "challenge": challenge,
        "origin": origin,
        "crossOrigin": False,
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def client_data_hash(client_data_json: bytes) -> bytes:
    return hashlib.sha256(client_data_json).digest()
