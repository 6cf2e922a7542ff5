"""ES256 key handling for the software authenticator, built on cryptography."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fido2 import cbor
from fido2.cose import ES256

from .models import CredentialRecord, ES256 as ES256_ALG, b64url_decode

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyPair:
    public_key: bytes
    private_key: bytes
    algorithm: int = ES256_ALG


class ES256Suite:
    """Generates P-256 credentials and signs assertions with them.

    ``public_key`` is the COSE_Key encoding sent to the RP; ``private_key`` is
    the PKCS#8 DER kept in the keyring.
    """

    algorithm = ES256_ALG

    def generate_keypair(self) -> KeyPair:
        private = ec.generate_private_key(ec.SECP256R1())
        cose_key = ES256.from_cryptography_key(private.public_key())
        private_der = private.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        LOGGER.debug("Generated ES256 keypair")
        return KeyPair(public_key=cbor.encode(dict(cose_key)), private_key=private_der)

    def sign(self, record: CredentialRecord, payload: bytes) -> bytes:
        private = serialization.load_der_private_key(b64url_decode(record.private_key), password=None)
        if not isinstance(private, ec.EllipticCurvePrivateKey):
            raise ValueError(f"Credential {record.credential_id} does not hold an EC key")
        return private.sign(payload, ec.ECDSA(hashes.SHA256()))
