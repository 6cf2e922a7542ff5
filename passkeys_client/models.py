"""WebAuthn JSON shapes exchanged with the RP, and the locally stored credential."""

from __future__ import annotations

import base64
import secrets
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ES256 = -7

Requirement = Literal["required", "preferred", "discouraged"]


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


class WireModel(BaseModel):
    # RPs add members (hints, extensions) the local authenticator does not act on
    model_config = ConfigDict(extra="ignore")


class RelyingPartyEntity(WireModel):
    id: str
    name: str


class UserEntity(WireModel):
    id: str = Field(min_length=1)
    name: str
    displayName: str


class PubKeyCredParam(WireModel):
    type: Literal["public-key"] = "public-key"
    alg: int


class AuthenticatorSelectionCriteria(WireModel):
    authenticatorAttachment: Optional[Literal["platform", "cross-platform"]] = None
    residentKey: Requirement = "preferred"
    requireResidentKey: bool = False
    userVerification: Requirement = "preferred"


class PublicKeyCredentialDescriptor(WireModel):
    id: str
    type: Literal["public-key"] = "public-key"
    transports: Optional[List[str]] = None


class PublicKeyCredentialCreationOptions(WireModel):
    challenge: str
    rp: RelyingPartyEntity
    user: UserEntity
    pubKeyCredParams: List[PubKeyCredParam] = Field(min_length=1)
    timeout: int = 60_000
    attestation: str = "none"
    authenticatorSelection: AuthenticatorSelectionCriteria = Field(default_factory=AuthenticatorSelectionCriteria)
    excludeCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)


class PublicKeyCredentialRequestOptions(WireModel):
    challenge: str
    rpId: str
    timeout: int = 60_000
    userVerification: Requirement = "preferred"
    allowCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)


class AuthenticatorAttestationResponse(BaseModel):
    clientDataJSON: str
    attestationObject: str
    transports: List[str] = Field(default_factory=lambda: ["internal"])


class AuthenticatorAssertionResponse(BaseModel):
    clientDataJSON: str
    authenticatorData: str
    signature: str
    userHandle: Optional[str] = None


class CredentialRecord(BaseModel):
    """A passkey held by the software authenticator.

    Key material is base64url text so the record serializes straight into a
    keyring secret.
    """

    credential_id: str
    user_handle: str
    user_name: str
    rp_id: str
    algorithm: int = ES256
    public_key: str
    private_key: str
    sign_count: int = 0

    @classmethod
    def new(
        cls,
        user_handle: str,
        user_name: str,
        rp_id: str,
        public_key: bytes,
        private_key: bytes,
        algorithm: int = ES256,
    ) -> "CredentialRecord":
        return cls(
            credential_id=b64url_encode(secrets.token_bytes(32)),
            user_handle=user_handle,
            user_name=user_name,
            rp_id=rp_id,
            algorithm=algorithm,
            public_key=b64url_encode(public_key),
            private_key=b64url_encode(private_key),
        )
