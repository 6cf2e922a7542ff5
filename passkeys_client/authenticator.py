"""Software platform authenticator producing WebAuthn credentials and assertions."""

from __future__ import annotations

import json
import logging
import secrets
from typing import Dict, List, Optional

from .config import ClientSettings
from .errors import CredentialProviderError, CredentialStoreError, NoCredentialAvailable
from .keys import ES256Suite
from .models import (
    AuthenticatorAssertionResponse,
    AuthenticatorAttestationResponse,
    CredentialRecord,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialRequestOptions,
    b64url_decode,
    b64url_encode,
)
from .presence import AutoApprove, UserPresence
from .storage import CredentialStore
from .webauthn import AuthenticatorData, build_attestation_object, build_client_data, client_data_hash

LOGGER = logging.getLogger(__name__)

STAGE_LABELS = {"register": "Register", "authn": "Authenticate"}
EVENT_LABELS = {
    ("register", "start"): "Processing credential creation",
    ("register", "exclude.hit"): "Credential excluded by RP",
    ("register", "success"): "Credential creation completed",
    ("authn", "start"): "Processing assertion",
    ("authn", "no_credential"): "No credential available",
    ("authn", "success"): "Assertion completed",
}


def _truncate(value: str, limit: int = 64) -> str:
    if len(value) <= limit:
        return value
    half = limit // 2
    return f"{value[:half]}…{value[-half:]}"


def _log(stage: str, event: str, req: str, level: int = logging.INFO, **fields: object) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload: Dict[str, object] = {"request_id": req}
    for key, value in fields.items():
        if value is not None:
            payload[key] = _truncate(value) if isinstance(value, str) else value
    message = f"[Authenticator: {stage_label}]: {event_label}\n{json.dumps(payload, indent=2, sort_keys=True)}"
    LOGGER.log(level, message)


class SoftwareAuthenticator:
    """Keyring backed authenticator that mimics navigator.credentials flows."""

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        credential_store: Optional[CredentialStore] = None,
        presence: Optional[UserPresence] = None,
        suite: Optional[ES256Suite] = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.store = credential_store or CredentialStore(self.settings)
        self.presence = presence or AutoApprove()
        self.suite = suite or ES256Suite()

    # ------------------------------------------------------------------
    def make_credential(self, options_data: Dict, origin: Optional[str] = None) -> Dict:
        options = PublicKeyCredentialCreationOptions.model_validate(options_data)
        req_id = secrets.token_hex(4)
        resolved_origin = origin or self.settings.origin
        _log("register", "start", req_id, user=options.user.name, origin=resolved_origin)
        if self.store.contains(options.rp.id, [cred.id for cred in options.excludeCredentials]):
            _log("register", "exclude.hit", req_id, user=options.user.name, level=logging.WARNING)
            raise CredentialStoreError("This authenticator is already registered for this user")
        if not any(param.alg == self.suite.algorithm for param in options.pubKeyCredParams):
            raise CredentialProviderError("No supported algorithm in pubKeyCredParams")
        self.presence.confirm(f"Create a passkey for {options.user.displayName}")

        keypair = self.suite.generate_keypair()
        record = CredentialRecord.new(
            user_handle=options.user.id,
            user_name=options.user.name,
            rp_id=options.rp.id,
            public_key=keypair.public_key,
            private_key=keypair.private_key,
            algorithm=keypair.algorithm,
        )
        self.store.save(record)

        client_data = build_client_data("webauthn.create", options.challenge, resolved_origin)
        auth_data = AuthenticatorData.create(
            rp_id=options.rp.id,
            sign_count=record.sign_count,
            credential_id=b64url_decode(record.credential_id),
            credential_public_key=keypair.public_key,
        )
        response = AuthenticatorAttestationResponse(
            clientDataJSON=b64url_encode(client_data),
            attestationObject=b64url_encode(build_attestation_object(auth_data)),
        )
        _log("register", "success", req_id, user=options.user.name, credential_id=record.credential_id)
        return {
            "id": record.credential_id,
            "rawId": record.credential_id,
            "type": "public-key",
            "authenticatorAttachment": "platform",
            "clientExtensionResults": {},
            "response": response.model_dump(),
        }

    # ------------------------------------------------------------------
    def get_assertion(self, options_data: Dict, origin: Optional[str] = None) -> Dict:
        options = PublicKeyCredentialRequestOptions.model_validate(options_data)
        req_id = secrets.token_hex(4)
        resolved_origin = origin or self.settings.origin
        _log(
            "authn",
            "start",
            req_id,
            rp_id=options.rpId,
            allowed=len(options.allowCredentials),
            origin=resolved_origin,
        )
        record = self.store.select(options.rpId, [cred.id for cred in options.allowCredentials])
        if record is None:
            _log("authn", "no_credential", req_id, rp_id=options.rpId, level=logging.WARNING)
            raise NoCredentialAvailable("No passkey available for this site")
        self.presence.confirm(f"Sign in as {record.user_name}")

        client_data = build_client_data("webauthn.get", options.challenge, resolved_origin)
        record.sign_count += 1
        auth_data = AuthenticatorData.create(rp_id=options.rpId, sign_count=record.sign_count).encode()
        signature = self.suite.sign(record, auth_data + client_data_hash(client_data))
        self.store.save(record)

        response = AuthenticatorAssertionResponse(
            clientDataJSON=b64url_encode(client_data),
            authenticatorData=b64url_encode(auth_data),
            signature=b64url_encode(signature),
            userHandle=record.user_handle,
        )
        _log("authn", "success", req_id, credential_id=record.credential_id, sign_count=record.sign_count)
        return {
            "id": record.credential_id,
            "rawId": record.credential_id,
            "type": "public-key",
            "authenticatorAttachment": "platform",
            "clientExtensionResults": {},
            "response": response.model_dump(),
        }

    def list_credentials_metadata(self) -> List[Dict[str, object]]:
        return [
            {
                "id": credential_id,
                "rp_id": info.get("rp_id"),
                "user_name": info.get("user_name"),
                "sign_count": info.get("sign_count"),
                "last_used": info.get("last_used"),
            }
            for credential_id, info in self.store.list_metadata().items()
        ]
