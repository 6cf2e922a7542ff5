"""Challenge issuance and credential verification for the RP server."""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from webauthn import generate_authentication_options, generate_registration_options, options_to_json
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    COSEAlgorithmIdentifier,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .challenges import AUTHENTICATION, REGISTRATION, ChallengeRecord, ChallengeStore
from .config import RPSettings
from .database import Database
from .errors import (
    ChallengeNotFound,
    CredentialNotFound,
    InvalidRequest,
    MalformedAssertion,
    RegistrationFailed,
    VerificationFailed,
)
from .services import (
    CounterRegression,
    clean_transports,
    ensure_user,
    find_passkey,
    flag_clone_suspected,
    get_user,
    list_passkeys,
    record_sign_in,
    store_passkey,
    summarize_users,
)
from .verifier import CredentialVerifier, WebAuthnVerifier

LOGGER = logging.getLogger(__name__)

STAGE_LABELS = {
    "register": "Register",
    "authn": "Authenticate",
}

EVENT_LABELS = {
    ("register", "options.success"): "Issued Register Options",
    ("register", "verify.start"): "Verifying Registration",
    ("register", "verify.expired"): "Registration Challenge Not Found",
    ("register", "verify.duplicate"): "Credential Already Registered",
    ("register", "verify.failed"): "Registration Rejected",
    ("register", "verify.success"): "Registration Completed",
    ("authn", "options.success"): "Issued Authentication Options",
    ("authn", "verify.start"): "Verifying Authentication",
    ("authn", "verify.expired"): "Authentication Challenge Not Found",
    ("authn", "verify.unknown_credential"): "Authentication Unknown Credential",
    ("authn", "verify.failed"): "Authentication Rejected",
    ("authn", "verify.counter"): "Sign Count Regression",
    ("authn", "verify.success"): "Authentication Completed",
}


def _truncate(value: str, limit: int = 64) -> str:
    if len(value) <= limit:
        return value
    half = limit // 2
    return f"{value[:half]}…{value[-half:]}"


def _build_payload(req: str, **fields: object) -> dict[str, object]:
    payload: dict[str, object] = {"request_id": req}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, str):
            payload[key] = _truncate(value)
        else:
            payload[key] = value
    return payload


def _log(stage: str, event: str, req: str, level: int = logging.INFO, **fields: object) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload = json.dumps(_build_payload(req, **fields), indent=2, sort_keys=True)
    message = f"[RP Server: {stage_label}]: {event_label}\n{payload}"
    LOGGER.log(level, message)


@dataclass(frozen=True)
class AuthenticationResult:
    verified: bool
    username: Optional[str] = None


@dataclass(frozen=True)
class RegistrationResult:
    verified: bool
    credential_id: str
    device_type: Optional[str]
    backed_up: bool


def _descriptor(credential_id: str, transports: Sequence[str]) -> PublicKeyCredentialDescriptor:
    return PublicKeyCredentialDescriptor(
        id=base64url_to_bytes(credential_id),
        transports=[AuthenticatorTransport(t) for t in clean_transports(transports)] or None,
    )


def _credential_id(credential: dict) -> str:
    value = credential.get("rawId") or credential.get("id")
    if not isinstance(value, str) or not value:
        return ""
    try:
        return bytes_to_base64url(base64url_to_bytes(value))
    except ValueError:
        return ""


class CeremonyCoordinator:
    """Issues single-use challenges and verifies the responses signed over them."""

    def __init__(
        self,
        settings: RPSettings,
        db: Database,
        challenges: ChallengeStore,
        verifier: Optional[CredentialVerifier] = None,
    ) -> None:
        self.settings = settings
        self.db = db
        self.challenges = challenges
        self.verifier = verifier or WebAuthnVerifier()

    # ------------------------------------------------------------------
    def _store_challenge(self, challenge: bytes, ceremony: str, username: Optional[str]) -> str:
        purged = self.challenges.purge_expired()
        if purged:
            LOGGER.debug("Purged %d expired challenges", purged)
        challenge_id = secrets.token_urlsafe(32)
        self.challenges.put(
            challenge_id,
            ChallengeRecord(
                challenge=bytes_to_base64url(challenge),
                ceremony=ceremony,
                username=username,
            ),
        )
        return challenge_id

    def _consume_challenge(self, challenge_id: str, ceremony: str) -> ChallengeRecord:
        record = self.challenges.take(challenge_id) if challenge_id else None
        if record is None or record.ceremony != ceremony:
            raise ChallengeNotFound(f"challenge {challenge_id!r} unknown, consumed or expired")
        return record

    # ------------------------------------------------------------------
    def issue_challenge(
        self,
        username: Optional[str] = None,
        *,
        user_verification: str = "preferred",
        timeout: Optional[int] = None,
    ) -> Tuple[Dict[str, object], str]:
        req_id = secrets.token_hex(4)
        try:
            requirement = UserVerificationRequirement(user_verification)
        except ValueError as exc:
            raise InvalidRequest(str(exc)) from exc
        allow: List[PublicKeyCredentialDescriptor] = []
        if username:
            with self.db.session() as session:
                user = get_user(session, username)
                if user:
                    allow = [_descriptor(p.id, p.transports) for p in list_passkeys(session, user)]
        options = generate_authentication_options(
            rp_id=self.settings.rp_id,
            allow_credentials=allow,
            user_verification=requirement,
            timeout=timeout or self.settings.default_timeout_ms,
        )
        challenge_id = self._store_challenge(options.challenge, AUTHENTICATION, username or None)
        _log(
            "authn",
            "options.success",
            req_id,
            user=username or "discoverable",
            allow_credentials=len(allow),
            user_verification=user_verification,
        )
        return json.loads(options_to_json(options)), challenge_id

    def verify_assertion(self, assertion: dict, challenge_id: str) -> AuthenticationResult:
        req_id = secrets.token_hex(4)
        credential_id = _credential_id(assertion)
        _log("authn", "verify.start", req_id, credential_id=credential_id or None)
        try:
            record = self._consume_challenge(challenge_id, AUTHENTICATION)
        except ChallengeNotFound:
            _log("authn", "verify.expired", req_id, level=logging.WARNING)
            raise

        with self.db.session() as session:
            passkey = find_passkey(session, credential_id)
            if passkey is None:
                _log(
                    "authn",
                    "verify.unknown_credential",
                    req_id,
                    credential_id=credential_id or None,
                    level=logging.WARNING,
                )
                raise CredentialNotFound(f"no passkey with id {credential_id!r}")
            username = passkey.user.username
            if record.username and record.username != username:
                _log(
                    "authn",
                    "verify.unknown_credential",
                    req_id,
                    credential_id=credential_id,
                    bound_user=record.username,
                    level=logging.WARNING,
                )
                raise CredentialNotFound(f"passkey {credential_id!r} not owned by {record.username!r}")
            public_key = passkey.public_key
            stored_count = passkey.sign_count

        try:
            result = self.verifier.verify_authentication(
                credential=assertion,
                expected_challenge=base64url_to_bytes(record.challenge),
                expected_origin=self.settings.expected_origins,
                expected_rp_id=self.settings.rp_id,
                public_key=public_key,
                current_sign_count=stored_count,
                require_user_verification=False,
            )
        except MalformedAssertion as exc:
            _log("authn", "verify.failed", req_id, reason=str(exc), level=logging.WARNING)
            raise VerificationFailed(str(exc)) from exc
        if not result.verified:
            _log("authn", "verify.failed", req_id, reason=result.reason, level=logging.WARNING)
            raise VerificationFailed(result.reason)

        try:
            passkey = record_sign_in(
                self.db, credential_id, result, retries=self.settings.counter_update_retries
            )
        except CounterRegression as exc:
            flag_clone_suspected(self.db, credential_id)
            _log(
                "authn",
                "verify.counter",
                req_id,
                credential_id=credential_id,
                stored=stored_count,
                reported=result.new_counter,
                level=logging.ERROR,
            )
            raise VerificationFailed(str(exc)) from exc

        _log(
            "authn",
            "verify.success",
            req_id,
            user=username,
            bound_user=record.username,
            credential_id=credential_id,
            sign_count=passkey.sign_count,
        )
        return AuthenticationResult(verified=True, username=username)

    # ------------------------------------------------------------------
    def issue_registration(
        self,
        username: str,
        *,
        user_verification: str = "preferred",
        resident_key: str = "preferred",
        authenticator_attachment: Optional[str] = None,
        timeout: Optional[int] = None,
        algorithms: Optional[Sequence[int]] = None,
    ) -> Tuple[Dict[str, object], str]:
        if not username:
            raise InvalidRequest("Username is required")
        req_id = secrets.token_hex(4)
        algorithms = list(algorithms or self.settings.supported_algorithms)
        with self.db.session() as session:
            user = ensure_user(session, username)
            exclude = [_descriptor(p.id, p.transports) for p in list_passkeys(session, user)]
            user_handle = user.user_handle
        try:
            selection = AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement(resident_key),
                user_verification=UserVerificationRequirement(user_verification),
                authenticator_attachment=(
                    AuthenticatorAttachment(authenticator_attachment)
                    if authenticator_attachment and authenticator_attachment != "any"
                    else None
                ),
            )
            supported = [COSEAlgorithmIdentifier(alg) for alg in algorithms]
        except ValueError as exc:
            raise InvalidRequest(str(exc)) from exc
        options = generate_registration_options(
            rp_id=self.settings.rp_id,
            rp_name=self.settings.rp_name,
            user_id=user_handle.encode("utf-8"),
            user_name=username,
            user_display_name=username,
            timeout=timeout or self.settings.default_timeout_ms,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=selection,
            exclude_credentials=exclude,
            supported_pub_key_algs=supported,
        )
        challenge_id = self._store_challenge(options.challenge, REGISTRATION, username)
        _log(
            "register",
            "options.success",
            req_id,
            user=username,
            user_handle=user_handle,
            credential_count=len(exclude),
            algorithms=algorithms,
        )
        return json.loads(options_to_json(options)), challenge_id

    def verify_registration(self, response: dict, challenge_id: str) -> RegistrationResult:
        req_id = secrets.token_hex(4)
        _log("register", "verify.start", req_id)
        try:
            record = self._consume_challenge(challenge_id, REGISTRATION)
        except ChallengeNotFound:
            _log("register", "verify.expired", req_id, level=logging.WARNING)
            raise
        try:
            registered = self.verifier.verify_registration(
                credential=response,
                expected_challenge=base64url_to_bytes(record.challenge),
                expected_origin=self.settings.expected_origins,
                expected_rp_id=self.settings.rp_id,
                supported_algorithms=self.settings.supported_algorithms,
            )
        except MalformedAssertion as exc:
            _log("register", "verify.failed", req_id, user=record.username, reason=str(exc),
                 level=logging.WARNING)
            raise RegistrationFailed(str(exc)) from exc

        transports = (response.get("response") or {}).get("transports") or []
        with self.db.session() as session:
            if find_passkey(session, registered.credential_id) is not None:
                _log("register", "verify.duplicate", req_id, user=record.username,
                     credential_id=registered.credential_id, level=logging.WARNING)
                raise RegistrationFailed("Passkey already registered")
            user = ensure_user(session, record.username or "")
            store_passkey(session, user, registered, transports)
        _log(
            "register",
            "verify.success",
            req_id,
            user=record.username,
            credential_id=registered.credential_id,
            device_type=registered.device_type,
            backed_up=registered.backed_up,
        )
        return RegistrationResult(
            verified=True,
            credential_id=registered.credential_id,
            device_type=registered.device_type,
            backed_up=registered.backed_up,
        )

    # ------------------------------------------------------------------
    def list_users(self) -> List[Dict[str, object]]:
        with self.db.session() as session:
            return summarize_users(session)
