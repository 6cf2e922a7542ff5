"""Credential verification delegated to the py_webauthn library."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Union

from webauthn import verify_authentication_response, verify_registration_response
from webauthn.helpers import bytes_to_base64url
from webauthn.helpers.exceptions import (
    InvalidAuthenticationResponse,
    InvalidAuthenticatorDataStructure,
    InvalidCBORData,
    InvalidJSONStructure,
    InvalidRegistrationResponse,
)
from webauthn.helpers.structs import COSEAlgorithmIdentifier

from .errors import MalformedAssertion

LOGGER = logging.getLogger(__name__)

Origins = Union[str, List[str]]

# raised while decoding the credential rather than while checking it
STRUCTURE_ERRORS = (InvalidJSONStructure, InvalidAuthenticatorDataStructure, InvalidCBORData, ValueError)


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    new_counter: int = 0
    device_type: Optional[str] = None
    backed_up: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class RegisteredCredential:
    credential_id: str
    public_key: bytes
    sign_count: int
    device_type: Optional[str]
    backed_up: bool


class CredentialVerifier(Protocol):
    """Checks a ceremony response against the issued challenge and the RP.

    ``current_sign_count`` is informational. Counter monotonicity is enforced
    by ``services.record_sign_in`` after verification, so implementations
    should report the authenticator's counter without rejecting regressions.
    """

    def verify_authentication(
        self,
        *,
        credential: dict,
        expected_challenge: bytes,
        expected_origin: Origins,
        expected_rp_id: str,
        public_key: bytes,
        current_sign_count: int,
        require_user_verification: bool = False,
    ) -> VerificationResult:
        ...

    def verify_registration(
        self,
        *,
        credential: dict,
        expected_challenge: bytes,
        expected_origin: Origins,
        expected_rp_id: str,
        supported_algorithms: Sequence[int],
        require_user_verification: bool = False,
    ) -> RegisteredCredential:
        ...


def _enum_value(value: object) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


class WebAuthnVerifier:
    """Standards compliant verifier backed by ``webauthn.verify_*_response``."""

    def verify_authentication(
        self,
        *,
        credential: dict,
        expected_challenge: bytes,
        expected_origin: Origins,
        expected_rp_id: str,
        public_key: bytes,
        current_sign_count: int,
        require_user_verification: bool = False,
    ) -> VerificationResult:
        LOGGER.debug("Verifying assertion, stored sign count %d", current_sign_count)
        try:
            verified = verify_authentication_response(
                credential=credential,
                expected_challenge=expected_challenge,
                expected_rp_id=expected_rp_id,
                expected_origin=expected_origin,
                credential_public_key=public_key,
                # the counter is checked by record_sign_in so regressions can flag the passkey
                credential_current_sign_count=0,
                require_user_verification=require_user_verification,
            )
        except STRUCTURE_ERRORS as exc:
            raise MalformedAssertion(str(exc)) from exc
        except InvalidAuthenticationResponse as exc:
            LOGGER.debug("Assertion rejected by verifier: %s", exc)
            return VerificationResult(verified=False, reason=str(exc))
        return VerificationResult(
            verified=True,
            new_counter=int(verified.new_sign_count),
            device_type=_enum_value(verified.credential_device_type),
            backed_up=bool(verified.credential_backed_up),
        )

    def verify_registration(
        self,
        *,
        credential: dict,
        expected_challenge: bytes,
        expected_origin: Origins,
        expected_rp_id: str,
        supported_algorithms: Sequence[int],
        require_user_verification: bool = False,
    ) -> RegisteredCredential:
        try:
            verified = verify_registration_response(
                credential=credential,
                expected_challenge=expected_challenge,
                expected_rp_id=expected_rp_id,
                expected_origin=expected_origin,
                require_user_verification=require_user_verification,
                supported_pub_key_algs=[COSEAlgorithmIdentifier(alg) for alg in supported_algorithms],
            )
        except STRUCTURE_ERRORS as exc:
            raise MalformedAssertion(str(exc)) from exc
        except InvalidRegistrationResponse as exc:
            raise MalformedAssertion(str(exc)) from exc
        return RegisteredCredential(
            credential_id=bytes_to_base64url(verified.credential_id),
            public_key=verified.credential_public_key,
            sign_count=int(verified.sign_count),
            device_type=_enum_value(verified.credential_device_type),
            backed_up=bool(verified.credential_backed_up),
        )
