"""Flask application exposing RP endpoints."""

from __future__ import annotations

import logging
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from .ceremony import CeremonyCoordinator
from .challenges import ChallengeStore, DatabaseChallengeStore, MemoryChallengeStore
from .config import RPSettings
from .database import Database
from .errors import (
    CeremonyError,
    ChallengeNotFound,
    CredentialNotFound,
    InvalidRequest,
    RegistrationFailed,
    VerificationFailed,
)
from .schemas import (
    AuthenticationOptionsRequest,
    AuthenticationVerifyResponse,
    ErrorResponse,
    RegistrationInfo,
    RegistrationOptionsRequest,
    RegistrationVerifyResponse,
    VerifyRequest,
)
from .verifier import CredentialVerifier

LOGGER = logging.getLogger(__name__)


def _error(message: str, status: int):
    return jsonify(ErrorResponse(error=message).model_dump()), status


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        if request.get_data(cache=True):
            raise InvalidRequest("Request body must be valid JSON")
        return {}
    if not isinstance(payload, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return payload


def build_challenge_store(settings: RPSettings, db: Database) -> ChallengeStore:
    if settings.challenge_backend == "memory":
        return MemoryChallengeStore(settings.challenge_ttl_seconds)
    return DatabaseChallengeStore(db, settings.challenge_ttl_seconds)


def create_app(
    settings: RPSettings | None = None,
    verifier: Optional[CredentialVerifier] = None,
) -> Flask:
    settings = settings or RPSettings()
    db = Database(settings)
    db.create_all()
    coordinator = CeremonyCoordinator(settings, db, build_challenge_store(settings, db), verifier)

    app = Flask(__name__)
    app.extensions["passkeys"] = coordinator
    CORS(app)

    @app.post("/api/generate-authentication-options")
    def generate_authentication_options():
        payload = AuthenticationOptionsRequest.model_validate(_json_body())
        options, challenge_id = coordinator.issue_challenge(
            payload.username,
            user_verification=payload.userVerification,
            timeout=payload.timeout,
        )
        return jsonify({**options, "challengeId": challenge_id})

    @app.post("/api/verify-authentication")
    def verify_authentication():
        payload = VerifyRequest.model_validate(_json_body())
        try:
            result = coordinator.verify_assertion(payload.response, payload.challengeId)
        except (CredentialNotFound, VerificationFailed):
            # which check failed stays in the server log
            return jsonify(AuthenticationVerifyResponse(verified=False).model_dump(exclude_none=True))
        return jsonify(
            AuthenticationVerifyResponse(verified=True, username=result.username).model_dump()
        )

    @app.post("/api/generate-registration-options")
    def generate_registration_options():
        payload = RegistrationOptionsRequest.model_validate(_json_body())
        if not payload.username:
            raise InvalidRequest("Username is required")
        options, challenge_id = coordinator.issue_registration(
            payload.username,
            user_verification=payload.userVerification,
            resident_key=payload.residentKey,
            authenticator_attachment=payload.authenticatorAttachment,
            timeout=payload.timeout,
            algorithms=payload.supportedAlgorithmIDs,
        )
        return jsonify({**options, "challengeId": challenge_id})

    @app.post("/api/verify-registration")
    def verify_registration():
        payload = VerifyRequest.model_validate(_json_body())
        try:
            result = coordinator.verify_registration(payload.response, payload.challengeId)
        except RegistrationFailed:
            return jsonify(RegistrationVerifyResponse(verified=False).model_dump(exclude_none=True))
        info = RegistrationInfo(
            credentialID=result.credential_id,
            credentialDeviceType=result.device_type,
            credentialBackedUp=result.backed_up,
        )
        return jsonify(RegistrationVerifyResponse(verified=True, registrationInfo=info).model_dump())

    @app.get("/api/users")
    def users():
        return jsonify(coordinator.list_users())

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        fields = sorted({".".join(str(part) for part in err["loc"]) for err in error.errors()})
        LOGGER.warning("Rejected request to %s: invalid %s", request.path, ", ".join(fields))
        if "challengeId" in fields:
            return _error("challengeId is required", 400)
        return _error(f"Invalid request: {', '.join(fields)}", 400)

    @app.errorhandler(ChallengeNotFound)
    def handle_missing_challenge(error: ChallengeNotFound):
        return _error(error.public_message, error.status_code)

    @app.errorhandler(CeremonyError)
    def handle_ceremony_error(error: CeremonyError):
        LOGGER.warning("Ceremony error on %s: %s", request.path, error.detail)
        return _error(error.public_message, error.status_code)

    @app.errorhandler(400)
    def handle_bad_request(error):
        message = getattr(error, "description", "Bad Request")
        return _error(message, 400)

    @app.errorhandler(500)
    def handle_server_error(error):
        LOGGER.error("Unhandled error on %s: %s", request.path, getattr(error, "original_exception", error))
        return _error("Internal server error", 500)

    return app
