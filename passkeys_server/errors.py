"""Ceremony errors raised by the coordinator and mapped to HTTP responses by the app."""

from __future__ import annotations


class CeremonyError(Exception):
    """Base class for failures of a registration or authentication ceremony."""

    status_code = 400
    public_message = "Request failed"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.public_message)
        self.detail = detail or self.public_message


class InvalidRequest(CeremonyError):
    public_message = "Invalid request"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail)
        # request validation messages are safe to show to the caller
        self.public_message = self.detail


class ChallengeNotFound(CeremonyError):
    """The challenge id was never issued, was already consumed, or has expired."""

    public_message = "No challenge found. Please start sign-in again."


class CredentialNotFound(CeremonyError):
    public_message = "Authentication failed"


class VerificationFailed(CeremonyError):
    public_message = "Authentication failed"


class RegistrationFailed(CeremonyError):
    public_message = "Registration failed"


class MalformedAssertion(ValueError):
    """Raised by a credential verifier for structurally invalid input."""
