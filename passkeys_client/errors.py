"""Errors raised by the client side of the ceremony."""

from __future__ import annotations


class PasskeyClientError(RuntimeError):
    pass


class TransportError(PasskeyClientError):
    """The RP server could not be reached; the attempt may be retried."""


class ServerRejected(PasskeyClientError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class AuthenticationFailed(PasskeyClientError):
    pass


class CredentialStoreError(PasskeyClientError):
    pass


class CredentialProviderError(PasskeyClientError):
    """The local credential ceremony failed."""


class NoCredentialAvailable(CredentialProviderError):
    """No passkey for this RP is present on the device. Not an error for the UI."""


class UserCancelled(CredentialProviderError):
    """The user dismissed the credential chooser. Not an error for the UI."""
