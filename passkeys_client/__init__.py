"""Client side of the passkey sign-in ceremony."""

from .api import ApiClient
from .authenticator import SoftwareAuthenticator
from .bridge import BrowserBridge, BrowserCredentialProvider
from .config import ClientSettings
from .orchestrator import (
    AutofillSignInOrchestrator,
    AutoSignInOrchestrator,
    BrowserSignInOrchestrator,
    Phase,
    SignInState,
)
from .provider import CredentialProvider, LocalCredentialProvider
from .repository import AuthRepository
from .session import CeremonySession
from .storage import CredentialStore

__all__ = [
    "ApiClient",
    "AuthRepository",
    "AutoSignInOrchestrator",
    "AutofillSignInOrchestrator",
    "BrowserBridge",
    "BrowserCredentialProvider",
    "BrowserSignInOrchestrator",
    "CeremonySession",
    "ClientSettings",
    "CredentialProvider",
    "CredentialStore",
    "LocalCredentialProvider",
    "Phase",
    "SignInState",
    "SoftwareAuthenticator",
]
