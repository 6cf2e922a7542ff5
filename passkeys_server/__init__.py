"""Passkey relying-party server exposing the Flask app factory."""

from .app import create_app
from .ceremony import AuthenticationResult, CeremonyCoordinator
from .config import RPSettings

__all__ = ["create_app", "CeremonyCoordinator", "AuthenticationResult", "RPSettings"]
