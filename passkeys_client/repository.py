"""Sign-in and registration flows composed from the API client and a provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .api import ApiClient
from .errors import AuthenticationFailed
from .provider import CredentialCreator, CredentialProvider, Mediation

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Registration:
    credential_id: str
    device_type: Optional[str]
    backed_up: bool


class AuthRepository:
    def __init__(self, api: ApiClient) -> None:
        self.api = api

    async def generate_options(
        self,
        username: Optional[str] = None,
        *,
        user_verification: str = "preferred",
        timeout: int = 60_000,
    ) -> Tuple[Dict[str, Any], str]:
        """Fetch a fresh challenge; a blank username yields an unbound one."""
        username = (username or "").strip() or None
        return await self.api.generate_authentication_options(
            username, user_verification=user_verification, timeout=timeout
        )

    async def verify_response(self, assertion: Dict[str, Any], challenge_id: str) -> str:
        result = await self.api.verify_authentication(assertion, challenge_id)
        username = result.get("username")
        if not result.get("verified") or not username:
            raise AuthenticationFailed("Authentication failed")
        return username

    async def sign_in(
        self,
        username: Optional[str],
        provider: CredentialProvider,
        mediation: Mediation = "required",
        *,
        user_verification: str = "preferred",
        timeout: int = 60_000,
    ) -> str:
        options, challenge_id = await self.generate_options(
            username, user_verification=user_verification, timeout=timeout
        )
        assertion = await provider.get_assertion(options, mediation)
        return await self.verify_response(assertion, challenge_id)

    async def register(self, username: str, provider: CredentialCreator) -> Registration:
        options, challenge_id = await self.api.generate_registration_options(username)
        credential = await provider.create_credential(options)
        result = await self.api.verify_registration(credential, challenge_id)
        info = result.get("registrationInfo") or {}
        if not result.get("verified") or not info.get("credentialID"):
            raise AuthenticationFailed("Registration failed")
        LOGGER.info("Registered passkey for %s", username)
        return Registration(
            credential_id=info["credentialID"],
            device_type=info.get("credentialDeviceType"),
            backed_up=bool(info.get("credentialBackedUp")),
        )
