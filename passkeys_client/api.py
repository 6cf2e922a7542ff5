"""HTTP client for the RP server endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .config import ClientSettings
from .errors import ServerRejected, TransportError

LOGGER = logging.getLogger(__name__)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return resp.reason_phrase


class ApiClient:
    """Stateless request executor; every call opens its own ``httpx.AsyncClient``."""

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.transport = transport

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        async with httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=self.settings.request_timeout,
            transport=self.transport,
        ) as client:
            try:
                resp = await client.request(method, path, json=payload)
            except httpx.HTTPError as exc:
                LOGGER.warning("Request to %s failed: %s", path, exc)
                raise TransportError(f"Could not reach the server: {exc}") from exc
        if resp.status_code >= 400:
            message = _error_message(resp)
            LOGGER.info("Server rejected %s with %s: %s", path, resp.status_code, message)
            raise ServerRejected(resp.status_code, message)
        try:
            return resp.json()
        except ValueError as exc:
            raise TransportError(f"Malformed response from {path}") from exc

    async def _options(self, path: str, payload: Dict[str, Any]) -> Tuple[Dict[str, Any], str]:
        data = await self._request("POST", path, payload)
        options = dict(data)
        challenge_id = options.pop("challengeId", None)
        if not challenge_id:
            raise TransportError(f"{path} returned no challengeId")
        return options, challenge_id

    async def generate_authentication_options(
        self,
        username: Optional[str] = None,
        *,
        user_verification: str = "preferred",
        timeout: int = 60_000,
    ) -> Tuple[Dict[str, Any], str]:
        payload: Dict[str, Any] = {"userVerification": user_verification, "timeout": timeout}
        if username:
            payload["username"] = username
        return await self._options("/api/generate-authentication-options", payload)

    async def verify_authentication(self, response: Dict[str, Any], challenge_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/api/verify-authentication",
            {"response": response, "challengeId": challenge_id},
        )

    async def generate_registration_options(
        self,
        username: str,
        *,
        user_verification: str = "preferred",
        resident_key: str = "preferred",
        authenticator_attachment: Optional[str] = None,
        timeout: int = 60_000,
        algorithms: Optional[List[int]] = None,
    ) -> Tuple[Dict[str, Any], str]:
        payload: Dict[str, Any] = {
            "username": username,
            "userVerification": user_verification,
            "residentKey": resident_key,
            "timeout": timeout,
        }
        if authenticator_attachment:
            payload["authenticatorAttachment"] = authenticator_attachment
        if algorithms:
            payload["supportedAlgorithmIDs"] = algorithms
        return await self._options("/api/generate-registration-options", payload)

    async def verify_registration(self, response: Dict[str, Any], challenge_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/api/verify-registration",
            {"response": response, "challengeId": challenge_id},
        )

    async def list_users(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/users")
