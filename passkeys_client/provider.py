"""Async credential providers the orchestrators obtain assertions from."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, Literal, Optional, Protocol

from .authenticator import SoftwareAuthenticator
from .errors import CredentialProviderError, PasskeyClientError

LOGGER = logging.getLogger(__name__)

Mediation = Literal["required", "optional", "conditional"]


class CredentialProvider(Protocol):
    async def get_assertion(self, options: Dict[str, Any], mediation: Mediation = "required") -> Dict[str, Any]:
        """Return a signed assertion for ``options``.

        Raises ``NoCredentialAvailable`` when nothing matches, ``UserCancelled``
        when the user dismisses the prompt and ``CredentialProviderError`` for
        anything else.
        """
        ...


class LocalCredentialProvider:
    """Runs the software authenticator in the default executor.

    Authenticator errors outside the client hierarchy, such as a keyring
    backend failure, surface as ``CredentialProviderError``.
    """

    def __init__(self, authenticator: SoftwareAuthenticator, origin: Optional[str] = None) -> None:
        self.authenticator = authenticator
        self.origin = origin

    async def _run(self, func: Callable[..., Dict[str, Any]], options: Dict[str, Any]) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        call = functools.partial(func, options, self.origin)
        try:
            return await loop.run_in_executor(None, call)
        except PasskeyClientError:
            raise
        except Exception as exc:
            LOGGER.exception("Local authenticator failed")
            raise CredentialProviderError(f"Local authenticator failed: {exc}") from exc

    async def get_assertion(self, options: Dict[str, Any], mediation: Mediation = "required") -> Dict[str, Any]:
        LOGGER.debug("Requesting assertion with %s mediation", mediation)
        return await self._run(self.authenticator.get_assertion, options)

    async def create_credential(self, options: Dict[str, Any]) -> Dict[str, Any]:
        return await self._run(self.authenticator.make_credential, options)


class CredentialCreator(Protocol):
    async def create_credential(self, options: Dict[str, Any]) -> Dict[str, Any]:
        ...
