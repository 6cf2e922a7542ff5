"""Sign-in surfaces driving the two-step ceremony against the RP server."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import NoCredentialAvailable, PasskeyClientError, UserCancelled
from .provider import CredentialProvider
from .repository import AuthRepository, Registration
from .session import Attempt, CeremonySession, Channel, Outcome

LOGGER = logging.getLogger(__name__)

NO_PASSKEY_NOTICE = "No passkey found on this device. Check the username or register a passkey first."


class Phase(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    PREFETCHING = "prefetching"
    MANUAL_ENTRY = "manual_entry"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class SignInState:
    phase: Phase = Phase.IDLE
    username: Optional[str] = None
    error: Optional[str] = None
    notice: Optional[str] = None


Listener = Callable[[SignInState], None]


class SignInOrchestrator:
    """Manual sign-in shared by every surface, plus observable state."""

    def __init__(
        self,
        repository: AuthRepository,
        provider: CredentialProvider,
        *,
        user_verification: str = "preferred",
        timeout: int = 60_000,
    ) -> None:
        self.repository = repository
        self.provider = provider
        self.user_verification = user_verification
        self.timeout = timeout
        self.session = CeremonySession()
        self._state = SignInState()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> SignInState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, phase: Phase, **fields: Any) -> None:
        self._state = SignInState(phase=phase, **fields)
        LOGGER.debug("Sign-in state -> %s", phase.value)
        for listener in list(self._listeners):
            listener(self._state)

    def _manual_options(self) -> Dict[str, Any]:
        return {"user_verification": self.user_verification, "timeout": self.timeout}

    def _present(self, attempt: Attempt, outcome: Outcome, *, notify_missing: bool = True) -> None:
        if not self.session.settle(attempt, outcome):
            return
        if outcome.succeeded:
            LOGGER.info("Signed in as %s via %s attempt", outcome.username, attempt.channel.value)
            self._set_state(Phase.SUCCESS, username=outcome.username)
            return
        error = outcome.error
        if isinstance(error, UserCancelled):
            self._set_state(Phase.MANUAL_ENTRY)
        elif isinstance(error, NoCredentialAvailable):
            self._set_state(Phase.MANUAL_ENTRY, notice=NO_PASSKEY_NOTICE if notify_missing else None)
        else:
            LOGGER.warning("%s sign-in failed: %s", attempt.channel.value.title(), error)
            self._set_state(Phase.ERROR, error=str(error) or "Sign-in failed")

    async def sign_in(self, username: str = "") -> SignInState:
        attempt = self.session.begin(Channel.MANUAL)
        if attempt is None:
            return self._state
        name = username.strip() or None
        self._set_state(Phase.LOADING, username=name)
        try:
            signed_in = await self.repository.sign_in(name, self.provider, "required", **self._manual_options())
        except PasskeyClientError as exc:
            outcome = Outcome.failure(exc)
        except Exception as exc:
            LOGGER.exception("Sign-in attempt failed unexpectedly")
            outcome = Outcome.failure(exc)
        else:
            outcome = Outcome.success(signed_in)
        self._present(attempt, outcome)
        return self._state

    def on_username_edited(self) -> None:
        if self._state.phase is Phase.ERROR:
            self._set_state(Phase.MANUAL_ENTRY)


class AutoSignInOrchestrator(SignInOrchestrator):
    """Tries an automatic sign-in on start and falls back to manual entry."""

    async def start(self) -> SignInState:
        attempt = self.session.begin(Channel.AUTOMATIC)
        if attempt is None:
            return self._state
        self._set_state(Phase.CHECKING)
        try:
            signed_in = await self.repository.sign_in(None, self.provider, "optional")
        except PasskeyClientError as exc:
            outcome = Outcome.failure(exc)
        except Exception as exc:
            LOGGER.exception("Sign-in attempt failed unexpectedly")
            outcome = Outcome.failure(exc)
        else:
            outcome = Outcome.success(signed_in)
        self._present(attempt, outcome, notify_missing=False)
        return self._state


class AutofillSignInOrchestrator(SignInOrchestrator):
    """Keeps a conditional request armed while the username field is shown."""

    def __init__(self, repository: AuthRepository, provider: CredentialProvider, **kwargs: Any) -> None:
        super().__init__(repository, provider, **kwargs)
        self._prefetched: Optional[Tuple[Dict[str, Any], str]] = None
        self.conditional: Optional[asyncio.Task] = None

    async def start(self) -> SignInState:
        self._set_state(Phase.PREFETCHING)
        try:
            self._prefetched = await self.repository.generate_options(None)
        except PasskeyClientError as exc:
            LOGGER.info("Autofill prefetch failed, manual sign-in only: %s", exc)
        self._set_state(Phase.MANUAL_ENTRY)
        if self._prefetched is not None:
            self._arm()
        return self._state

    def _arm(self) -> None:
        if self.session.completed or self.session.pending(Channel.AUTOMATIC):
            return
        attempt = self.session.begin(Channel.AUTOMATIC)
        if attempt is None:
            return
        self.conditional = asyncio.get_running_loop().create_task(self._run_conditional(attempt))

    async def _run_conditional(self, attempt: Attempt) -> None:
        if self._prefetched is None:
            try:
                self._prefetched = await self.repository.generate_options(None)
            except PasskeyClientError as exc:
                LOGGER.info("Could not re-arm autofill: %s", exc)
                self.session.settle(attempt, Outcome.failure(exc))
                return
            except Exception as exc:
                LOGGER.exception("Could not re-arm autofill")
                self.session.settle(attempt, Outcome.failure(exc))
                return
        options, challenge_id = self._prefetched
        try:
            assertion = await self.provider.get_assertion(options, "conditional")
            # the challenge is consumed by the verify call whatever it returns
            self._prefetched = None
            if self.session.is_live(attempt) and not self.session.pending(Channel.MANUAL):
                self._set_state(Phase.LOADING)
            signed_in = await self.repository.verify_response(assertion, challenge_id)
        except PasskeyClientError as exc:
            outcome = Outcome.failure(exc)
        except Exception as exc:
            LOGGER.exception("Sign-in attempt failed unexpectedly")
            outcome = Outcome.failure(exc)
        else:
            outcome = Outcome.success(signed_in)
        self._present(attempt, outcome, notify_missing=False)

    def on_username_edited(self) -> None:
        super().on_username_edited()
        self._arm()

    async def close(self) -> None:
        task = self.conditional
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


class BrowserSignInOrchestrator(AutofillSignInOrchestrator):
    """Autofill surface whose manual path honours the page's form options."""

    def update_form(self, *, user_verification: Optional[str] = None, timeout: Optional[int] = None) -> None:
        if user_verification is not None:
            self.user_verification = user_verification
        if timeout is not None:
            self.timeout = timeout

    async def register(self, username: str) -> Registration:
        name = username.strip()
        if not name:
            raise ValueError("Username is required")
        return await self.repository.register(name, self.provider)
