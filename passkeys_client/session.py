"""Arbitration between the automatic and manual credential attempts of one sign-in."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

LOGGER = logging.getLogger(__name__)


class Channel(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


@dataclass(frozen=True)
class Attempt:
    channel: Channel
    token: int


@dataclass(frozen=True)
class Outcome:
    username: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.username is not None

    @classmethod
    def success(cls, username: str) -> "Outcome":
        return cls(username=username)

    @classmethod
    def failure(cls, error: BaseException) -> "Outcome":
        return cls(error=error)


class CeremonySession:
    """Single-assignment result slot shared by every attempt of one sign-in.

    At most one attempt per channel is outstanding. A manual attempt takes
    ownership of the UI when it starts; an automatic attempt only owns it when
    nothing else does. The first successful outcome from any live attempt wins
    and invalidates the others. A failure is applied only when it comes from
    the current owner; every other settle call is a no-op.
    """

    def __init__(self) -> None:
        self._tokens = itertools.count(1)
        self._pending: Dict[Channel, Attempt] = {}
        self._owner: Optional[Attempt] = None
        self.result: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.result is not None

    @property
    def owner(self) -> Optional[Attempt]:
        return self._owner

    def pending(self, channel: Channel) -> bool:
        return channel in self._pending

    def is_live(self, attempt: Attempt) -> bool:
        return not self.completed and self._pending.get(attempt.channel) == attempt

    def begin(self, channel: Channel) -> Optional[Attempt]:
        if self.completed:
            LOGGER.debug("Refusing %s attempt: session already signed in", channel.value)
            return None
        if channel in self._pending:
            LOGGER.debug("Refusing %s attempt: one is already outstanding", channel.value)
            return None
        attempt = Attempt(channel, next(self._tokens))
        self._pending[channel] = attempt
        if channel is Channel.MANUAL or self._owner is None:
            self._owner = attempt
        return attempt

    def settle(self, attempt: Attempt, outcome: Outcome) -> bool:
        """Record ``outcome``; return True when it should be shown to the user."""
        if not self.is_live(attempt):
            LOGGER.debug("Dropping outcome of stale %s attempt %s", attempt.channel.value, attempt.token)
            return False
        del self._pending[attempt.channel]
        if outcome.succeeded:
            self.result = outcome.username
            self._pending.clear()
            self._owner = None
            return True
        if self._owner != attempt:
            return False
        self._owner = None
        return True
