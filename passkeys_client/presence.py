"""User presence checks run before the authenticator signs anything."""

from __future__ import annotations

import logging
from typing import Callable, Protocol

from .errors import UserCancelled

LOGGER = logging.getLogger(__name__)


class UserPresence(Protocol):
    def confirm(self, prompt: str) -> None:
        """Return when the user approves; raise ``UserCancelled`` otherwise."""
        ...


class AutoApprove:
    """Presence check that unconditionally succeeds (headless runs and tests)."""

    def confirm(self, prompt: str) -> None:
        LOGGER.info("Skipping user presence check: %s", prompt)


class ConsolePrompt:
    """Asks on the terminal, the way a platform chooser sheet would."""

    def __init__(self, ask: Callable[[str], str] = input) -> None:
        self.ask = ask

    def confirm(self, prompt: str) -> None:
        try:
            answer = self.ask(f"{prompt} (y/N): ")
        except EOFError as exc:
            raise UserCancelled("No answer from the console") from exc
        if answer.strip().lower() not in ("y", "yes"):
            raise UserCancelled("User declined")
