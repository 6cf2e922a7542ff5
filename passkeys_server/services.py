"""Persistence helpers for users and their passkeys."""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError
from webauthn.helpers.structs import AuthenticatorTransport

from .database import Database
from .errors import VerificationFailed
from .models import Passkey, User
from .verifier import RegisteredCredential, VerificationResult

LOGGER = logging.getLogger(__name__)

ALPHABET = string.ascii_letters + string.digits
KNOWN_TRANSPORTS = {transport.value for transport in AuthenticatorTransport}


def _generate_user_handle(length: int = 21) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def ensure_user(session: Session, username: str) -> User:
    user = get_user(session, username)
    if user:
        return user
    handle = _generate_user_handle()
    while session.scalar(select(User).where(User.user_handle == handle)):
        handle = _generate_user_handle()
    user = User(username=username, user_handle=handle)
    session.add(user)
    session.flush()
    return user


def get_user(session: Session, username: str) -> User | None:
    return session.scalar(select(User).where(User.username == username))


def list_passkeys(session: Session, user: User) -> List[Passkey]:
    return list(
        session.scalars(
            select(Passkey).where(Passkey.user_id == user.id).order_by(Passkey.created_at)
        )
    )


def find_passkey(session: Session, credential_id: str) -> Passkey | None:
    if not credential_id:
        return None
    return session.get(Passkey, credential_id)


def clean_transports(transports: Optional[Iterable[str]]) -> List[str]:
    return [t for t in (transports or []) if isinstance(t, str) and t in KNOWN_TRANSPORTS]


def store_passkey(
    session: Session,
    user: User,
    registered: RegisteredCredential,
    transports: Optional[Iterable[str]] = None,
) -> Passkey:
    passkey = Passkey(
        id=registered.credential_id,
        user_id=user.id,
        public_key=registered.public_key,
        sign_count=registered.sign_count,
        transports=clean_transports(transports),
        device_type=registered.device_type,
        backed_up=registered.backed_up,
    )
    session.add(passkey)
    session.flush()
    return passkey


def counter_advanced(stored: int, reported: int) -> bool:
    """Return True when ``reported`` is an acceptable successor of ``stored``.

    Authenticators that do not implement a signature counter always report
    zero; only once either side is non-zero must the counter strictly grow.
    """
    if reported == 0 and stored == 0:
        return True
    return reported > stored


class CounterRegression(VerificationFailed):
    """The reported signature counter did not grow past the stored value."""


def record_sign_in(
    db: Database,
    credential_id: str,
    result: VerificationResult,
    retries: int = 3,
) -> Passkey:
    """Persist the verifier's counter with an optimistic read-modify-write.

    The version column on ``Passkey`` turns a concurrent update into a
    ``StaleDataError``; the loop then re-reads the row and re-checks the
    counter against the fresh value.
    """
    for attempt in range(1, retries + 1):
        try:
            with db.session() as session:
                passkey = session.get(Passkey, credential_id)
                if passkey is None:
                    raise VerificationFailed(f"Passkey {credential_id} disappeared")
                if not counter_advanced(passkey.sign_count, result.new_counter):
                    raise CounterRegression(
                        f"sign count {result.new_counter} not greater than {passkey.sign_count}"
                    )
                passkey.sign_count = result.new_counter
                passkey.last_used_at = datetime.now(timezone.utc)
                if result.device_type:
                    passkey.device_type = result.device_type
                passkey.backed_up = result.backed_up
                return passkey
        except StaleDataError:
            LOGGER.warning(
                "Concurrent counter update on %s, retrying (%d/%d)", credential_id, attempt, retries
            )
    raise VerificationFailed(f"Could not update sign count for {credential_id}")


def flag_clone_suspected(db: Database, credential_id: str) -> None:
    for _ in range(2):
        try:
            with db.session() as session:
                passkey = session.get(Passkey, credential_id)
                if passkey is not None:
                    passkey.clone_suspected = True
                return
        except StaleDataError:
            continue


def summarize_users(session: Session) -> List[Dict[str, object]]:
    users = session.scalars(
        select(User).options(selectinload(User.passkeys)).order_by(User.username)
    )
    summary: List[Dict[str, object]] = []
    for user in users:
        summary.append(
            {
                "username": user.username,
                "passkeysCount": len(user.passkeys),
                "passkeys": [
                    {
                        "id": passkey.id[:20] + "...",
                        "deviceType": passkey.device_type,
                        "backedUp": passkey.backed_up,
                        "cloneSuspected": passkey.clone_suspected,
                        "createdAt": passkey.created_at.isoformat() if passkey.created_at else None,
                    }
                    for passkey in user.passkeys
                ],
            }
        )
    return summary
