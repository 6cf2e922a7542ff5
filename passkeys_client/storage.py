"""Credential storage: secrets in the OS keyring, lookups through a JSON index."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import keyring

from .config import ClientSettings
from .errors import CredentialStoreError
from .models import CredentialRecord

LOGGER = logging.getLogger(__name__)

IndexEntry = Dict[str, object]


class CredentialIndex:
    """Non-secret metadata per credential, with a use sequence for recency.

    The keyring cannot enumerate entries, so every lookup by RP starts here.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        entries = self._read()
        self._sequence = max(
            (entry["last_used"] for entry in entries.values() if isinstance(entry.get("last_used"), int)),
            default=0,
        )

    def _read(self) -> Dict[str, IndexEntry]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text())
        except json.JSONDecodeError as exc:
            raise CredentialStoreError(f"Credential index {self.path} is corrupt") from exc

    def _write(self, entries: Dict[str, IndexEntry]) -> None:
        self.path.write_text(json.dumps(entries, indent=2))

    def entries(self) -> Dict[str, IndexEntry]:
        with self._lock:
            return {cred_id: dict(entry) for cred_id, entry in self._read().items()}

    def touch(self, record: CredentialRecord) -> None:
        with self._lock:
            entries = self._read()
            self._sequence += 1
            entries[record.credential_id] = {
                "user_handle": record.user_handle,
                "user_name": record.user_name,
                "rp_id": record.rp_id,
                "sign_count": record.sign_count,
                "last_used": self._sequence,
            }
            self._write(entries)

    def remove(self, credential_id: str) -> None:
        with self._lock:
            entries = self._read()
            if entries.pop(credential_id, None) is not None:
                self._write(entries)

    def for_rp(self, rp_id: str) -> List[str]:
        """Credential ids registered for ``rp_id``, most recently used first."""
        matching = [(cred_id, entry) for cred_id, entry in self.entries().items() if entry.get("rp_id") == rp_id]
        matching.sort(key=lambda item: item[1].get("last_used", 0), reverse=True)
        return [cred_id for cred_id, _ in matching]


class CredentialStore:
    def __init__(self, settings: ClientSettings):
        self.service = settings.keyring_service
        self.index = CredentialIndex(Path(settings.credential_index_path).expanduser())

    def save(self, record: CredentialRecord) -> CredentialRecord:
        keyring.set_password(self.service, record.credential_id, record.model_dump_json())
        self.index.touch(record)
        return record

    def delete(self, credential_id: str) -> None:
        keyring.delete_password(self.service, credential_id)
        self.index.remove(credential_id)

    def load(self, credential_id: str) -> CredentialRecord:
        secret = keyring.get_password(self.service, credential_id)
        if secret is None:
            raise CredentialStoreError(f"Credential {credential_id} not found")
        return CredentialRecord.model_validate_json(secret)

    def list_all(self) -> List[CredentialRecord]:
        return [self.load(cred_id) for cred_id in self.index.entries()]

    def select(self, rp_id: str, allow_credentials: Iterable[str] = ()) -> Optional[CredentialRecord]:
        """Pick the credential to assert with.

        An empty allow list means a discoverable request: any credential for
        the RP qualifies. Otherwise only listed ids that belong to the RP do.
        """
        allowed = set(allow_credentials)
        for cred_id in self.index.for_rp(rp_id):
            if allowed and cred_id not in allowed:
                continue
            try:
                return self.load(cred_id)
            except CredentialStoreError:
                LOGGER.warning("Index lists %s but the keyring has no secret for it", cred_id)
        return None

    def contains(self, rp_id: str, credential_ids: Iterable[str]) -> bool:
        registered = set(self.index.for_rp(rp_id))
        return any(cred_id in registered for cred_id in credential_ids)

    def list_metadata(self) -> Dict[str, IndexEntry]:
        return self.index.entries()
