"""JSON file snapshot store with field-level encryption of personal data.

Every save rewrites the whole document (entries plus both counters). The file
is written to a temporary sibling first and then atomically swapped in, so a
crash mid-write leaves the previous snapshot intact.

Notes:
- Single-writer only: two processes sharing the file will overwrite each
  other's state.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from waitlist_api.adapters.storage.base import AbstractSnapshotStore, LedgerSnapshot
from waitlist_api.core.encryption import EncryptionCodec
from waitlist_api.core.errors import StorageAppError
from waitlist_api.schemas.waitlist import EMAIL_PATTERN, WaitlistEntry

logger = logging.getLogger(__name__)

# Snapshot keys (camelCase) of the fields encrypted at rest.
PII_FIELDS: tuple[str, ...] = ("email", "name")

_EMAIL_RE = re.compile(EMAIL_PATTERN)


class JsonFileSnapshotStore(AbstractSnapshotStore):
    """Snapshot store backed by a single JSON document on disk."""

    def __init__(self, path: str | Path, codec: EncryptionCodec) -> None:
        self.path = Path(path)
        self._codec = codec

    def load(self) -> LedgerSnapshot | None:
        """Read, decrypt and validate the snapshot file.

        Returns:
            The decoded snapshot, or None if the file does not exist.

        Raises:
            StorageAppError: If the file exists but is unreadable or malformed.
        """

        if not self.path.is_file():
            logger.info("waitlist.snapshot_missing", extra={"path": str(self.path)})
            return None

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
            entries = [self._decode_entry(raw) for raw in document.get("entries", [])]
            snapshot = LedgerSnapshot(
                entries=entries,
                position_counter=int(document.get("positionCounter") or 0),
                entry_id_counter=int(document.get("entryIdCounter") or 0),
            )
        except (OSError, ValueError, TypeError, KeyError, AttributeError, ValidationError) as exc:
            logger.error(
                "waitlist.snapshot_load_failed",
                extra={"path": str(self.path), "error_type": type(exc).__name__},
            )
            raise StorageAppError(
                code="snapshot_unreadable",
                message="Waitlist snapshot could not be read",
                details={"path": str(self.path)},
            ) from exc

        logger.info(
            "waitlist.snapshot_loaded",
            extra={"path": str(self.path), "count": len(snapshot.entries)},
        )
        return snapshot

    def save(self, snapshot: LedgerSnapshot) -> None:
        """Encrypt personal fields and atomically rewrite the snapshot file.

        Raises:
            EncryptionAppError: If a personal field cannot be protected; the
                file is left untouched.
            StorageAppError: If the file cannot be written.
        """

        document = {
            "entries": [self._encode_entry(entry) for entry in snapshot.entries],
            "positionCounter": snapshot.position_counter,
            "entryIdCounter": snapshot.entry_id_counter,
        }
        payload = json.dumps(document, indent=2, ensure_ascii=False)

        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.error(
                "waitlist.snapshot_write_failed",
                extra={"path": str(self.path), "error_type": type(exc).__name__},
            )
            raise StorageAppError(
                code="snapshot_write_failed",
                message="Waitlist snapshot could not be written",
                details={"path": str(self.path)},
            ) from exc

        logger.debug(
            "waitlist.snapshot_saved",
            extra={"path": str(self.path), "count": len(snapshot.entries)},
        )

    def _encode_entry(self, entry: WaitlistEntry) -> dict[str, Any]:
        raw = entry.model_dump(mode="json", by_alias=True, exclude_none=True)
        return self._codec.encrypt_fields(raw, PII_FIELDS, strict=True)

    def _decode_entry(self, raw: dict[str, Any]) -> WaitlistEntry:
        """Decrypt personal fields of one stored entry.

        An entry whose personal fields cannot be recovered (wrong or missing
        key) aborts the whole load, leaving the stored ciphertext untouched.

        Raises:
            StorageAppError: If a personal field cannot be decrypted.
        """

        decoded = dict(raw)
        for field in PII_FIELDS:
            value = raw.get(field)
            if not isinstance(value, str) or not value:
                continue
            plaintext = self._codec.decrypt(value)
            if plaintext is None:
                raise self._undecryptable(field)
            decoded[field] = plaintext

        email = decoded.get("email")
        if isinstance(email, str):
            email = email.strip()
            # Without a key, ciphertext passes through decrypt unchanged.
            if not _EMAIL_RE.match(email):
                raise self._undecryptable("email")
            decoded["email"] = email.lower()

        return WaitlistEntry.model_validate(decoded)

    def _undecryptable(self, field: str) -> StorageAppError:
        logger.error(
            "waitlist.snapshot_decrypt_failed",
            extra={"path": str(self.path), "field": field, "encryption_enabled": self._codec.is_enabled},
        )
        return StorageAppError(
            code="snapshot_undecryptable",
            message="Waitlist snapshot could not be decrypted with the configured key",
            details={"path": str(self.path), "field": field, "hint": "Check ENCRYPTION_KEY"},
        )
