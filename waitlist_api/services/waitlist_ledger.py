"""Authoritative in-memory waitlist ledger backed by a snapshot store.

The ledger owns every entry (keyed by normalized email), two secondary indexes
(referral code, entry id) and two monotonic counters (position, entry id
sequence). Every mutation rewrites the full snapshot through the injected
store.

Concurrency model:
- One ledger per process. Mutations run to completion without yielding, so
  callers on a single event loop never interleave and no lock is taken.
- Running several processes, each with its own ledger and snapshot file,
  breaks email uniqueness and position ordering across instances.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from waitlist_api.adapters.storage.base import AbstractSnapshotStore, LedgerSnapshot
from waitlist_api.core.errors import AppError, DuplicateEntryError, ValidationAppError
from waitlist_api.core.logging import hash_identifier
from waitlist_api.schemas.waitlist import EntryUpdate, WaitlistEntry
from waitlist_api.services.referral_service import calculate_new_position

logger = logging.getLogger(__name__)

DEFAULT_POSITION_BASELINE = 847
_NULLABLE_FIELDS = frozenset({"name", "external_subscriber_id"})


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_referral_code(code: str) -> str:
    return code.strip().upper()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WaitlistLedger:
    """Waitlist entries with referral mechanics and snapshot persistence.

    State is loaded lazily from the store on first access.

    Attributes:
        position_baseline: Position counter value for an empty waitlist.
    """

    def __init__(
        self,
        store: AbstractSnapshotStore,
        *,
        position_baseline: int = DEFAULT_POSITION_BASELINE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self.position_baseline = position_baseline
        self._clock = clock

        self._entries: dict[str, WaitlistEntry] = {}
        self._email_by_code: dict[str, str] = {}
        self._email_by_id: dict[str, str] = {}
        self._position_counter = position_baseline
        self._entry_id_counter = 0
        self._initialized = False

    # ------------------------------------------------------------------
    # Loading / persistence
    # ------------------------------------------------------------------

    def _ensure_loaded(self) -> None:
        if self._initialized:
            return

        snapshot = self._store.load()
        self._reset_state()
        if snapshot is not None:
            for entry in snapshot.entries:
                self._index(entry)
            highest = max((e.original_position for e in snapshot.entries), default=0)
            self._position_counter = max(snapshot.position_counter, self.position_baseline, highest)
            self._entry_id_counter = snapshot.entry_id_counter
            logger.info("waitlist.ledger_loaded", extra={"count": len(self._entries)})

        self._initialized = True

    def _reset_state(self) -> None:
        self._entries.clear()
        self._email_by_code.clear()
        self._email_by_id.clear()
        self._position_counter = self.position_baseline
        self._entry_id_counter = 0

    def _index(self, entry: WaitlistEntry) -> None:
        self._entries[entry.email] = entry
        self._email_by_code[normalize_referral_code(entry.referral_code)] = entry.email
        self._email_by_id[entry.id] = entry.email

    def _unindex(self, entry: WaitlistEntry) -> None:
        self._entries.pop(entry.email, None)
        self._email_by_code.pop(normalize_referral_code(entry.referral_code), None)
        self._email_by_id.pop(entry.id, None)

    def _snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            entries=list(self._entries.values()),
            position_counter=self._position_counter,
            entry_id_counter=self._entry_id_counter,
        )

    def _persist(self, rollback: Callable[[], None]) -> None:
        """Write the full state; on failure undo the entry change and re-raise.

        Counters are never rolled back, so positions stay monotonic even
        across failed writes.
        """

        try:
            self._store.save(self._snapshot())
        except AppError as exc:
            rollback()
            logger.error(
                "waitlist.persist_failed",
                extra={"error_code": exc.code, "count": len(self._entries)},
            )
            raise

    def _replace(self, previous: WaitlistEntry, updated: WaitlistEntry) -> WaitlistEntry:
        self._entries[updated.email] = updated

        def rollback() -> None:
            self._entries[previous.email] = previous

        self._persist(rollback)
        return updated

    def _next_entry_id(self) -> str:
        self._entry_id_counter += 1
        return f"wl_{int(time.time() * 1000)}_{self._entry_id_counter}"

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> WaitlistEntry | None:
        self._ensure_loaded()
        return self._entries.get(normalize_email(email))

    def get_by_id(self, entry_id: str) -> WaitlistEntry | None:
        self._ensure_loaded()
        email = self._email_by_id.get(entry_id)
        return self._entries.get(email) if email else None

    def get_by_referral_code(self, referral_code: str) -> WaitlistEntry | None:
        self._ensure_loaded()
        email = self._email_by_code.get(normalize_referral_code(referral_code))
        return self._entries.get(email) if email else None

    def exists(self, email: str) -> bool:
        self._ensure_loaded()
        return normalize_email(email) in self._entries

    def referral_code_exists(self, referral_code: str) -> bool:
        self._ensure_loaded()
        return normalize_referral_code(referral_code) in self._email_by_code

    def get_total_count(self) -> int:
        self._ensure_loaded()
        return len(self._entries)

    def get_all_entries(self) -> list[WaitlistEntry]:
        self._ensure_loaded()
        return list(self._entries.values())

    def current_position_counter(self) -> int:
        """All-time number of positions handed out (including the baseline)."""
        self._ensure_loaded()
        return self._position_counter

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_entry(
        self,
        email: str,
        referral_code: str,
        locale: str,
        *,
        name: str | None = None,
        referred_by: str | None = None,
        source: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> WaitlistEntry:
        """Insert a new entry at the back of the queue.

        Args:
            email: Email address; normalized before use.
            referral_code: The new entrant's own (unused) referral code.
            locale: User locale.
            name: Optional display name.
            referred_by: Referral code that brought this user, if any.
            source: Signup source; defaults to "referral" or "direct".
            tags: Initial segmentation tags.

        Returns:
            The stored entry.

        Raises:
            DuplicateEntryError: If the email or referral code is taken.
            StorageAppError: If the snapshot cannot be written.
        """

        self._ensure_loaded()

        key = normalize_email(email)
        if key in self._entries:
            raise DuplicateEntryError(code="duplicate_email", message="Email already exists")

        code = normalize_referral_code(referral_code)
        if code in self._email_by_code:
            raise DuplicateEntryError(
                code="duplicate_referral_code",
                message="Referral code already assigned",
            )

        now = self._clock()
        self._position_counter += 1
        position = self._position_counter

        entry = WaitlistEntry(
            id=self._next_entry_id(),
            email=key,
            name=name,
            position=position,
            original_position=position,
            referral_code=code,
            referred_by=normalize_referral_code(referred_by) if referred_by else None,
            referral_count=0,
            locale=locale,
            source=source or ("referral" if referred_by else "direct"),
            tags=list(dict.fromkeys(tags or [])),
            created_at=now,
            updated_at=now,
        )

        self._index(entry)
        self._persist(lambda: self._unindex(entry))

        logger.info(
            "waitlist.entry_added",
            extra={
                "entry_id": entry.id,
                "email_hash": hash_identifier(key),
                "position": position,
                "source": entry.source,
                "referred": entry.referred_by is not None,
            },
        )
        return entry

    def update_entry(
        self,
        email: str,
        updates: EntryUpdate | Mapping[str, Any],
    ) -> WaitlistEntry | None:
        """Merge mutable fields into an entry.

        Args:
            email: Entry email (case-insensitive).
            updates: An EntryUpdate, or a mapping validated into one.

        Returns:
            The updated entry, or None if the email is not registered.

        Raises:
            ValidationAppError: If updates touch immutable or unknown fields.
        """

        if not isinstance(updates, EntryUpdate):
            try:
                updates = EntryUpdate.model_validate(dict(updates))
            except ValidationError as exc:
                raise ValidationAppError(
                    code="invalid_entry_update",
                    message="Entry update contains invalid or immutable fields",
                    details={"context": {"errors": exc.errors(include_url=False, include_context=False, include_input=False)}},
                ) from exc

        self._ensure_loaded()
        existing = self._entries.get(normalize_email(email))
        if existing is None:
            return None

        changes = {
            field: value
            for field, value in updates.model_dump(exclude_unset=True).items()
            if value is not None or field in _NULLABLE_FIELDS
        }
        if "tags" in changes and changes["tags"] is not None:
            changes["tags"] = list(dict.fromkeys(changes["tags"]))
        updated = existing.model_copy(update={**changes, "updated_at": self._clock()})
        return self._replace(existing, updated)

    def update_external_subscriber_id(self, email: str, subscriber_id: str) -> WaitlistEntry | None:
        return self.update_entry(email, EntryUpdate(external_subscriber_id=subscriber_id))

    def process_referral(self, referrer_email: str, spots_per_referral: int) -> WaitlistEntry | None:
        """Credit one successful referral to the referrer.

        Returns:
            The referrer's updated entry, or None if not registered.
        """

        self._ensure_loaded()
        referrer = self._entries.get(normalize_email(referrer_email))
        if referrer is None:
            return None

        updated = referrer.model_copy(
            update={
                "referral_count": referrer.referral_count + 1,
                "position": calculate_new_position(referrer.position, 1, spots_per_referral),
                "updated_at": self._clock(),
            }
        )
        self._replace(referrer, updated)

        logger.info(
            "waitlist.referral_processed",
            extra={
                "entry_id": updated.id,
                "position": updated.position,
                "referral_count": updated.referral_count,
            },
        )
        return updated

    def add_tags(self, email: str, new_tags: Iterable[str]) -> WaitlistEntry | None:
        """Union tags, keeping first-seen order and dropping duplicates."""

        self._ensure_loaded()
        existing = self._entries.get(normalize_email(email))
        if existing is None:
            return None

        merged = list(dict.fromkeys([*existing.tags, *new_tags]))
        return self.update_entry(email, EntryUpdate(tags=merged))

    def delete_by_email(self, email: str) -> bool:
        """Physically remove an entry (data-subject erasure).

        Returns:
            True if an entry was deleted, False if none matched.
        """

        self._ensure_loaded()
        existing = self._entries.get(normalize_email(email))
        if existing is None:
            return False

        self._unindex(existing)
        self._persist(lambda: self._index(existing))
        logger.info("waitlist.entry_deleted", extra={"entry_id": existing.id})
        return True

    def reload(self) -> None:
        """Discard in-memory state and re-read the snapshot store."""

        self._initialized = False
        self._ensure_loaded()

    def clear(self) -> None:
        """Reset to an empty ledger with baseline counters and persist it."""

        self._ensure_loaded()
        previous = self._snapshot()
        self._reset_state()

        def rollback() -> None:
            for entry in previous.entries:
                self._index(entry)
            # A failed clear keeps the counters the old entries were numbered with.
            self._position_counter = previous.position_counter
            self._entry_id_counter = previous.entry_id_counter

        self._persist(rollback)
        logger.info("waitlist.ledger_cleared")
