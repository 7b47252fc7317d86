"""Waitlist signup orchestration.

Steps for a validated signup:
1. Existing email → return the existing entry (caller answers with the same
   shape as a fresh signup, so emails cannot be enumerated).
2. Allocate an unused referral code (bounded retries).
3. Insert the entry at the back of the queue.
4. Credit the referrer, if the supplied referral code resolves to one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from waitlist_api.core.config import WaitlistSettings
from waitlist_api.core.errors import DuplicateEntryError
from waitlist_api.schemas.waitlist import WaitlistEntry
from waitlist_api.services.referral_service import (
    generate_unique_referral_code,
    is_valid_referral_code,
)
from waitlist_api.services.waitlist_ledger import WaitlistLedger, normalize_referral_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignupCommand:
    """Pre-validated signup input handed over by the HTTP layer."""

    email: str
    locale: str = "en"
    name: str | None = None
    referred_by: str | None = None
    source: str | None = None
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SignupOutcome:
    """Result of a signup attempt.

    Attributes:
        entry: The new or pre-existing waitlist entry.
        created: False when the email was already registered. Never expose
            this to unauthenticated callers.
        referrer: The credited referrer's updated entry, if any.
    """

    entry: WaitlistEntry
    created: bool
    referrer: WaitlistEntry | None = None


class SignupService:
    """Turns a validated signup into ledger mutations."""

    def __init__(self, ledger: WaitlistLedger, waitlist_settings: WaitlistSettings) -> None:
        self._ledger = ledger
        self._settings = waitlist_settings

    def _resolve_referral(self, referred_by: str | None) -> str | None:
        """Normalize a supplied referral code, dropping malformed ones."""
        if not referred_by:
            return None
        if not is_valid_referral_code(referred_by, self._settings.referral_code_prefix):
            logger.info("signup.referral_code_ignored", extra={"reason": "invalid_format"})
            return None
        return normalize_referral_code(referred_by)

    def signup(self, command: SignupCommand) -> SignupOutcome:
        """Register ``command.email`` on the waitlist.

        Returns:
            SignupOutcome with the entry to report to the caller.

        Raises:
            ReferralCodeExhaustedError: If no referral code could be allocated.
            StorageAppError: If the ledger could not be persisted.
        """
        existing = self._ledger.get_by_email(command.email)
        if existing is not None:
            logger.info("signup.already_registered", extra={"entry_id": existing.id})
            return SignupOutcome(entry=existing, created=False)

        referred_by = self._resolve_referral(command.referred_by)
        referral_code = generate_unique_referral_code(
            self._ledger.referral_code_exists,
            prefix=self._settings.referral_code_prefix,
            length=self._settings.referral_code_length,
            max_attempts=self._settings.referral_code_max_attempts,
        )

        try:
            entry = self._ledger.add_entry(
                command.email,
                referral_code,
                command.locale,
                name=command.name,
                referred_by=referred_by,
                source=command.source,
                tags=command.tags,
            )
        except DuplicateEntryError as exc:
            if exc.code != "duplicate_email":
                raise
            # Lost a race with a concurrent signup for the same email.
            winner = self._ledger.get_by_email(command.email)
            if winner is None:
                raise
            return SignupOutcome(entry=winner, created=False)

        referrer = None
        if referred_by:
            referrer_entry = self._ledger.get_by_referral_code(referred_by)
            if referrer_entry is not None and referrer_entry.id != entry.id:
                referrer = self._ledger.process_referral(
                    referrer_entry.email,
                    self._settings.spots_per_referral,
                )
            else:
                logger.info("signup.referral_code_unknown", extra={"entry_id": entry.id})

        return SignupOutcome(entry=entry, created=True, referrer=referrer)
