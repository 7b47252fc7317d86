"""Tests for signup orchestration."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from waitlist_api.core.config import WaitlistSettings
from waitlist_api.core.errors import DuplicateEntryError, ReferralCodeExhaustedError
from waitlist_api.services.referral_service import is_valid_referral_code
from waitlist_api.services.signup_service import SignupCommand, SignupService
from waitlist_api.services.waitlist_ledger import WaitlistLedger


@pytest.fixture
def service(ledger: WaitlistLedger) -> SignupService:
    return SignupService(ledger, WaitlistSettings())


def test_new_signup_gets_next_position(service: SignupService) -> None:
    outcome = service.signup(SignupCommand(email="Jane@Example.com", name="Jane"))

    assert outcome.created is True
    assert outcome.entry.email == "jane@example.com"
    assert outcome.entry.position == 848
    assert outcome.entry.source == "direct"
    assert is_valid_referral_code(outcome.entry.referral_code)
    assert outcome.referrer is None


def test_existing_email_returns_same_entry(service: SignupService, ledger: WaitlistLedger) -> None:
    first = service.signup(SignupCommand(email="jane@example.com"))
    second = service.signup(SignupCommand(email="JANE@example.com", name="Someone else"))

    assert second.created is False
    assert second.entry == first.entry
    assert ledger.get_total_count() == 1


def test_referral_moves_referrer_up(service: SignupService) -> None:
    referrer = service.signup(SignupCommand(email="a@x.com")).entry

    outcome = service.signup(
        SignupCommand(email="b@x.com", referred_by=referrer.referral_code.lower())
    )

    assert outcome.entry.position == 849
    assert outcome.entry.referred_by == referrer.referral_code
    assert outcome.entry.source == "referral"
    assert outcome.referrer.position == 838
    assert outcome.referrer.referral_count == 1


def test_malformed_referral_code_is_ignored(service: SignupService) -> None:
    outcome = service.signup(SignupCommand(email="b@x.com", referred_by="NOT-A-CODE"))

    assert outcome.created is True
    assert outcome.entry.referred_by is None
    assert outcome.entry.source == "direct"


def test_unknown_referral_code_credits_nobody(service: SignupService, ledger: WaitlistLedger) -> None:
    referrer = service.signup(SignupCommand(email="a@x.com")).entry

    outcome = service.signup(SignupCommand(email="b@x.com", referred_by="REFZZZZZZ"))

    assert outcome.referrer is None
    assert outcome.entry.referred_by == "REFZZZZZZ"
    assert ledger.get_by_email("a@x.com").position == referrer.position


def test_explicit_source_and_tags_are_kept(service: SignupService) -> None:
    outcome = service.signup(
        SignupCommand(email="b@x.com", source="calculator", tags=["beta"], locale="de")
    )

    assert outcome.entry.source == "calculator"
    assert outcome.entry.tags == ["beta"]
    assert outcome.entry.locale == "de"


def test_referral_code_exhaustion_propagates(ledger: WaitlistLedger) -> None:
    service = SignupService(ledger, WaitlistSettings(referral_code_max_attempts=2))

    with patch.object(ledger, "referral_code_exists", return_value=True):
        with pytest.raises(ReferralCodeExhaustedError):
            service.signup(SignupCommand(email="a@x.com"))

    assert ledger.get_total_count() == 0


def test_concurrent_duplicate_resolves_to_winner(service: SignupService, ledger: WaitlistLedger) -> None:
    winner = ledger.add_entry("a@x.com", "REFAAAAAA", "en")

    with patch.object(ledger, "get_by_email", side_effect=[None, winner]):
        outcome = service.signup(SignupCommand(email="a@x.com"))

    assert outcome.created is False
    assert outcome.entry == winner


def test_referral_code_race_is_not_swallowed(service: SignupService, ledger: WaitlistLedger) -> None:
    with patch.object(
        ledger,
        "add_entry",
        side_effect=DuplicateEntryError(code="duplicate_referral_code", message="taken"),
    ):
        with pytest.raises(DuplicateEntryError):
            service.signup(SignupCommand(email="a@x.com"))
