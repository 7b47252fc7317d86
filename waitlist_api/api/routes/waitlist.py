"""Waitlist HTTP routes.

Public routes never reveal whether an email is registered: a repeat signup
gets the same response shape as a fresh one. Only admin routes (X-API-Key)
expose per-email data.

Route handlers are ``async def`` and call the ledger synchronously, so ledger
mutations stay on the event loop and never interleave.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from waitlist_api.core.auth import verify_api_key
from waitlist_api.core.config import settings
from waitlist_api.core.errors import ValidationAppError
from waitlist_api.core.rate_limit import rate_limit
from waitlist_api.schemas.waitlist import (
    EMAIL_PATTERN,
    DeleteResponse,
    PositionResponse,
    ReferralLookupResponse,
    SignupRequest,
    SignupResponse,
    StatsResponse,
)
from waitlist_api.services.referral_service import build_referral_url, is_valid_referral_code
from waitlist_api.services.signup_service import SignupCommand, SignupService
from waitlist_api.services.waitlist_ledger import WaitlistLedger

router = APIRouter(prefix="/waitlist", tags=["Waitlist"])


def get_ledger(request: Request) -> WaitlistLedger:
    return request.app.state.ledger


def get_signup_service(request: Request) -> SignupService:
    return SignupService(request.app.state.ledger, settings.waitlist)


@router.post(
    "/signup",
    response_model=SignupResponse,
    dependencies=[Depends(rate_limit("strict", "signup"))],
)
async def signup(
    payload: SignupRequest,
    service: SignupService = Depends(get_signup_service),
) -> SignupResponse:
    """Join the waitlist (or get the existing spot back for a known email).

    Raises:
        ValidationAppError: 400 when privacy consent was not given.
    """
    if not payload.gdpr_accepted:
        raise ValidationAppError(code="consent_required", message="Consent is required")

    outcome = service.signup(
        SignupCommand(
            email=payload.email,
            locale=payload.locale or "en",
            name=payload.name.strip() if payload.name else None,
            referred_by=payload.referred_by,
            source=payload.source,
            tags=payload.tags,
        )
    )
    entry = outcome.entry
    return SignupResponse(
        position=entry.position,
        referral_code=entry.referral_code,
        referral_url=build_referral_url(settings.app.public_base_url, entry.referral_code),
    )


@router.get(
    "/referral/{code}",
    response_model=ReferralLookupResponse,
    dependencies=[Depends(rate_limit("standard", "referral"))],
)
async def lookup_referral(
    code: str,
    ledger: WaitlistLedger = Depends(get_ledger),
) -> ReferralLookupResponse:
    """Check whether a referral code belongs to someone on the waitlist."""
    if not is_valid_referral_code(code, settings.waitlist.referral_code_prefix):
        return ReferralLookupResponse(valid=False)

    referrer = ledger.get_by_referral_code(code)
    if referrer is None:
        return ReferralLookupResponse(valid=False)
    return ReferralLookupResponse(valid=True, referral_code=referrer.referral_code)


@router.get(
    "/position",
    response_model=PositionResponse,
    dependencies=[Depends(verify_api_key), Depends(rate_limit("standard", "position"))],
)
async def get_position(
    email: str = Query(..., max_length=254, pattern=EMAIL_PATTERN),
    ledger: WaitlistLedger = Depends(get_ledger),
) -> PositionResponse:
    """Admin: current standing of a single entry."""
    entry = ledger.get_by_email(email)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")

    return PositionResponse(
        email=entry.email,
        position=entry.position,
        original_position=entry.original_position,
        referral_code=entry.referral_code,
        referral_count=entry.referral_count,
        referral_url=build_referral_url(settings.app.public_base_url, entry.referral_code),
        created_at=entry.created_at,
    )


@router.delete(
    "/entries",
    response_model=DeleteResponse,
    dependencies=[Depends(verify_api_key), Depends(rate_limit("strict", "delete"))],
)
async def delete_entry(
    email: str = Query(..., max_length=254, pattern=EMAIL_PATTERN),
    ledger: WaitlistLedger = Depends(get_ledger),
) -> DeleteResponse:
    """Admin: erase an entry on a data-subject request."""
    return DeleteResponse(deleted=ledger.delete_by_email(email))


@router.get(
    "/stats",
    response_model=StatsResponse,
    dependencies=[Depends(rate_limit("lenient", "stats"))],
)
async def get_stats(ledger: WaitlistLedger = Depends(get_ledger)) -> StatsResponse:
    """Public social-proof count.

    The position counter includes deleted entries and the baseline, so it is
    reported when larger than the live entry count.
    """
    count = max(ledger.get_total_count(), ledger.current_position_counter())
    return StatsResponse(count=count, last_updated=datetime.now(timezone.utc))
