"""Pydantic schemas for waitlist entries and waitlist API payloads.

Entries serialize with camelCase aliases, which is also the key style of the
persisted snapshot document.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

WaitlistSource = Literal[
    "landing_b2c",
    "landing_b2b",
    "interactive_demo",
    "dream_mode",
    "calculator",
    "referral",
    "direct",
]

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WaitlistEntry(CamelModel):
    """A single signup on the waitlist, keyed by normalized email."""

    id: str = Field(..., description="Opaque identifier assigned at creation.")
    email: str = Field(..., description="Lowercased, trimmed email (primary key).")
    name: str | None = Field(None, description="Optional display name.")
    external_subscriber_id: str | None = Field(
        None,
        description="Identifier in the downstream mailing list, once synced.",
    )
    position: int = Field(..., ge=1, description="Current queue rank.")
    original_position: int = Field(
        ...,
        ge=1,
        description="Rank at signup time, before any referral bumps.",
    )
    referral_code: str = Field(..., description="This entrant's own referral code.")
    referred_by: str | None = Field(None, description="Referral code used at signup.")
    referral_count: int = Field(0, ge=0, description="Successful referrals so far.")
    locale: str = Field(..., description="User locale, e.g. 'en'.")
    source: str = Field("direct", description="Signup source tracking.")
    tags: list[str] = Field(default_factory=list, description="Segmentation tags.")
    created_at: datetime
    updated_at: datetime


class EntryUpdate(CamelModel):
    """Mutable subset of a waitlist entry.

    Identity and audit fields (id, email, original_position, created_at,
    referral_code, referred_by) are deliberately absent and extra keys are
    rejected, so they cannot be changed through an update.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    name: str | None = None
    external_subscriber_id: str | None = None
    position: int | None = Field(None, ge=1)
    referral_count: int | None = Field(None, ge=0)
    locale: str | None = None
    source: str | None = None
    tags: list[str] | None = None


class SignupRequest(CamelModel):
    """Body of a public waitlist signup."""

    email: str = Field(..., max_length=254, pattern=EMAIL_PATTERN)
    name: str | None = Field(None, max_length=100)
    locale: str = Field("en", max_length=16)
    gdpr_accepted: bool = Field(False, description="Explicit privacy consent.")
    referred_by: str | None = Field(None, max_length=32)
    source: WaitlistSource | None = None
    tags: list[str] = Field(default_factory=list, max_length=20)


class SignupResponse(CamelModel):
    """Identical shape for new and already registered emails."""

    success: bool = True
    position: int
    referral_code: str
    referral_url: str


class ReferralLookupResponse(CamelModel):
    valid: bool
    referral_code: str | None = None


class PositionResponse(CamelModel):
    """Admin view of an entry's standing."""

    email: str
    position: int
    original_position: int
    referral_code: str
    referral_count: int
    referral_url: str
    created_at: datetime


class DeleteResponse(CamelModel):
    deleted: bool


class StatsResponse(CamelModel):
    count: int
    last_updated: datetime
