"""Referral code generation/validation and referral position math."""

from __future__ import annotations

import logging
import re
import secrets
from typing import Callable
from urllib.parse import urlencode

from waitlist_api.core.errors import ReferralCodeExhaustedError

logger = logging.getLogger(__name__)

# No 0/O or 1/I, so codes survive being read aloud or retyped.
REFERRAL_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

DEFAULT_PREFIX = "REF"
DEFAULT_LENGTH = 6


def generate_referral_code(prefix: str = DEFAULT_PREFIX, length: int = DEFAULT_LENGTH) -> str:
    """Build ``prefix`` followed by ``length`` random unambiguous characters.

    The result is not guaranteed unique; see generate_unique_referral_code.
    """

    if length < 1:
        raise ValueError("length must be >= 1")
    suffix = "".join(secrets.choice(REFERRAL_ALPHABET) for _ in range(length))
    return f"{prefix.upper()}{suffix}"


def is_valid_referral_code(code: str | None, prefix: str = DEFAULT_PREFIX) -> bool:
    """Format check only: prefix plus 4-8 alphanumerics, case-insensitive.

    Examples:
        >>> is_valid_referral_code("refab3k9x")
        True
        >>> is_valid_referral_code("REF12")
        False
    """

    if not code:
        return False
    pattern = rf"{re.escape(prefix)}[A-Z0-9]{{4,8}}"
    return re.fullmatch(pattern, code.strip(), flags=re.IGNORECASE) is not None


def calculate_new_position(current_position: int, referral_count: int, spots_per_referral: int) -> int:
    """Position after ``referral_count`` referrals, never below 1."""

    return max(1, current_position - referral_count * spots_per_referral)


def generate_unique_referral_code(
    is_taken: Callable[[str], bool],
    *,
    prefix: str = DEFAULT_PREFIX,
    length: int = DEFAULT_LENGTH,
    max_attempts: int = 5,
) -> str:
    """Generate a referral code not yet present in the ledger.

    Args:
        is_taken: Predicate returning True when a code is already assigned.
        prefix: Code prefix.
        length: Random characters after the prefix.
        max_attempts: Collisions tolerated before giving up.

    Returns:
        An unused referral code.

    Raises:
        ReferralCodeExhaustedError: If every attempt collided.
    """

    for attempt in range(1, max_attempts + 1):
        code = generate_referral_code(prefix, length)
        if not is_taken(code):
            return code
        logger.warning(
            "referral.code_collision",
            extra={"attempt": attempt, "max_attempts": max_attempts},
        )

    raise ReferralCodeExhaustedError(
        code="referral_code_exhausted",
        message="Could not allocate a unique referral code",
        details={"attempts": max_attempts, "hint": "Increase WAITLIST_REFERRAL_CODE_LENGTH"},
    )


def build_referral_url(base_url: str, referral_code: str) -> str:
    """Shareable link carrying the referral code as ``?ref=``."""

    return f"{base_url.rstrip('/')}/?{urlencode({'ref': referral_code})}"
