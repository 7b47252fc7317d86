"""Unit tests for referral code helpers and position math."""

from unittest.mock import Mock

import pytest

from waitlist_api.core.errors import ReferralCodeExhaustedError
from waitlist_api.services.referral_service import (
    REFERRAL_ALPHABET,
    build_referral_url,
    calculate_new_position,
    generate_referral_code,
    generate_unique_referral_code,
    is_valid_referral_code,
)


class TestGenerateReferralCode:
    def test_default_shape(self) -> None:
        code = generate_referral_code()

        assert code.startswith("REF")
        assert len(code) == 9
        assert all(ch in REFERRAL_ALPHABET for ch in code[3:])

    def test_alphabet_has_no_ambiguous_characters(self) -> None:
        for ch in "01IO":
            assert ch not in REFERRAL_ALPHABET

    def test_custom_prefix_and_length(self) -> None:
        code = generate_referral_code("vip", 8)

        assert code.startswith("VIP")
        assert len(code) == 11

    def test_generated_codes_validate(self) -> None:
        for _ in range(50):
            assert is_valid_referral_code(generate_referral_code())

    def test_rejects_non_positive_length(self) -> None:
        with pytest.raises(ValueError):
            generate_referral_code(length=0)


class TestIsValidReferralCode:
    @pytest.mark.parametrize("code", ["REFAB3K9X", "refab3k9x", "REF1234", "REFABCDEFGH", " REFABCD "])
    def test_valid(self, code: str) -> None:
        assert is_valid_referral_code(code) is True

    @pytest.mark.parametrize("code", ["REF12", "REFABCDEFGHI", "XYZABCDEF", "REF-ABCD", "", None])
    def test_invalid(self, code) -> None:
        assert is_valid_referral_code(code) is False


class TestCalculateNewPosition:
    @pytest.mark.parametrize(
        "current,count,spots,expected",
        [
            (848, 1, 10, 838),
            (848, 3, 10, 818),
            (5, 1, 10, 1),
            (1, 1, 10, 1),
            (848, 0, 10, 848),
        ],
    )
    def test_moves_up_and_clamps(self, current: int, count: int, spots: int, expected: int) -> None:
        assert calculate_new_position(current, count, spots) == expected


class TestGenerateUniqueReferralCode:
    def test_returns_first_free_code(self) -> None:
        is_taken = Mock(return_value=False)

        code = generate_unique_referral_code(is_taken)

        assert is_valid_referral_code(code)
        is_taken.assert_called_once_with(code)

    def test_retries_after_collision(self) -> None:
        is_taken = Mock(side_effect=[True, True, False])

        generate_unique_referral_code(is_taken)

        assert is_taken.call_count == 3

    def test_gives_up_after_max_attempts(self) -> None:
        is_taken = Mock(return_value=True)

        with pytest.raises(ReferralCodeExhaustedError) as exc_info:
            generate_unique_referral_code(is_taken, max_attempts=5)

        assert exc_info.value.code == "referral_code_exhausted"
        assert is_taken.call_count == 5


def test_build_referral_url() -> None:
    assert build_referral_url("https://example.com/", "REFAB3K9X") == "https://example.com/?ref=REFAB3K9X"
    assert build_referral_url("https://example.com", "REFAB3K9X") == "https://example.com/?ref=REFAB3K9X"
