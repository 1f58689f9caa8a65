from __future__ import annotations

import pytest

from studio_reminders.addresses import AddressPolicy, InvalidAddressError, mask_address, normalize_address


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("123456789", "+48123456789"),
        ("123 456 789", "+48123456789"),
        ("+48 123-456-789", "+48123456789"),
        ("48123456789", "+48123456789"),
        ("+44 20 7946 0958", "+442079460958"),
    ],
)
def test_normalize_address_accepts_known_forms(raw: str, expected: str) -> None:
    assert normalize_address(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["", None, "12345", "1234567", "abc", "0048123456789", "+12345", "\u0663" * 9],
)
def test_normalize_address_rejects_everything_else(raw: str | None) -> None:
    with pytest.raises(InvalidAddressError, match="Invalid phone number format"):
        normalize_address(raw)


def test_normalize_address_honors_custom_policy() -> None:
    policy = AddressPolicy(country_code="420", national_length=9)

    assert normalize_address("601234567", policy) == "+420601234567"
    assert normalize_address("420601234567", policy) == "+420601234567"


def test_mask_address_keeps_last_four_digits() -> None:
    assert mask_address("+48123456789") == "***6789"
    assert mask_address("12") == "***"


def test_normalize_address_ignores_non_ascii_digits() -> None:
    assert normalize_address("600²100200") == "+48600100200"
