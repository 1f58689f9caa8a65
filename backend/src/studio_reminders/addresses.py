from __future__ import annotations

import string
from dataclasses import dataclass


class InvalidAddressError(ValueError):
    """Raised when a phone number cannot be normalized to an international form."""


@dataclass(frozen=True)
class AddressPolicy:
    country_code: str = "48"
    national_length: int = 9

    @property
    def prefix(self) -> str:
        return f"+{self.country_code}"

    @property
    def full_length(self) -> int:
        return len(self.prefix) + self.national_length


def normalize_address(raw: str | None, policy: AddressPolicy | None = None) -> str:
    rules = policy or AddressPolicy()
    stripped = (raw or "").strip()
    digits = "".join(ch for ch in stripped if ch in string.digits)
    if not digits:
        raise InvalidAddressError("Invalid phone number format")
    cleaned = f"+{digits}" if stripped.startswith("+") else digits

    if cleaned.startswith(rules.prefix) and len(cleaned) == rules.full_length:
        return cleaned
    if cleaned.startswith(rules.country_code) and len(cleaned) == rules.full_length - 1:
        return f"+{cleaned}"
    if len(cleaned) == rules.national_length:
        return f"{rules.prefix}{cleaned}"
    if cleaned.startswith("+") and len(digits) >= 10:
        return cleaned
    raise InvalidAddressError("Invalid phone number format")


def mask_address(address: str) -> str:
    digits = "".join(ch for ch in address if ch in string.digits)
    if len(digits) >= 4:
        return f"***{digits[-4:]}"
    return "***"
