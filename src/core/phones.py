"""Helpers for working with phone number spellings.

The registry stores numbers in whatever shape they were typed in, while the
WhatsApp layer presents bare digits with the country prefix. Historic and
current domestic mobile numbering also disagree on a leading ``9`` in the
subscriber segment, so one real number can have several spellings.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

DOMESTIC_PREFIX = "55"
# Country code (2) + area code (2) precede the subscriber segment.
SUBSCRIBER_OFFSET = 4
NINTH_DIGIT = "9"
MIN_PHONE_DIGITS = 7

_NON_DIGITS = re.compile(r"\D+")


def to_digits(value: Optional[str]) -> str:
    if not value:
        return ""
    return _NON_DIGITS.sub("", value)


def last8(value: str) -> Optional[str]:
    digits = to_digits(value)
    if len(digits) < 8:
        return None
    return digits[-8:]


def canonical_phone(raw: str) -> str:
    """Return the country+area+subscriber form of a registry phone.

    Numbers written with ``+`` already carry their country code; anything else
    is a domestic number whose trunk zeros are dropped.
    """

    if "+" in raw:
        return to_digits(raw)
    digits = to_digits(raw).lstrip("0")
    if not digits:
        return ""
    return f"{DOMESTIC_PREFIX}{digits}"


def ninth_digit_variants(canonical: str) -> list[str]:
    """Return every spelling that may represent ``canonical``.

    Domestic numbers get the inserted-9 spelling and, when the subscriber
    segment starts with 9, the removed-9 spelling. Foreign numbers only have
    their canonical spelling.
    """

    if not canonical.startswith(DOMESTIC_PREFIX) or len(canonical) <= SUBSCRIBER_OFFSET:
        return [canonical]

    head = canonical[:SUBSCRIBER_OFFSET]
    subscriber = canonical[SUBSCRIBER_OFFSET:]
    variants = [canonical, f"{head}{NINTH_DIGIT}{subscriber}"]
    if subscriber.startswith(NINTH_DIGIT):
        variants.append(f"{head}{subscriber[1:]}")
    return variants


def parse_phone_csv(raw_csv: Optional[str]) -> list[str]:
    return [digits for digits in (to_digits(part.strip()) for part in (raw_csv or "").split(",")) if digits]


class ProtectedPhoneMatcher:
    """Match phones against a configured list by exact digits or last 8 digits."""

    def __init__(self, phones: Iterable[str]) -> None:
        normalized = [to_digits(phone) for phone in phones]
        self._exact = {phone for phone in normalized if phone}
        self._last8 = {tail for tail in (last8(phone) for phone in self._exact) if tail}

    @classmethod
    def from_csv(cls, raw_csv: Optional[str]) -> "ProtectedPhoneMatcher":
        return cls(parse_phone_csv(raw_csv))

    def __call__(self, phone: str) -> bool:
        digits = to_digits(phone)
        if not digits:
            return False
        if digits in self._exact:
            return True
        tail = last8(digits)
        return tail is not None and tail in self._last8

    def __len__(self) -> int:
        return len(self._exact)


class ExactPhoneMatcher:
    """Match phones against a configured list by exact digits only."""

    def __init__(self, phones: Iterable[str]) -> None:
        self._exact = {digits for digits in (to_digits(phone) for phone in phones) if digits}

    @classmethod
    def from_csv(cls, raw_csv: Optional[str]) -> "ExactPhoneMatcher":
        return cls(parse_phone_csv(raw_csv))

    def __call__(self, phone: str) -> bool:
        return to_digits(phone) in self._exact

    def __len__(self) -> int:
        return len(self._exact)
