"""Registry records, phone index and matching (core domain).

The registry feed is turned into RegistryRecords once per cycle, indexed by
every plausible phone spelling, and then queried with exact key lookups only.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from core.models import (
    FEMALE,
    MatchResult,
    MembershipStatus,
    RegistrationFlags,
    RegistryRecord,
)
from core.phones import canonical_phone, ninth_digit_variants, to_digits

AGE_FLOOR = 13
ADULT_AGE = 18
# Lower bound of the dependent age band a representative may need to cover.
REPRESENTED_BAND_MIN = 12


def age_in_years(birth_date: Optional[date], today: date) -> Optional[int]:
    if birth_date is None:
        return None
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def membership_status(
    max_expiration: Optional[date],
    transferred: bool,
    today: date,
) -> MembershipStatus:
    """Active while a paid period is still running, or for transferred members."""

    if max_expiration is not None and max_expiration > today:
        return MembershipStatus.ACTIVE
    if transferred:
        return MembershipStatus.ACTIVE
    return MembershipStatus.INACTIVE


def member_record(
    *,
    phone: str,
    registration_id: int,
    gender: Optional[str],
    status: MembershipStatus,
    birth_date: Optional[date],
    has_accepted_terms: bool,
    representative_phones: Iterable[str],
    today: date,
) -> RegistryRecord:
    """Build the record for a phone owned by the registrant."""

    age = age_in_years(birth_date, today)
    is_adult = age is not None and age >= ADULT_AGE
    rep_phones = {to_digits(value) for value in representative_phones if value}
    if is_adult:
        child_matches = True
    elif not rep_phones:
        child_matches = False
    else:
        child_matches = to_digits(phone) in rep_phones

    return RegistryRecord(
        phone=phone,
        registration_id=registration_id,
        gender=gender,
        status=status,
        below_age_floor=age is not None and age < AGE_FLOOR,
        in_age_band=age is not None and AGE_FLOOR <= age < ADULT_AGE,
        is_adult=is_adult,
        child_phone_matches_legal_rep=child_matches,
        has_accepted_terms=has_accepted_terms,
    )


def representative_record(
    *,
    phone: str,
    registration_id: int,
    status: MembershipStatus,
    dependent_birth_date: Optional[date],
    today: date,
) -> RegistryRecord:
    """Build the record for a legal representative's phone.

    The representative is an adult; the ``represents_*`` flags describe the
    dependent registration the phone is attached to.
    """

    dependent_age = age_in_years(dependent_birth_date, today)
    represents_minor = dependent_age is not None and dependent_age < ADULT_AGE
    return RegistryRecord(
        phone=phone,
        registration_id=registration_id,
        gender=None,
        status=status,
        is_adult=True,
        is_legal_representative=True,
        represents_minor=represents_minor,
        represents_age_band=represents_minor and dependent_age >= REPRESENTED_BAND_MIN,
    )


def registration_flags(
    registration_id: int,
    birth_date: Optional[date],
    has_accepted_terms: bool,
    today: date,
) -> RegistrationFlags:
    age = age_in_years(birth_date, today)
    return RegistrationFlags(
        registration_id=registration_id,
        below_age_floor=age is not None and age < AGE_FLOOR,
        in_age_band=age is not None and AGE_FLOOR <= age < ADULT_AGE,
        has_accepted_terms=has_accepted_terms,
    )


@dataclass(frozen=True)
class PhoneIndex:
    """Cycle-scoped, read-only mapping of phone spellings to records."""

    entries: Mapping[str, tuple[RegistryRecord, ...]]

    def get(self, spelling: str) -> tuple[RegistryRecord, ...]:
        return self.entries.get(spelling, ())

    def __contains__(self, spelling: object) -> bool:
        return spelling in self.entries

    def __len__(self) -> int:
        return len(self.entries)


def build_index(records: Iterable[RegistryRecord]) -> PhoneIndex:
    """Index each record under every spelling its phone may be presented as.

    A record appears under up to three keys. All keys point at the same record
    instance, so lookups are O(1) whichever digit convention a participant's
    number uses.
    """

    entries: dict[str, list[RegistryRecord]] = defaultdict(list)
    for record in records:
        canonical = canonical_phone(record.phone)
        if not canonical:
            continue
        for spelling in ninth_digit_variants(canonical):
            bucket = entries[spelling]
            if not any(existing is record for existing in bucket):
                bucket.append(record)

    return PhoneIndex(MappingProxyType({key: tuple(value) for key, value in entries.items()}))


def match(index: PhoneIndex, phone: str) -> MatchResult:
    """Return the aggregated registry answer for an exact phone spelling.

    Scalar fields come from the first Active record (else the first record);
    boolean fields are OR-ed across every matched record, so a phone shared
    with a representative or an adult is never a phone mismatch.
    """

    matched = index.get(phone)
    if not matched:
        return MatchResult.missing()

    primary = next((rec for rec in matched if rec.status is MembershipStatus.ACTIVE), matched[0])
    return MatchResult(
        found=True,
        status=primary.status,
        registration_id=primary.registration_id,
        gender=primary.gender,
        below_age_floor=any(rec.below_age_floor for rec in matched),
        in_age_band=any(rec.in_age_band for rec in matched),
        is_adult=any(rec.is_adult for rec in matched),
        is_legal_representative=any(rec.is_legal_representative for rec in matched),
        represents_minor=any(rec.represents_minor for rec in matched),
        represents_age_band=any(rec.represents_age_band for rec in matched),
        child_phone_matches_legal_rep=any(rec.child_phone_matches_legal_rep for rec in matched),
        has_accepted_terms=any(rec.has_accepted_terms for rec in matched),
        has_adult_female=any(rec.gender == FEMALE and rec.is_adult for rec in matched),
    )
