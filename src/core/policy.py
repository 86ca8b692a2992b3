"""Removal policy evaluation (core domain).

For one (group, participant, registry match) triple the evaluator decides
whether to skip, keep, remove immediately, or defer the removal to the
notification gate. Rules are evaluated in a fixed precedence and the first
applicable one wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from core.config import PolicyConfig
from core.groups import GroupProfile
from core.models import MatchResult, MembershipStatus


class Verdict(str, Enum):
    SKIP = "skip"
    KEEP = "keep"
    REMOVE = "remove"
    DEFER = "defer"


class SkipReason(str, Enum):
    ADMIN = "admin"
    UNRESOLVED = "unresolved"
    PROTECTED = "protected"


class RemovalReason(str, Enum):
    UNDER_MINIMUM_AGE = "under minimum age"
    INACTIVE = "inactive"
    NOT_FOUND = "not found"
    GENDER_MISMATCH = "gender mismatch"
    PHONE_MISMATCH = "phone mismatch"
    NOT_A_REPRESENTATIVE = "not a representative"
    NOT_REPRESENTING_AGE_BAND = "not representing age band"
    NO_LONGER_APPLICABLE = "no longer applicable"
    ADULT_NOT_REPRESENTATIVE = "adult not representative"
    MISSING_TERMS_ACCEPTANCE = "missing terms acceptance"
    AGE_RESTRICTED_IN_UNRESTRICTED = "age-restricted member in unrestricted group"
    MANUAL_REMOVAL = "manual removal"


@dataclass(frozen=True)
class Decision:
    verdict: Verdict
    reason: Optional[str] = None
    match: MatchResult = MatchResult.missing()
    age_exception: bool = False

    @classmethod
    def skip(cls, reason: SkipReason) -> "Decision":
        return cls(Verdict.SKIP, reason.value)

    @classmethod
    def keep(cls, match: MatchResult, age_exception: bool = False) -> "Decision":
        return cls(Verdict.KEEP, None, match, age_exception)

    @classmethod
    def remove(cls, reason: RemovalReason, match: MatchResult) -> "Decision":
        return cls(Verdict.REMOVE, reason.value, match)

    @classmethod
    def defer(cls, reason: RemovalReason, match: MatchResult, age_exception: bool = False) -> "Decision":
        return cls(Verdict.DEFER, reason.value, match, age_exception)


Rule = Callable[[GroupProfile, MatchResult], Optional[RemovalReason]]


def _is_dependent(match: MatchResult) -> bool:
    return match.in_age_band and not match.is_adult


def gender_rule(group: GroupProfile, match: MatchResult) -> Optional[RemovalReason]:
    """Gender-segregated groups, unless an adult woman shares the phone."""

    if not group.gender_segregated or match.has_adult_female or match.gender is None:
        return None
    if match.gender != group.segregated_gender:
        return RemovalReason.GENDER_MISMATCH
    return None


def representative_rule(group: GroupProfile, match: MatchResult) -> Optional[RemovalReason]:
    """Groups reserved for legal representatives of dependents."""

    if not group.representative_gated:
        return None
    if not match.is_adult and not match.child_phone_matches_legal_rep:
        return RemovalReason.PHONE_MISMATCH
    if match.is_adult and not match.is_legal_representative:
        return RemovalReason.NOT_A_REPRESENTATIVE
    if group.requires_age_band_representation and match.is_adult and not match.represents_age_band:
        return RemovalReason.NOT_REPRESENTING_AGE_BAND
    if match.is_legal_representative and not match.represents_minor:
        return RemovalReason.NO_LONGER_APPLICABLE
    return None


def age_band_rule(group: GroupProfile, match: MatchResult) -> Optional[RemovalReason]:
    """Generic age-band groups: effective representatives and consenting teens."""

    if not group.age_restricted or group.exempt:
        return None
    if match.is_adult and not (match.is_legal_representative and match.represents_minor):
        return RemovalReason.ADULT_NOT_REPRESENTATIVE
    if _is_dependent(match) and not match.has_accepted_terms:
        return RemovalReason.MISSING_TERMS_ACCEPTANCE
    return None


def unrestricted_group_rule(group: GroupProfile, match: MatchResult) -> Optional[RemovalReason]:
    if group.non_restricted and _is_dependent(match):
        return RemovalReason.AGE_RESTRICTED_IN_UNRESTRICTED
    return None


AGE_RULES: tuple[Rule, ...] = (representative_rule, age_band_rule, unrestricted_group_rule)


def membership_decision(match: MatchResult, age_exception: bool = False) -> Decision:
    """Fallback shared by operational groups and every rule-less outcome."""

    if not match.found:
        return Decision.defer(RemovalReason.NOT_FOUND, match, age_exception)
    if match.status is MembershipStatus.INACTIVE:
        return Decision.defer(RemovalReason.INACTIVE, match, age_exception)
    return Decision.keep(match, age_exception)


def _first_removal(rules: Iterable[Rule], group: GroupProfile, match: MatchResult) -> Optional[RemovalReason]:
    for rule in rules:
        reason = rule(group, match)
        if reason is not None:
            return reason
    return None


def evaluate(
    group: GroupProfile,
    phone: Optional[str],
    match: MatchResult,
    config: PolicyConfig,
    *,
    is_admin: bool = False,
) -> Decision:
    """Run the rule cascade for one participant.

    Precedence:
    1. admins, unresolved phones and never-remove numbers are skipped
    2. below the age floor is removed in any group
    3. operational groups only check membership status
    4. gender-segregated groups
    5-7. representative, age-band and unrestricted-group rules
    8. membership status fallback
    Numbers on the age-exception list bypass steps 2 and 5-7.
    """

    if is_admin:
        return Decision.skip(SkipReason.ADMIN)
    if not phone:
        return Decision.skip(SkipReason.UNRESOLVED)
    if config.is_never_remove(phone):
        return Decision.skip(SkipReason.PROTECTED)

    age_exception = config.is_age_exception(phone)

    if match.found and match.below_age_floor and not age_exception:
        return Decision.remove(RemovalReason.UNDER_MINIMUM_AGE, match)

    if group.operational:
        return membership_decision(match, age_exception)

    if match.found:
        reason = gender_rule(group, match)
        if reason is None and not age_exception:
            reason = _first_removal(AGE_RULES, group, match)
        if reason is not None:
            return Decision.remove(reason, match)

    return membership_decision(match, age_exception)
