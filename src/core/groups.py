"""Group classification from display names (core domain).

Classification is an ordered first-match cascade. The evaluator also needs a
few finer predicates (exempt variant, female-only, non-restricted), so both
are computed once per group into a GroupProfile and the evaluator branches on
that data instead of re-running name patterns.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import re
from typing import Optional

from core.config import PolicyConfig
from core.models import FEMALE

LOGGER = logging.getLogger(__name__)

_AGE_BAND = re.compile(r"JB", re.IGNORECASE)
_REPRESENTATIVE_BAND = re.compile(r"R\.?\s?JB", re.IGNORECASE)
_EXEMPT_BAND = re.compile(r"A\.?\s?JB", re.IGNORECASE)
_MEMBER_TOKEN = re.compile(r"(\b|\[|\()MB(\b|\]|\))")


class GroupType(str, Enum):
    ORG = "OrgMB"
    RJB = "RJB"
    JB = "JB"
    MB = "MB"
    AJB = "AJB"


def is_operational_group(name: str, prefix: str) -> bool:
    return bool(prefix) and name.strip().startswith(prefix)


def is_representative_group(name: str) -> bool:
    return bool(_REPRESENTATIVE_BAND.search(name))


def is_age_band_group(name: str) -> bool:
    """Contains the age-band marker and is not the R. variant.

    Every other band variant (``M.JB``, ``A.JB``) lands here as well.
    """

    return bool(_AGE_BAND.search(name)) and not _REPRESENTATIVE_BAND.search(name)


def is_member_token_group(name: str) -> bool:
    return bool(_MEMBER_TOKEN.search(name.strip().upper()))


def is_exempt_group(name: str) -> bool:
    return bool(_EXEMPT_BAND.search(name))


def is_non_restricted_group(name: str, exception_names: frozenset[str]) -> bool:
    return not _AGE_BAND.search(name) and name not in exception_names


def is_female_only_group(name: str, pattern: str) -> bool:
    return bool(re.match(pattern, name.strip(), re.IGNORECASE))


def classify(display_name: str, operational_prefix: str = "") -> Optional[GroupType]:
    """Return the group type for a display name, or None when nothing applies."""

    try:
        if is_operational_group(display_name, operational_prefix):
            return GroupType.ORG
        if is_representative_group(display_name):
            return GroupType.RJB
        if is_age_band_group(display_name):
            return GroupType.JB
        if is_member_token_group(display_name):
            return GroupType.MB
        if is_exempt_group(display_name):
            return GroupType.AJB
    except (re.error, TypeError, AttributeError):
        LOGGER.exception("Could not classify group %r", display_name)
        return None
    return None


@dataclass(frozen=True)
class GroupProfile:
    """Classification plus the capability flags the evaluator branches on."""

    name: str
    group_type: Optional[GroupType]
    operational: bool = False
    representative_gated: bool = False
    requires_age_band_representation: bool = False
    age_restricted: bool = False
    exempt: bool = False
    non_restricted: bool = False
    gender_segregated: bool = False
    segregated_gender: Optional[str] = None


def profile_group(display_name: str, config: PolicyConfig) -> GroupProfile:
    """Classify a group once and derive its policy capability flags."""

    group_type = classify(display_name, config.operational_prefix)
    female_only = is_female_only_group(display_name, config.female_only_pattern)
    return GroupProfile(
        name=display_name,
        group_type=group_type,
        operational=group_type is GroupType.ORG,
        representative_gated=group_type is GroupType.RJB,
        requires_age_band_representation=display_name.strip() == config.age_band_representative_group,
        age_restricted=group_type is GroupType.JB,
        exempt=is_exempt_group(display_name),
        non_restricted=is_non_restricted_group(display_name, config.non_restricted_exception_groups),
        gender_segregated=female_only,
        segregated_gender=FEMALE if female_only else None,
    )
