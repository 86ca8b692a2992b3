"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely. A fresh
PolicyConfig is built once per cycle and passed into the evaluator; rule
functions never read the environment themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

DEFAULT_OPERATIONAL_PREFIX = "Org.MB"
DEFAULT_AGE_BAND_REPRESENTATIVE_GROUP = "R.JB | Familiares de JB 12+"
DEFAULT_NON_RESTRICTED_EXCEPTIONS = ("MB | N-SIGs Mensa Brasil", "MB | Xadrez")
DEFAULT_FEMALE_ONLY_PATTERN = r"^MB\s*\|\s*Mulheres$"


def _never(phone: str) -> bool:
    return False


@dataclass(frozen=True)
class PolicyConfig:
    """Inputs of the removal policy that vary per deployment."""

    is_never_remove: Callable[[str], bool] = _never
    is_age_exception: Callable[[str], bool] = _never
    operational_prefix: str = DEFAULT_OPERATIONAL_PREFIX
    age_band_representative_group: str = DEFAULT_AGE_BAND_REPRESENTATIVE_GROUP
    non_restricted_exception_groups: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_NON_RESTRICTED_EXCEPTIONS)
    )
    female_only_pattern: str = DEFAULT_FEMALE_ONLY_PATTERN
    # Ratio of failed evaluations above which the cycle refuses to publish.
    max_error_ratio: Optional[float] = None


@dataclass(frozen=True)
class GateConfig:
    """Notification gate settings."""

    waiting_period: timedelta
    # On unexpected errors the gate answers "remove" unless this is disabled.
    fail_open: bool = True


@dataclass(frozen=True)
class QueueConfig:
    """Destination queue names consumed by the downstream worker."""

    remove: str = "removeQueue"
    add: str = "addQueue"
