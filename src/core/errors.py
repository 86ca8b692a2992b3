"""Error taxonomy for the compliance core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class GroupwardenError(Exception):
    """Base class for errors raised by groupwarden."""


class RegistryUnavailableError(GroupwardenError):
    """The registry could not be read; the whole cycle must abort."""


class CycleAbortedError(GroupwardenError):
    """The cycle was stopped before publishing."""


class NotificationError(GroupwardenError):
    """Outbound notification dispatch failed."""


@dataclass(frozen=True)
class EvaluationError:
    """A participant, or a whole group when phone is None, that could not be evaluated."""

    group_id: str
    phone: Optional[str]
    error: BaseException

    def __str__(self) -> str:
        return f"{self.group_id}/{self.phone or '?'}: {self.error!r}"
