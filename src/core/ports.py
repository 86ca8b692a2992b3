"""Ports (interfaces) used by the compliance core.

Ports define the minimal contracts for the registry, communication log,
notification and queue adapters so that the core can be reused with
different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Protocol, Sequence

from core.models import (
    CommunicationRecord,
    JoinRequest,
    MembershipStatus,
    RegistrationFlags,
    RegistryRecord,
)


class RegistryPort(Protocol):
    """Read access to the membership registry."""

    def fetch_registry_records(self) -> list[RegistryRecord]:
        ...


class CommunicationLogPort(Protocol):
    """Warnings already sent to members, one record per (phone, reason)."""

    def get_latest_unresolved(self, phone: str) -> Optional[CommunicationRecord]:
        ...

    def upsert_communication(self, phone: str, reason: str, now: datetime) -> None:
        ...


class LidMappingPort(Protocol):
    def save_lid_mapping(self, lid: str, phone: str) -> None:
        ...


class MembershipPort(Protocol):
    """Group membership history and join requests."""

    def get_open_members(self, group_id: str) -> list[str]:
        ...

    def record_exit(self, phone: str, group_id: str, reason: str) -> None:
        ...

    def record_entry(
        self,
        registration_id: int,
        phone: str,
        group_id: str,
        status: MembershipStatus,
    ) -> None:
        ...

    def get_pending_requests(self, group_id: str) -> list[JoinRequest]:
        ...

    def get_registration_phones(self, registration_id: int) -> list[str]:
        ...

    def mark_request_fulfilled(self, request_id: int) -> None:
        ...

    def get_registration_flags(self, registration_ids: Iterable[int]) -> dict[int, RegistrationFlags]:
        ...


class NotifierPort(Protocol):
    """Outbound warning sent before a gated removal."""

    async def send(self, phone: str, reason: str) -> None:
        ...


class QueuePublisherPort(Protocol):
    """Replace-semantics destination queue."""

    def publish(self, queue_name: str, payloads: Sequence[dict[str, Any]]) -> bool:
        ...
