"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types (WhatsApp payloads, SQL rows,
queue wire formats).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

FEMALE = "Feminino"
MALE = "Masculino"


class MembershipStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class CommunicationStatus(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class RegistryRecord:
    """One (phone, registration) pairing read from the registry.

    Age flags describe the owner of the phone. The ``represents_*`` flags are
    only set on legal-representative rows and describe the dependent.
    """

    phone: str
    registration_id: int
    gender: Optional[str]
    status: MembershipStatus
    below_age_floor: bool = False
    in_age_band: bool = False
    is_adult: bool = False
    is_legal_representative: bool = False
    represents_minor: bool = False
    represents_age_band: bool = False
    child_phone_matches_legal_rep: bool = True
    has_accepted_terms: bool = False


@dataclass(frozen=True)
class MatchResult:
    """Aggregated registry answer for one phone spelling."""

    found: bool
    status: Optional[MembershipStatus] = None
    registration_id: Optional[int] = None
    gender: Optional[str] = None
    below_age_floor: bool = False
    in_age_band: bool = False
    is_adult: bool = False
    is_legal_representative: bool = False
    represents_minor: bool = False
    represents_age_band: bool = False
    child_phone_matches_legal_rep: bool = True
    has_accepted_terms: bool = False
    has_adult_female: bool = False

    @classmethod
    def missing(cls) -> "MatchResult":
        return cls(found=False)


@dataclass(frozen=True)
class ParticipantDescriptor:
    """Protocol-level identity of a group member, as delivered by the transport."""

    id: Optional[str] = None
    jid: Optional[str] = None
    lid: Optional[str] = None
    phone_number: Optional[str] = None
    # Phone-number JID supplied next to an anonymised (LID) primary id.
    alt_jid: Optional[str] = None


@dataclass(frozen=True)
class Participant:
    descriptor: ParticipantDescriptor
    is_admin: bool = False


@dataclass(frozen=True)
class GroupDescriptor:
    id: str
    display_name: str
    participants: tuple[Participant, ...] = ()
    parent_community_id: Optional[str] = None
    associated_announce_group_id: Optional[str] = None
    is_administered_by_engine: bool = False

    @property
    def community_id(self) -> Optional[str]:
        return self.associated_announce_group_id or self.parent_community_id


@dataclass(frozen=True)
class CommunicationRecord:
    phone: str
    reason: str
    sent_at: datetime
    status: CommunicationStatus = CommunicationStatus.UNRESOLVED


@dataclass(frozen=True)
class ActionQueueItem:
    """One removal request for the downstream worker."""

    registration_id: Optional[int]
    group_id: str
    phone: str
    reason: str
    community_id: Optional[str] = None
    kind: str = "remove"

    def to_payload(self) -> dict[str, Any]:
        # Key spelling is the downstream worker's contract.
        return {
            "type": self.kind,
            "registration_id": self.registration_id,
            "groupId": self.group_id,
            "phone": self.phone,
            "reason": self.reason,
            "communityId": self.community_id,
        }


@dataclass(frozen=True)
class JoinRequest:
    """A pending request to add a registration to a group."""

    request_id: int
    registration_id: int
    group_id: str
    attempts: int = 0
    last_attempt: Optional[datetime] = None


@dataclass(frozen=True)
class RegistrationFlags:
    """Per-registration eligibility used when planning additions."""

    registration_id: int
    below_age_floor: bool
    in_age_band: bool
    has_accepted_terms: bool


@dataclass(frozen=True)
class AddQueueItem:
    request_id: int
    registration_id: int
    group_id: str
    group_type: Optional[str]
    kind: str = "add"

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "request_id": self.request_id,
            "registration_id": self.registration_id,
            "group_id": self.group_id,
            "group_type": self.group_type,
        }


@dataclass
class AddSummary:
    pending_additions: int = 0
    registrations_pending: int = 0
    blocked_requests: int = 0
    blocked_registrations: int = 0
    skipped: dict[str, int] = field(default_factory=dict)
