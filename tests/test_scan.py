from __future__ import annotations

import asyncio

from core.identity import PhoneIdentityResolver
from core.models import GroupDescriptor, JoinRequest, MembershipStatus, Participant, ParticipantDescriptor, RegistryRecord
from core.registry import build_index
from core.scan import EXIT_REASON, scan_groups

KNOWN = "5511911110000"
NEWCOMER = "5511912345678"
STRANGER = "5511933330000"
PROTECTED = "5511944440000"
LEFT = "5511955550000"


class FakeMembership:
    def __init__(self) -> None:
        self.open_members = {"group@g.us": [KNOWN, LEFT]}
        self.exits: list[tuple[str, str, str]] = []
        self.entries: list[tuple[int, str, str, MembershipStatus]] = []
        self.fulfilled: list[int] = []

    def get_open_members(self, group_id: str) -> list[str]:
        if group_id == "broken@g.us":
            raise RuntimeError("query failed")
        return list(self.open_members.get(group_id, []))

    def record_exit(self, phone: str, group_id: str, reason: str) -> None:
        self.exits.append((phone, group_id, reason))

    def record_entry(self, registration_id: int, phone: str, group_id: str, status: MembershipStatus) -> None:
        self.entries.append((registration_id, phone, group_id, status))

    def get_pending_requests(self, group_id: str) -> list[JoinRequest]:
        return [JoinRequest(request_id=70, registration_id=7, group_id=group_id), JoinRequest(80, 8, group_id)]

    def get_registration_phones(self, registration_id: int) -> list[str]:
        # The registry stores the legacy eight-digit spelling.
        return {7: ["(11) 1234-5678"], 8: ["(21) 90000-1111"]}[registration_id]

    def mark_request_fulfilled(self, request_id: int) -> None:
        self.fulfilled.append(request_id)


def _participant(phone: str) -> Participant:
    return Participant(ParticipantDescriptor(id=f"{phone}@s.whatsapp.net"))


def _index():
    return build_index(
        [
            RegistryRecord(phone=f"+{KNOWN}", registration_id=1, gender=None, status=MembershipStatus.ACTIVE),
            RegistryRecord(phone=f"+{NEWCOMER}", registration_id=7, gender=None, status=MembershipStatus.INACTIVE),
        ]
    )


def test_scan_records_entries_exits_and_fulfilled_requests() -> None:
    membership = FakeMembership()
    group = GroupDescriptor(
        id="group@g.us",
        display_name="MB | Geral",
        participants=(
            _participant(KNOWN),
            _participant(NEWCOMER),
            _participant(STRANGER),
            _participant(PROTECTED),
            Participant(ParticipantDescriptor(id="999@lid")),
        ),
    )

    summary = asyncio.run(
        scan_groups([group], _index(), membership, PhoneIdentityResolver(), lambda phone: phone == PROTECTED)
    )

    assert membership.exits == [(LEFT, "group@g.us", EXIT_REASON)]
    assert membership.entries == [(7, NEWCOMER, "group@g.us", MembershipStatus.INACTIVE)]
    assert membership.fulfilled == [70]
    assert summary.entries == 1
    assert summary.exits == 1
    assert summary.unknown_entries == 1
    assert summary.fulfilled_requests == 1
    assert summary.groups == 1


def test_scan_continues_after_group_failure() -> None:
    membership = FakeMembership()
    groups = [
        GroupDescriptor(id="broken@g.us", display_name="MB | Quebrado"),
        GroupDescriptor(id="group@g.us", display_name="MB | Geral", participants=(_participant(KNOWN),)),
    ]

    summary = asyncio.run(scan_groups(groups, _index(), membership, PhoneIdentityResolver(), lambda phone: False))

    assert summary.failed_groups == 1
    assert summary.groups == 1
    assert membership.exits == [(LEFT, "group@g.us", EXIT_REASON)]
