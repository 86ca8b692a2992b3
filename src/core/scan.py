"""Group membership tracking.

Keeps the membership history in step with what the groups actually contain:
members who left get an exit record, new registry-known members get an entry
record, and join requests are marked fulfilled once one of the registration's
phones shows up in the group.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Iterable

from core import registry
from core.identity import PhoneIdentityResolver
from core.models import GroupDescriptor
from core.phones import last8
from core.ports import MembershipPort
from core.registry import PhoneIndex

LOGGER = logging.getLogger(__name__)

EXIT_REASON = "Left group"


@dataclass
class ScanSummary:
    groups: int = 0
    entries: int = 0
    exits: int = 0
    unknown_entries: int = 0
    fulfilled_requests: int = 0
    failed_groups: int = 0


async def _current_members(group: GroupDescriptor, resolver: PhoneIdentityResolver) -> list[str]:
    members: list[str] = []
    for participant in group.participants:
        phone = await resolver.resolve(participant.descriptor)
        if phone:
            members.append(phone)
    return members


async def scan_groups(
    groups: Iterable[GroupDescriptor],
    index: PhoneIndex,
    membership: MembershipPort,
    resolver: PhoneIdentityResolver,
    is_ignored: Callable[[str], bool],
) -> ScanSummary:
    summary = ScanSummary()
    for group in groups:
        try:
            await _scan_group(group, index, membership, resolver, is_ignored, summary)
            summary.groups += 1
        except Exception:
            summary.failed_groups += 1
            LOGGER.exception("Error scanning group %s", group.display_name)
    return summary


async def _scan_group(
    group: GroupDescriptor,
    index: PhoneIndex,
    membership: MembershipPort,
    resolver: PhoneIdentityResolver,
    is_ignored: Callable[[str], bool],
    summary: ScanSummary,
) -> None:
    LOGGER.info("Scanning group %s", group.display_name)
    previous = set(membership.get_open_members(group.id))
    current = await _current_members(group, resolver)
    current_set = set(current)

    present_tails = {tail for tail in (last8(phone) for phone in current) if tail}
    for request in membership.get_pending_requests(group.id):
        for phone in membership.get_registration_phones(request.registration_id):
            if last8(phone) in present_tails:
                membership.mark_request_fulfilled(request.request_id)
                summary.fulfilled_requests += 1
                LOGGER.info(
                    "Request %s for %s is fulfilled in %s",
                    request.request_id,
                    phone,
                    group.display_name,
                )
                break

    for phone in sorted(previous - current_set):
        LOGGER.info("Number %s is no longer in %s", phone, group.display_name)
        membership.record_exit(phone, group.id, EXIT_REASON)
        summary.exits += 1

    for phone in current:
        if is_ignored(phone) or phone in previous:
            continue
        found = registry.match(index, phone)
        if found.found:
            LOGGER.info("Number %s is new to %s", phone, group.display_name)
            membership.record_entry(found.registration_id, phone, group.id, found.status)
            summary.entries += 1
        else:
            LOGGER.warning("Number %s is new to %s, but no registry match found", phone, group.display_name)
            summary.unknown_entries += 1
