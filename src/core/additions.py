"""Join request planning (core domain).

Pending join requests are validated against registration eligibility before
they reach the downstream worker's add queue. Like removals, the add queue is
replaced as a whole once per cycle.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
import logging
from typing import AbstractSet, Iterable, Optional

from core.config import PolicyConfig, QueueConfig
from core.groups import GroupType, classify
from core.models import AddQueueItem, AddSummary, GroupDescriptor, JoinRequest, RegistrationFlags
from core.ports import MembershipPort, QueuePublisherPort

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class _GroupRequests:
    group: GroupDescriptor
    group_type: Optional[GroupType]
    requests: list[JoinRequest]


def skip_reason(
    flags: Optional[RegistrationFlags],
    group_type: Optional[GroupType],
) -> Optional[str]:
    """Return why a request cannot be fulfilled, or None when it can."""

    if flags is None:
        return "unknown registration"
    if flags.below_age_floor:
        return "under minimum age"
    if group_type is GroupType.JB:
        if not flags.in_age_band:
            return "outside age band"
        if not flags.has_accepted_terms:
            return "missing terms acceptance"
    return None


def plan_additions(
    groups: Iterable[GroupDescriptor],
    membership: MembershipPort,
    policy: PolicyConfig,
    blocked_registrations: AbstractSet[int] = frozenset(),
) -> tuple[list[AddQueueItem], AddSummary]:
    collected: list[_GroupRequests] = []
    registration_ids: set[int] = set()
    for group in groups:
        try:
            requests = membership.get_pending_requests(group.id)
        except Exception:
            LOGGER.exception("Error reading join requests for %s", group.display_name)
            continue
        group_type = classify(group.display_name, policy.operational_prefix)
        collected.append(_GroupRequests(group, group_type, requests))
        registration_ids.update(request.registration_id for request in requests)

    flags_by_registration = membership.get_registration_flags(registration_ids) if registration_ids else {}

    items: list[AddQueueItem] = []
    summary = AddSummary()
    skipped: Counter = Counter()
    pending_registrations: set[int] = set()
    blocked_seen: set[int] = set()

    for entry in collected:
        for request in entry.requests:
            if request.registration_id in blocked_registrations:
                summary.blocked_requests += 1
                blocked_seen.add(request.registration_id)
                LOGGER.info(
                    "Registration %s blocked from addition to %s",
                    request.registration_id,
                    entry.group.display_name,
                )
                continue

            reason = skip_reason(flags_by_registration.get(request.registration_id), entry.group_type)
            if reason is not None:
                skipped[reason] += 1
                LOGGER.info(
                    "Skipping request %s for %s in %s: %s",
                    request.request_id,
                    request.registration_id,
                    entry.group.display_name,
                    reason,
                )
                continue

            items.append(
                AddQueueItem(
                    request_id=request.request_id,
                    registration_id=request.registration_id,
                    group_id=entry.group.id,
                    group_type=entry.group_type.value if entry.group_type else None,
                )
            )
            pending_registrations.add(request.registration_id)

    summary.pending_additions = len(items)
    summary.registrations_pending = len(pending_registrations)
    summary.blocked_registrations = len(blocked_seen)
    summary.skipped = dict(skipped)
    return items, summary


def run_additions(
    groups: Iterable[GroupDescriptor],
    membership: MembershipPort,
    publisher: QueuePublisherPort,
    policy: PolicyConfig,
    queues: QueueConfig = QueueConfig(),
    blocked_registrations: AbstractSet[int] = frozenset(),
) -> AddSummary:
    items, summary = plan_additions(groups, membership, policy, blocked_registrations)
    if publisher.publish(queues.add, [item.to_payload() for item in items]):
        LOGGER.info("Added %s addition requests to %s", len(items), queues.add)
    else:
        LOGGER.error("Error publishing addition requests to %s", queues.add)
    return summary
