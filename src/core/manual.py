"""Manual removal of one contact from every group it belongs to."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from core.config import QueueConfig
from core.errors import GroupwardenError
from core.identity import PhoneIdentityResolver
from core.models import ActionQueueItem, GroupDescriptor
from core.phones import MIN_PHONE_DIGITS, canonical_phone, ninth_digit_variants, to_digits
from core.policy import RemovalReason
from core.ports import QueuePublisherPort

LOGGER = logging.getLogger(__name__)


class ProtectedPhoneError(GroupwardenError):
    """The requested phone is on the never-remove list."""


def target_spellings(phone: str) -> set[str]:
    digits = to_digits(phone)
    if len(digits) < MIN_PHONE_DIGITS:
        raise ValueError(f"Invalid phone: {phone!r}")
    spelling = canonical_phone(f"+{digits}")
    return set(ninth_digit_variants(spelling))


async def find_removals(
    groups: Iterable[GroupDescriptor],
    spellings: set[str],
    resolver: PhoneIdentityResolver,
) -> list[ActionQueueItem]:
    items: list[ActionQueueItem] = []
    seen_groups: set[str] = set()
    for group in groups:
        if group.id in seen_groups:
            continue
        for participant in group.participants:
            phone = await resolver.resolve(participant.descriptor)
            if phone and phone in spellings:
                seen_groups.add(group.id)
                items.append(
                    ActionQueueItem(
                        registration_id=None,
                        group_id=group.id,
                        phone=phone,
                        reason=RemovalReason.MANUAL_REMOVAL.value,
                        community_id=group.community_id,
                    )
                )
                break
    return items


async def queue_contact_removal(
    phone: str,
    groups: Iterable[GroupDescriptor],
    resolver: PhoneIdentityResolver,
    publisher: QueuePublisherPort,
    is_never_remove: Callable[[str], bool],
    queues: QueueConfig = QueueConfig(),
) -> list[ActionQueueItem]:
    """Replace the remove queue with one request per group containing ``phone``.

    Nothing is published when the contact is not found in any group.
    """

    if is_never_remove(phone):
        raise ProtectedPhoneError(f"{to_digits(phone)} is protected and cannot be removed")

    spellings = target_spellings(phone)
    items = await find_removals(groups, spellings, resolver)
    if not items:
        LOGGER.warning("Contact %s not found in any visible group (variants: %s)", phone, sorted(spellings))
        return items

    if not publisher.publish(queues.remove, [item.to_payload() for item in items]):
        raise GroupwardenError(f"Failed to publish removals to {queues.remove}")

    for item in items:
        LOGGER.info("Queued removal of %s from %s (community %s)", item.phone, item.group_id, item.community_id)
    return items
