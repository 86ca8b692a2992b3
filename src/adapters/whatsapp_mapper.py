"""WhatsApp-to-core group mapping adapter.

The WhatsApp session lives in a separate transport process that exports a
JSON snapshot of the groups it participates in (Baileys ``GroupMetadata``
shape) together with its own JIDs and the LID mappings it knows. This module
keeps those payload details out of the core.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from core.models import GroupDescriptor, Participant, ParticipantDescriptor

LOGGER = logging.getLogger(__name__)


def _bare_jid(jid: Optional[str]) -> Optional[str]:
    """Drop the device suffix: ``user:3@s.whatsapp.net`` -> ``user@s.whatsapp.net``."""

    if not jid or "@" not in jid:
        return jid
    user, _, domain = jid.partition("@")
    return f"{user.split(':', 1)[0]}@{domain}"


def participant_from_payload(raw: Union[str, dict[str, Any]]) -> Participant:
    if isinstance(raw, str):
        return Participant(ParticipantDescriptor(id=raw))

    raw_id = raw.get("id")
    if isinstance(raw_id, dict):
        # Legacy shape: {"id": {"user": "5511..."}}
        user = raw_id.get("user")
        raw_id = f"{user}@s.whatsapp.net" if user else None

    descriptor = ParticipantDescriptor(
        id=raw_id,
        jid=raw.get("jid"),
        lid=raw.get("lid"),
        phone_number=raw.get("phoneNumber") or raw.get("phone_number"),
        alt_jid=raw.get("participantAlt") or raw.get("alt_jid"),
    )
    return Participant(descriptor=descriptor, is_admin=bool(raw.get("admin")))


def _is_me(raw: Union[str, dict[str, Any]], my_ids: set[str]) -> bool:
    if isinstance(raw, str):
        return _bare_jid(raw) in my_ids
    candidates = (raw.get("id"), raw.get("jid"), raw.get("lid"), raw.get("phoneNumber"))
    return any(isinstance(value, str) and _bare_jid(value) in my_ids for value in candidates)


def is_admin_for_me(participants: Iterable[Union[str, dict[str, Any]]], my_ids: set[str]) -> bool:
    """True when our own account is listed with an admin role."""

    for raw in participants:
        if not _is_me(raw, my_ids):
            continue
        if isinstance(raw, str):
            # Bare JIDs carry no role information.
            return False
        return bool(raw.get("admin"))
    return False


def groups_from_snapshot(snapshot: dict[str, Any]) -> list[GroupDescriptor]:
    """Build GroupDescriptors from an exported snapshot."""

    my_ids = {_bare_jid(value) for value in (snapshot.get("me"), snapshot.get("me_lid")) if value}
    if not my_ids:
        raise ValueError("Snapshot does not identify the bot account ('me')")

    raw_groups = snapshot.get("groups", [])
    if isinstance(raw_groups, dict):
        raw_groups = list(raw_groups.values())

    # Communities expose an announcement group; removals from the community
    # are addressed through it.
    announce_by_parent: dict[str, str] = {}
    for raw in raw_groups:
        parent = raw.get("linkedParent")
        if raw.get("isCommunityAnnounce") and parent:
            announce_by_parent[parent] = raw["id"]

    groups: list[GroupDescriptor] = []
    for raw in raw_groups:
        if raw.get("isCommunity"):
            continue
        participants = raw.get("participants", [])
        parent = raw.get("linkedParent")
        groups.append(
            GroupDescriptor(
                id=raw["id"],
                display_name=raw.get("subject") or raw.get("name") or raw["id"],
                participants=tuple(participant_from_payload(p) for p in participants),
                parent_community_id=parent,
                associated_announce_group_id=announce_by_parent.get(parent) if parent else None,
                is_administered_by_engine=is_admin_for_me(participants, my_ids),
            )
        )
    return groups


def load_snapshot(path: Union[str, Path]) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


class SnapshotLidLookup:
    """Resolve LIDs from the mappings exported with the snapshot."""

    def __init__(self, mappings: dict[str, str], fallback=None) -> None:
        self._mappings = mappings
        self._fallback = fallback

    @classmethod
    def from_snapshot(cls, snapshot: dict[str, Any], fallback=None) -> "SnapshotLidLookup":
        return cls(dict(snapshot.get("lid_mappings", {})), fallback)

    def __call__(self, lid: str) -> Optional[str]:
        found = self._mappings.get(lid)
        if found:
            return found
        if self._fallback is not None:
            return self._fallback(lid)
        return None
