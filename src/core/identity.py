"""Participant identity resolution (core domain).

WhatsApp addresses a member either by a phone-number JID
(``5511987654321@s.whatsapp.net``) or by an anonymised LID (``1234@lid``).
The resolver turns whatever the transport delivered into a bare phone number.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from core.models import ParticipantDescriptor
from core.phones import MIN_PHONE_DIGITS, to_digits
from core.ports import LidMappingPort

LOGGER = logging.getLogger(__name__)

PHONE_DOMAINS = frozenset({"s.whatsapp.net", "c.us"})
LID_DOMAIN = "lid"

LidLookup = Callable[[str], Union[Optional[str], Awaitable[Optional[str]]]]


def _sane_digits(value: Optional[str]) -> Optional[str]:
    digits = to_digits(value)
    return digits if len(digits) >= MIN_PHONE_DIGITS else None


def phone_from_jid(jid: Optional[str]) -> Optional[str]:
    """Return the phone of a phone-number JID, or None for any other JID."""

    if not jid or "@" not in jid:
        return None
    user, _, domain = jid.partition("@")
    # Device suffixes (``user:12@s.whatsapp.net``) are not part of the number.
    user = user.split(":", 1)[0]
    if not user or domain not in PHONE_DOMAINS:
        return None
    return _sane_digits(user)


def lid_from_jid(jid: Optional[str]) -> Optional[str]:
    if not jid or "@" not in jid:
        return None
    _, _, domain = jid.partition("@")
    return jid if domain == LID_DOMAIN else None


class PhoneIdentityResolver:
    """Resolve participant descriptors to phones, caching LID lookups."""

    def __init__(
        self,
        lid_lookup: Optional[LidLookup] = None,
        mapping_store: Optional[LidMappingPort] = None,
    ) -> None:
        self._lid_lookup = lid_lookup
        self._mapping_store = mapping_store
        self._cache: dict[str, str] = {}

    async def resolve(self, descriptor: ParticipantDescriptor) -> Optional[str]:
        """Return the participant's phone, or None when every tier fails.

        Tiers, in order: explicit alternate JID, embedded phone field, a
        phone-number primary id, and finally the injected LID lookup.
        """

        phone = phone_from_jid(descriptor.alt_jid)
        if phone:
            return phone

        phone = _sane_digits(descriptor.phone_number)
        if phone:
            return phone

        primary = descriptor.id or descriptor.jid
        phone = phone_from_jid(primary)
        if phone:
            return phone

        lid = lid_from_jid(primary) or lid_from_jid(descriptor.lid)
        if lid is None:
            return None
        return await self._resolve_lid(lid)

    async def _resolve_lid(self, lid: str) -> Optional[str]:
        if lid in self._cache:
            return self._cache[lid]
        if self._lid_lookup is None:
            return None

        try:
            resolved = self._lid_lookup(lid)
            if inspect.isawaitable(resolved):
                resolved = await resolved
        except Exception:
            LOGGER.warning("LID lookup failed for %s", lid, exc_info=True)
            return None

        phone = phone_from_jid(resolved) or _sane_digits(resolved)
        if not phone:
            return None

        self._cache[lid] = phone
        if self._mapping_store is not None:
            try:
                self._mapping_store.save_lid_mapping(lid, phone)
            except Exception:
                LOGGER.warning("Could not persist LID mapping %s -> %s", lid, phone, exc_info=True)
        return phone
