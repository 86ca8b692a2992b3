"""Notification gate: warn first, remove after a waiting period.

Some removals are not executed immediately. The member is warned, the warning
is recorded in the communication log, and only once the waiting period has
passed without remediation does the gate allow the removal.

The lookup uses the latest *unresolved* warning for the phone whatever its
reason, so a phone runs a single waiting clock. A warning with a different
reason restarts that clock with a fresh notification.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable

from core.config import GateConfig
from core.ports import CommunicationLogPort, NotifierPort

LOGGER = logging.getLogger(__name__)

# Fixed threshold after which a stale warning is sent again.
RENOTIFY_AFTER = timedelta(days=7)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class NotificationGate:
    """Decide whether a deferred removal may happen now."""

    def __init__(
        self,
        log: CommunicationLogPort,
        notifier: NotifierPort,
        config: GateConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._log = log
        self._notifier = notifier
        self._config = config
        self._clock = clock
        # Writes for one phone are serialised to avoid a duplicate-send race.
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.warnings_sent = 0

    async def should_remove_now(self, phone: str, reason: str) -> bool:
        async with self._locks[phone]:
            try:
                return await self._evaluate(phone, reason)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception(
                    "Notification gate failed for %s (%s); fail_open=%s",
                    phone,
                    reason,
                    self._config.fail_open,
                )
                return self._config.fail_open

    async def _evaluate(self, phone: str, reason: str) -> bool:
        now = self._clock()
        last = self._log.get_latest_unresolved(phone)

        if last is None or last.reason != reason:
            await self._warn(phone, reason, now)
            return False

        elapsed = now - _as_aware(last.sent_at)
        if elapsed > RENOTIFY_AFTER:
            await self._warn(phone, reason, now)
            return False

        if elapsed > self._config.waiting_period:
            LOGGER.info("Waiting period ended for %s (%s); removing", phone, reason)
            return True

        LOGGER.info("Waiting period not yet expired for %s (%s); skipping removal", phone, reason)
        return False

    async def _warn(self, phone: str, reason: str, now: datetime) -> None:
        # The log write comes first: a failed dispatch still counts as a warning.
        self._log.upsert_communication(phone, reason, now)
        self.warnings_sent += 1
        try:
            await self._notifier.send(phone, reason)
        except Exception:
            LOGGER.warning("Notification dispatch failed for %s (%s)", phone, reason, exc_info=True)
