"""Compliance cycle orchestration.

This module is integration-agnostic. It only relies on ports for the
registry, the notification gate and the destination queue. One cycle runs in
a strict order:
1) Read the registry and build the phone index (fatal on failure)
2) For each administered group, classify it once
3) For each participant: resolve phone, match, evaluate the rule cascade
4) Deferred removals go through the notification gate
5) Publish the whole batch once, replacing the previous one

Publishing is the only externally visible commit point, so a cancelled or
aborted cycle leaves the previous batch untouched.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
import logging
from typing import Iterable, Optional

from core import registry
from core.config import PolicyConfig, QueueConfig
from core.errors import CycleAbortedError, EvaluationError, RegistryUnavailableError
from core.gate import NotificationGate
from core.groups import GroupProfile, profile_group
from core.identity import PhoneIdentityResolver
from core.models import ActionQueueItem, GroupDescriptor, MatchResult, Participant
from core.policy import Decision, SkipReason, Verdict, evaluate
from core.ports import QueuePublisherPort, RegistryPort
from core.registry import PhoneIndex

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParticipantOutcome:
    group_id: str
    phone: Optional[str]
    decision: Decision


@dataclass
class CycleReport:
    """Collects every decision and every per-participant error of a cycle."""

    outcomes: list[ParticipantOutcome] = field(default_factory=list)
    errors: list[EvaluationError] = field(default_factory=list)
    items: list[ActionQueueItem] = field(default_factory=list)
    counts: Counter = field(default_factory=Counter)
    groups_evaluated: int = 0
    groups_ignored: int = 0
    published: bool = False

    def record(self, group_id: str, phone: Optional[str], decision: Decision) -> None:
        self.outcomes.append(ParticipantOutcome(group_id, phone, decision))
        self.counts[decision.verdict.value] += 1
        if decision.verdict is Verdict.SKIP and decision.reason == SkipReason.PROTECTED.value:
            self.counts["protected"] += 1
        if decision.age_exception:
            self.counts["age_exception"] += 1

    def fail(self, error: EvaluationError) -> None:
        self.errors.append(error)
        self.counts["error"] += 1

    @property
    def evaluated(self) -> int:
        return len(self.outcomes) + len(self.errors)

    @property
    def error_ratio(self) -> float:
        if not self.evaluated:
            return 0.0
        return len(self.errors) / self.evaluated

    def summary(self) -> dict[str, int]:
        return {
            "groups": self.groups_evaluated,
            "participants": self.evaluated,
            "kept": self.counts[Verdict.KEEP.value],
            "skipped": self.counts[Verdict.SKIP.value],
            "protected": self.counts["protected"],
            "removed": self.counts[Verdict.REMOVE.value],
            "deferred": self.counts[Verdict.DEFER.value],
            "gated_removals": self.counts["gated_removal"],
            "warned": self.counts["warned"],
            "errors": len(self.errors),
            "queued": len(self.items),
        }


def load_phone_index(source: RegistryPort) -> PhoneIndex:
    """Read the registry and index it, refusing to continue without data.

    An empty index would classify every participant as "not found", so an
    empty read is treated like a failed one.
    """

    try:
        records = source.fetch_registry_records()
    except Exception as exc:
        raise RegistryUnavailableError("Registry read failed") from exc
    if not records:
        raise RegistryUnavailableError("Registry returned no records")
    index = registry.build_index(records)
    LOGGER.info("Registry loaded: %s records, %s phone spellings", len(records), len(index))
    return index


class ComplianceEngine:
    """Evaluates administered groups and publishes the removal batch."""

    def __init__(
        self,
        registry_source: RegistryPort,
        gate: NotificationGate,
        publisher: QueuePublisherPort,
        resolver: PhoneIdentityResolver,
        policy: PolicyConfig,
        queues: QueueConfig = QueueConfig(),
    ) -> None:
        self._registry = registry_source
        self._gate = gate
        self._publisher = publisher
        self._resolver = resolver
        self._policy = policy
        self._queues = queues

    async def run_cycle(
        self,
        groups: Iterable[GroupDescriptor],
        index: Optional[PhoneIndex] = None,
    ) -> CycleReport:
        """Evaluate all groups and replace the remove queue with the result."""

        if index is None:
            index = load_phone_index(self._registry)

        report = CycleReport()
        warnings_before = self._gate.warnings_sent
        for group in groups:
            if not group.is_administered_by_engine:
                report.groups_ignored += 1
                continue
            report.groups_evaluated += 1
            await self.evaluate_group(group, index, report)
        report.counts["warned"] = self._gate.warnings_sent - warnings_before

        limit = self._policy.max_error_ratio
        if limit is not None and report.error_ratio > limit:
            raise CycleAbortedError(
                f"{len(report.errors)} of {report.evaluated} participants failed "
                f"(ratio {report.error_ratio:.2f} > {limit:.2f}); batch not published"
            )

        payloads = [item.to_payload() for item in report.items]
        report.published = self._publisher.publish(self._queues.remove, payloads)
        if report.published:
            LOGGER.info("Added %s removal requests to %s", len(payloads), self._queues.remove)
        else:
            LOGGER.error("Error publishing removal requests to %s", self._queues.remove)
        return report

    async def evaluate_group(self, group: GroupDescriptor, index: PhoneIndex, report: CycleReport) -> None:
        try:
            profile = profile_group(group.display_name, self._policy)
        except Exception as exc:
            LOGGER.exception("Error profiling group %s; skipping it", group.display_name)
            report.fail(EvaluationError(group.id, None, exc))
            return
        LOGGER.debug("Evaluating %s as %s", group.display_name, profile.group_type)
        for participant in group.participants:
            phone: Optional[str] = None
            try:
                if not participant.is_admin:
                    phone = await self._resolver.resolve(participant.descriptor)
                await self._evaluate_participant(group, profile, participant, phone, index, report)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.exception("Error evaluating %s in group %s", phone or "?", group.display_name)
                report.fail(EvaluationError(group.id, phone, exc))

    async def _evaluate_participant(
        self,
        group: GroupDescriptor,
        profile: GroupProfile,
        participant: Participant,
        phone: Optional[str],
        index: PhoneIndex,
        report: CycleReport,
    ) -> None:
        match = registry.match(index, phone) if phone else MatchResult.missing()
        decision = evaluate(profile, phone, match, self._policy, is_admin=participant.is_admin)
        report.record(group.id, phone, decision)

        if decision.verdict is Verdict.REMOVE:
            report.items.append(
                ActionQueueItem(
                    registration_id=match.registration_id,
                    group_id=group.id,
                    phone=phone,
                    reason=decision.reason,
                )
            )
            LOGGER.info("Removing %s from %s: %s", phone, group.display_name, decision.reason)
        elif decision.verdict is Verdict.DEFER:
            if await self._gate.should_remove_now(phone, decision.reason):
                report.counts["gated_removal"] += 1
                report.items.append(
                    ActionQueueItem(
                        registration_id=match.registration_id,
                        group_id=group.id,
                        phone=phone,
                        reason=decision.reason,
                        community_id=group.community_id,
                    )
                )
