"""Configuration loading for groupwarden.

User-editable settings (policy group names, waiting period, queues, cycle
cadence, logging) live in a single JSON file. Secrets and the protected
phone lists come from the environment, loaded with python-dotenv.

The builders below are called at the start of every cycle so edits to the
environment or config.json apply without restarting the process.
"""

from __future__ import annotations

import json
import os
from datetime import timedelta
from typing import Mapping, Optional

from dotenv import load_dotenv

from core.config import (
    DEFAULT_AGE_BAND_REPRESENTATIVE_GROUP,
    DEFAULT_FEMALE_ONLY_PATTERN,
    DEFAULT_NON_RESTRICTED_EXCEPTIONS,
    DEFAULT_OPERATIONAL_PREFIX,
    GateConfig,
    PolicyConfig,
    QueueConfig,
)
from core.phones import ExactPhoneMatcher, ProtectedPhoneMatcher

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# config.json sits next to .env at the project root unless overridden.
CONFIG_PATH = os.getenv("GROUPWARDEN_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))

DEFAULT_WAITING_PERIOD_HOURS = 72
DEFAULT_CYCLE_MINUTES = 30


def load_env() -> None:
    load_dotenv(os.path.join(PROJECT_ROOT, ".env"))


def load_json_config(path: Optional[str] = None) -> dict:
    """Load config.json with a flat, user-friendly schema."""

    path = path or CONFIG_PATH
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def build_policy_config(config: Mapping, env: Optional[Mapping[str, str]] = None) -> PolicyConfig:
    """Build the evaluator's PolicyConfig from config.json and the environment.

    - DONT_REMOVE_NUMBERS: never removed (exact or last-8-digit match)
    - EXCEPTIONS: exempt from the age rules (exact match)
    """

    env = os.environ if env is None else env
    policy = config.get("policy", {})
    max_error_ratio = policy.get("max_error_ratio")
    return PolicyConfig(
        is_never_remove=ProtectedPhoneMatcher.from_csv(env.get("DONT_REMOVE_NUMBERS")),
        is_age_exception=ExactPhoneMatcher.from_csv(env.get("EXCEPTIONS")),
        operational_prefix=policy.get("operational_prefix", DEFAULT_OPERATIONAL_PREFIX),
        age_band_representative_group=policy.get(
            "age_band_representative_group", DEFAULT_AGE_BAND_REPRESENTATIVE_GROUP
        ),
        non_restricted_exception_groups=frozenset(
            policy.get("non_restricted_exception_groups", DEFAULT_NON_RESTRICTED_EXCEPTIONS)
        ),
        female_only_pattern=policy.get("female_only_pattern", DEFAULT_FEMALE_ONLY_PATTERN),
        max_error_ratio=float(max_error_ratio) if max_error_ratio is not None else None,
    )


def build_gate_config(config: Mapping, env: Optional[Mapping[str, str]] = None) -> GateConfig:
    """Waiting period from config.json, overridden by CONSTANT_WAITING_PERIOD (ms)."""

    env = os.environ if env is None else env
    gate = config.get("gate", {})
    waiting = timedelta(hours=float(gate.get("waiting_period_hours", DEFAULT_WAITING_PERIOD_HOURS)))
    raw_ms = env.get("CONSTANT_WAITING_PERIOD")
    if raw_ms:
        try:
            waiting = timedelta(milliseconds=float(raw_ms))
        except ValueError as e:
            raise ValueError(f"CONSTANT_WAITING_PERIOD must be milliseconds, got {raw_ms!r}") from e
    fail_open = gate.get("fail_open", True)
    if not isinstance(fail_open, bool):
        raise ValueError(f"gate.fail_open must be true or false, got {fail_open!r}")
    return GateConfig(waiting_period=waiting, fail_open=fail_open)


def build_queue_config(config: Mapping) -> QueueConfig:
    queues = config.get("queues", {})
    return QueueConfig(remove=queues.get("remove", "removeQueue"), add=queues.get("add", "addQueue"))


def blocked_registrations(env: Optional[Mapping[str, str]] = None) -> frozenset[int]:
    env = os.environ if env is None else env
    blocked = set()
    for part in (env.get("BLOCKED_MB") or "").split(","):
        part = part.strip()
        if part.isdigit():
            blocked.add(int(part))
    return frozenset(blocked)


def cycle_minutes(config: Mapping) -> float:
    return float(config.get("cycle", {}).get("minutes", DEFAULT_CYCLE_MINUTES))


def logging_config(config: Mapping) -> dict:
    return dict(config.get("logging", {}))
