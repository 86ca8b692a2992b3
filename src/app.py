"""Application entry point for the groupwarden compliance worker."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

import settings
from adapters.redis_queue import RedisQueuePublisher
from adapters.sql_storage import SQLStorage
from adapters.twilio_notifier import LoggingNotifier, TwilioStudioNotifier
from adapters.whatsapp_mapper import SnapshotLidLookup, groups_from_snapshot, load_snapshot
from core.additions import run_additions
from core.engine import ComplianceEngine, load_phone_index
from core.errors import CycleAbortedError, GroupwardenError, RegistryUnavailableError
from core.gate import NotificationGate
from core.identity import PhoneIdentityResolver
from core.manual import queue_contact_removal
from core.scan import scan_groups

NAME = "GROUPWARDEN"
FONT = "tarty-1"

TWILIO_ENV = ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_FLOW_SID", "TWILIO_WHATSAPP_NUMBER")
SECRET_ENV = ("DATABASE_URL", "REDIS_URL", "TWILIO_AUTH_TOKEN")

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", True):
        return []
    values = []
    for name in redact_cfg.get("patterns", SECRET_ENV):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging(config: dict) -> None:
    level_name = str(config.get("level", os.getenv("LOG_LEVEL", "INFO"))).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/groupwarden.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"{name} is required")
    return value


def _build_notifier(disabled: bool):
    # Select the notification adapter based on configuration to keep the
    # gate independent from delivery details.
    if disabled:
        LOGGER.warning("Warnings are logged only; no member will be notified")
        return LoggingNotifier()
    missing = [name for name in TWILIO_ENV if not os.getenv(name)]
    if missing:
        raise RuntimeError(f"Twilio is not configured (missing {', '.join(missing)})")
    return TwilioStudioNotifier(
        account_sid=os.environ["TWILIO_ACCOUNT_SID"],
        auth_token=os.environ["TWILIO_AUTH_TOKEN"],
        flow_sid=os.environ["TWILIO_FLOW_SID"],
        from_number=os.environ["TWILIO_WHATSAPP_NUMBER"].lstrip("+"),
    )


def _build_resolver(storage: SQLStorage, snapshot: dict) -> PhoneIdentityResolver:
    lookup = SnapshotLidLookup.from_snapshot(snapshot, fallback=storage.get_lid_mapping)
    return PhoneIdentityResolver(lid_lookup=lookup, mapping_store=storage)


async def _run_cycle_once(args, storage: SQLStorage, publisher: RedisQueuePublisher, notifier) -> None:
    """Run the selected tasks once against the latest groups snapshot."""

    config = settings.load_json_config(args.config)
    policy = settings.build_policy_config(config)
    queues = settings.build_queue_config(config)

    snapshot = load_snapshot(args.groups)
    groups = [group for group in groups_from_snapshot(snapshot) if group.is_administered_by_engine]
    resolver = _build_resolver(storage, snapshot)
    LOGGER.info("Loaded %s administered groups from %s", len(groups), args.groups)

    if args.add:
        # Additions never hold back the removal run or the scan.
        try:
            summary = run_additions(
                groups,
                storage,
                publisher,
                policy,
                queues,
                settings.blocked_registrations(),
            )
            LOGGER.info("Addition summary: %s", summary)
        except Exception:
            LOGGER.exception("Error planning addition requests")

    if not (args.remove or args.scan):
        return

    index = load_phone_index(storage)

    if args.remove:
        gate = NotificationGate(storage, notifier, settings.build_gate_config(config))
        engine = ComplianceEngine(storage, gate, publisher, resolver, policy, queues)
        report = await engine.run_cycle(groups, index=index)
        LOGGER.info("Removal cycle complete: %s", report.summary())

    if args.scan:
        summary = await scan_groups(groups, index, storage, resolver, policy.is_never_remove)
        LOGGER.info("Scan complete: %s", summary)


async def _run_loop(args, storage: SQLStorage, publisher: RedisQueuePublisher, notifier) -> None:
    while True:
        try:
            await _run_cycle_once(args, storage, publisher, notifier)
        except RegistryUnavailableError:
            LOGGER.exception("Registry unavailable; cycle aborted")
        except CycleAbortedError as e:
            LOGGER.error("Cycle aborted: %s", e)
        except Exception:
            LOGGER.exception("Error running tasks in cycle")

        if args.once:
            return
        minutes = settings.cycle_minutes(settings.load_json_config(args.config))
        LOGGER.info("Next cycle in %s minutes", minutes)
        await asyncio.sleep(max(1.0, minutes * 60))


def _run(args) -> None:
    _print_banner()
    logger = LOGGER
    logger.info("Starting groupwarden")

    storage = SQLStorage.from_url(_require_env("DATABASE_URL"))
    publisher = RedisQueuePublisher.from_url(_require_env("REDIS_URL"))
    if not publisher.ping():
        LOGGER.warning("Redis is not reachable; queue publishes will fail until it is")
    notifier = _build_notifier(args.no_notify)

    # Without explicit task flags every task runs except the scan, which
    # follows config.json.
    if not (args.add or args.remove or args.scan):
        config = settings.load_json_config(args.config)
        args.add = True
        args.remove = True
        args.scan = bool(config.get("scan", {}).get("enabled", False))

    try:
        asyncio.run(_run_loop(args, storage, publisher, notifier))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        publisher.close()


def _queue_removal(args) -> None:
    config = settings.load_json_config(args.config)
    policy = settings.build_policy_config(config)
    storage = SQLStorage.from_url(_require_env("DATABASE_URL"))
    publisher = RedisQueuePublisher.from_url(_require_env("REDIS_URL"))

    snapshot = load_snapshot(args.groups)
    groups = groups_from_snapshot(snapshot)
    try:
        items = asyncio.run(
            queue_contact_removal(
                args.phone,
                groups,
                _build_resolver(storage, snapshot),
                publisher,
                policy.is_never_remove,
                settings.build_queue_config(config),
            )
        )
    except (ValueError, GroupwardenError) as e:
        LOGGER.error("%s", e)
        raise SystemExit(1) from e
    finally:
        publisher.close()
    LOGGER.info("Queued %s removals for %s", len(items), args.phone)


def _init_db(args) -> None:
    storage = SQLStorage.from_url(_require_env("DATABASE_URL"))
    storage.init_db(include_registry=args.with_registry)
    LOGGER.info("Database tables are ready")


def main(argv: Optional[list[str]] = None) -> None:
    settings.load_env()

    parser = argparse.ArgumentParser(prog="groupwarden")
    parser.add_argument("--config", default=None, help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Start the compliance cycle loop")
    run_parser.add_argument("--groups", required=True, help="Groups snapshot exported by the WhatsApp session")
    run_parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    run_parser.add_argument("--add", action="store_true", help="Run the addition task")
    run_parser.add_argument("--remove", action="store_true", help="Run the removal task")
    run_parser.add_argument("--scan", action="store_true", help="Run the membership scan")
    run_parser.add_argument("--no-notify", action="store_true", help="Log warnings instead of sending them")

    removal_parser = subparsers.add_parser(
        "queue-removal",
        help="Queue removal of one contact from every group it participates in",
    )
    removal_parser.add_argument("--phone", required=True, help="Contact phone (digits, with or without +)")
    removal_parser.add_argument("--groups", required=True, help="Groups snapshot exported by the WhatsApp session")

    init_parser = subparsers.add_parser("init-db", help="Create the tables groupwarden writes to")
    init_parser.add_argument("--with-registry", action="store_true", help="Also create registry tables")

    args = parser.parse_args(argv)
    try:
        config = settings.load_json_config(args.config)
    except FileNotFoundError:
        config = {}
    _configure_logging(settings.logging_config(config))

    if args.command == "queue-removal":
        _queue_removal(args)
        return
    if args.command == "init-db":
        _init_db(args)
        return
    if args.command == "run":
        _run(args)
        return
    parser.print_help()


if __name__ == "__main__":
    main()
