from __future__ import annotations

import argparse
import asyncio
import json
from datetime import date

import pytest

import app
from app import _run_cycle_once
from core.models import JoinRequest, MembershipStatus
from core.registry import member_record

ME = "5511900000000"
KID = "5511922220000"


class FakeStorage:
    def __init__(self) -> None:
        self.registry_reads = 0

    def fetch_registry_records(self):
        self.registry_reads += 1
        return [
            member_record(
                phone=f"+{KID}",
                registration_id=2,
                gender="Masculino",
                status=MembershipStatus.ACTIVE,
                birth_date=date(2015, 1, 1),
                has_accepted_terms=False,
                representative_phones=[],
                today=date(2024, 6, 1),
            )
        ]

    def get_pending_requests(self, group_id: str):
        return []

    def get_registration_flags(self, registration_ids):
        raise RuntimeError("db hiccup")

    def get_lid_mapping(self, lid: str):
        return None

    def save_lid_mapping(self, lid: str, phone: str) -> None:
        pass

    def get_latest_unresolved(self, phone: str):
        return None

    def upsert_communication(self, phone: str, reason: str, now) -> None:
        pass


class PendingRequestStorage(FakeStorage):
    def get_pending_requests(self, group_id: str):
        return [JoinRequest(request_id=1, registration_id=2, group_id=group_id)]


class FakePublisher:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.published: dict[str, list[dict]] = {}

    def publish(self, queue_name: str, payloads) -> bool:
        self.calls.append(queue_name)
        self.published[queue_name] = list(payloads)
        return True


class FakeNotifier:
    async def send(self, phone: str, reason: str) -> None:
        pass


@pytest.fixture
def cycle_args(tmp_path, monkeypatch):
    for name in ("DONT_REMOVE_NUMBERS", "EXCEPTIONS", "CONSTANT_WAITING_PERIOD", "BLOCKED_MB"):
        monkeypatch.delenv(name, raising=False)
    config_path = tmp_path / "config.json"
    config_path.write_text("{}", encoding="utf-8")
    groups_path = tmp_path / "groups.json"
    groups_path.write_text(
        json.dumps(
            {
                "me": f"{ME}@s.whatsapp.net",
                "groups": [
                    {
                        "id": "mb@g.us",
                        "subject": "MB | Geral",
                        "participants": [
                            {"id": f"{ME}@s.whatsapp.net", "admin": "admin"},
                            {"id": f"{KID}@s.whatsapp.net"},
                        ],
                    }
                ],
            }
        ),
        encoding="utf-8",
    )
    return argparse.Namespace(
        config=str(config_path),
        groups=str(groups_path),
        add=True,
        remove=True,
        scan=False,
    )


def test_addition_failure_does_not_skip_removals(cycle_args) -> None:
    storage = PendingRequestStorage()
    publisher = FakePublisher()

    asyncio.run(_run_cycle_once(cycle_args, storage, publisher, FakeNotifier()))

    assert storage.registry_reads == 1
    assert publisher.calls == ["removeQueue"]
    assert [item["phone"] for item in publisher.published["removeQueue"]] == [KID]


def test_cycle_runs_additions_then_removals(cycle_args) -> None:
    storage = FakeStorage()
    publisher = FakePublisher()

    asyncio.run(_run_cycle_once(cycle_args, storage, publisher, FakeNotifier()))

    assert publisher.calls == ["addQueue", "removeQueue"]
    assert publisher.published["addQueue"] == []


class UnreachableQueue(FakePublisher):
    def __init__(self) -> None:
        super().__init__()
        self.pinged = False
        self.closed = False

    def ping(self) -> bool:
        self.pinged = True
        return False

    def close(self) -> None:
        self.closed = True


def test_startup_checks_redis_reachability(cycle_args, monkeypatch, caplog) -> None:
    queue = UnreachableQueue()
    loops = []

    async def fake_loop(args, storage, publisher, notifier) -> None:
        loops.append(publisher)

    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setattr(app, "_print_banner", lambda: None)
    monkeypatch.setattr(app.SQLStorage, "from_url", classmethod(lambda cls, url: FakeStorage()))
    monkeypatch.setattr(app.RedisQueuePublisher, "from_url", classmethod(lambda cls, url: queue))
    monkeypatch.setattr(app, "_run_loop", fake_loop)
    cycle_args.no_notify = True

    with caplog.at_level("WARNING"):
        app._run(cycle_args)

    assert queue.pinged
    assert queue.closed
    assert loops == [queue]
    assert "Redis is not reachable" in caplog.text
