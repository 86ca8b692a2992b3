from __future__ import annotations

import json

import pytest

from adapters.whatsapp_mapper import (
    SnapshotLidLookup,
    groups_from_snapshot,
    is_admin_for_me,
    load_snapshot,
    participant_from_payload,
)

ME = "5511900000000"


def _snapshot() -> dict:
    return {
        "me": f"{ME}:7@s.whatsapp.net",
        "me_lid": "111@lid",
        "lid_mappings": {"222@lid": "5511987654321@s.whatsapp.net"},
        "groups": [
            {"id": "community@g.us", "subject": "Mensa", "isCommunity": True, "participants": []},
            {
                "id": "announce@g.us",
                "subject": "Avisos",
                "isCommunityAnnounce": True,
                "linkedParent": "community@g.us",
                "participants": [{"id": f"{ME}@s.whatsapp.net", "admin": "superadmin"}],
            },
            {
                "id": "jb@g.us",
                "subject": "JB | Geral",
                "linkedParent": "community@g.us",
                "participants": [
                    {"id": "111@lid", "admin": "admin"},
                    {"id": "222@lid"},
                    {"id": "333@lid", "participantAlt": "5511912345678@s.whatsapp.net"},
                    {"id": {"user": "5511955554444"}},
                ],
            },
            {
                "id": "loose@g.us",
                "subject": "MB | Geral",
                "participants": [f"{ME}@s.whatsapp.net", "5511987654321@s.whatsapp.net"],
            },
        ],
    }


def test_groups_from_snapshot() -> None:
    groups = {group.id: group for group in groups_from_snapshot(_snapshot())}

    assert set(groups) == {"announce@g.us", "jb@g.us", "loose@g.us"}

    jb = groups["jb@g.us"]
    assert jb.display_name == "JB | Geral"
    assert jb.is_administered_by_engine
    assert jb.parent_community_id == "community@g.us"
    assert jb.associated_announce_group_id == "announce@g.us"
    assert jb.community_id == "announce@g.us"
    assert jb.participants[0].is_admin
    assert jb.participants[2].descriptor.alt_jid == "5511912345678@s.whatsapp.net"
    assert jb.participants[3].descriptor.id == "5511955554444@s.whatsapp.net"

    loose = groups["loose@g.us"]
    assert loose.is_administered_by_engine is False
    assert loose.community_id is None


def test_snapshot_without_me_is_rejected() -> None:
    with pytest.raises(ValueError):
        groups_from_snapshot({"groups": []})


def test_participant_from_payload_fields() -> None:
    participant = participant_from_payload(
        {"id": "333@lid", "phoneNumber": "5511912345678@s.whatsapp.net", "lid": "333@lid", "admin": None}
    )

    assert participant.descriptor.phone_number == "5511912345678@s.whatsapp.net"
    assert participant.descriptor.lid == "333@lid"
    assert participant.is_admin is False


def test_is_admin_for_me_with_bare_jids() -> None:
    assert is_admin_for_me([f"{ME}@s.whatsapp.net"], {f"{ME}@s.whatsapp.net"}) is False
    assert is_admin_for_me([{"id": f"{ME}@s.whatsapp.net", "admin": "admin"}], {f"{ME}@s.whatsapp.net"})


def test_snapshot_lid_lookup_falls_back() -> None:
    lookup = SnapshotLidLookup.from_snapshot(_snapshot(), fallback={"444@lid": "5511944443333"}.get)

    assert lookup("222@lid") == "5511987654321@s.whatsapp.net"
    assert lookup("444@lid") == "5511944443333"
    assert SnapshotLidLookup({})("444@lid") is None


def test_load_snapshot(tmp_path) -> None:
    path = tmp_path / "groups.json"
    path.write_text(json.dumps(_snapshot()), encoding="utf-8")

    assert load_snapshot(path)["me"] == f"{ME}:7@s.whatsapp.net"
