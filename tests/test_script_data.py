from __future__ import annotations

import json

import pytest

from scriptshare.errors import InvalidScriptJsonError
from scriptshare.script_data import OTHER_TEAM, parse_script_payload, summarise_roles


def _encode(payload: object) -> bytes:
    return json.dumps(payload).encode("utf-8")


def test_parse_accepts_role_lists_and_objects() -> None:
    roles = [{"id": "_meta", "name": "Test"}, "imp", {"id": "chef", "team": "townsfolk"}]

    assert parse_script_payload(_encode(roles)) == roles
    assert parse_script_payload(_encode({"chapters": 3})) == {"chapters": 3}


def test_parse_tolerates_byte_order_mark() -> None:
    assert parse_script_payload(b"\xef\xbb\xbf[\"imp\"]") == ["imp"]


@pytest.mark.parametrize(
    "payload",
    [
        [{"name": "Imp", "team": "demon"}],
        [1, 2, 3],
        "text",
        42,
        None,
        [{"id": "imp", "firstNight": None}],
        [{"id": "imp", "firstNight": "dusk"}],
    ],
)
def test_parse_accepts_any_json_value(payload: object) -> None:
    assert parse_script_payload(_encode(payload)) == payload


@pytest.mark.parametrize(
    "content", [b"{not json", b"\xff\xfe", b"", b"\x00"]
)
def test_parse_rejects_undecodable_content(content: bytes) -> None:
    with pytest.raises(InvalidScriptJsonError):
        parse_script_payload(content)


def test_summary_groups_roles_by_team_in_display_order() -> None:
    payload = [
        {
            "id": "_meta",
            "name": "Night Terrors",
            "author": "Storyteller",
            "state": [{"stateName": "Curse", "stateDescription": "Something stirs."}],
        },
        {"id": "imp", "team": "demon", "firstNight": 0},
        {"id": "chef", "team": "townsfolk", "firstNight": 40},
        {"id": "washerwoman", "team": "townsfolk", "firstNight": 0},
        {"id": "investigator", "team": "townsfolk", "firstNight": 35},
        {"id": "mystery", "team": "unknown-team"},
        "librarian",
    ]

    summary = summarise_roles(payload)

    assert summary.meta is not None
    assert summary.meta.name == "Night Terrors"
    assert [team.team for team in summary.teams] == ["townsfolk", "demon", OTHER_TEAM]

    townsfolk = summary.teams[0]
    assert [role.id for role in townsfolk.roles] == ["investigator", "chef", "washerwoman"]

    other = summary.teams[-1]
    assert [role.id for role in other.roles] == ["mystery", "librarian", "state_0"]
    assert other.roles[-1].name == "Curse"
    assert summary.role_count == 7


def test_summary_of_non_list_payload_is_empty() -> None:
    summary = summarise_roles({"chapters": 8})

    assert summary.meta is None
    assert summary.teams == ()
    assert summary.role_count == 0


def test_summary_skips_entries_it_cannot_read() -> None:
    payload = [
        {"id": "_meta", "name": ["not", "a", "name"]},
        {"name": "Imp", "team": "demon", "firstNight": 2},
        {"id": "poisoner", "team": "minion", "firstNight": None},
        {"id": "spy", "team": "minion", "firstNight": 5},
        {"id": "drunk", "team": "outsider", "firstNight": "dusk"},
        7,
        None,
        "chef",
    ]

    summary = summarise_roles(payload)

    assert summary.meta is None
    assert [team.team for team in summary.teams] == ["minion", "demon", OTHER_TEAM]
    assert [role.id for role in summary.teams[0].roles] == ["spy", "poisoner"]
    demon = summary.teams[1].roles[0]
    assert demon.id is None
    assert demon.name == "Imp"
    assert summary.role_count == 4
