"""Parsing and summarising the JSON payload uploaded with each script.

Any JSON document is accepted and stored as uploaded. Most files follow the
common role-list layout: a JSON array whose entries are bare role identifiers
or role objects, optionally led by a ``{"id": "_meta", ...}`` entry carrying
the script name, author and extra state items. Only the role summary looks
inside the payload, and it skips entries it cannot read.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidScriptJsonError

logger = logging.getLogger(__name__)

META_IDENTIFIER = "_meta"
OTHER_TEAM = "other"
TEAM_ORDER: tuple[str, ...] = (
    "townsfolk",
    "outsider",
    "minion",
    "demon",
    "fabled",
    "traveler",
    OTHER_TEAM,
)


class ScriptStateItem(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    state_name: str = Field("", alias="stateName")
    state_description: str = Field("", alias="stateDescription")


class ScriptMeta(BaseModel):
    """The optional ``_meta`` entry of a role-list payload."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = META_IDENTIFIER
    name: str | None = None
    author: str | None = None
    description: str | None = None
    logo: str | None = None
    state: list[ScriptStateItem] = Field(default_factory=list)


class ScriptRole(BaseModel):
    """A single role entry of a role-list payload."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = None
    name: str | None = None
    team: str | None = None
    ability: str | None = None
    image: str | None = None
    first_night: float | None = Field(None, alias="firstNight")
    other_night: float | None = Field(None, alias="otherNight")


@dataclass(frozen=True)
class TeamRoles:
    team: str
    roles: tuple[ScriptRole, ...]


@dataclass(frozen=True)
class RoleSummary:
    """Roles of a script grouped by team in display order."""

    meta: ScriptMeta | None
    teams: tuple[TeamRoles, ...]

    @property
    def role_count(self) -> int:
        return sum(len(team.roles) for team in self.teams)


def parse_script_payload(content: bytes) -> Any:
    """Decode an uploaded script data file.

    Returns the decoded JSON value unchanged, whatever its shape.

    Raises:
        InvalidScriptJsonError: If ``content`` is not UTF-8 JSON.
    """

    try:
        return json.loads(content.decode("utf-8-sig"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidScriptJsonError("Script data file is not valid JSON.") from exc


def summarise_roles(json_data: Any) -> RoleSummary:
    """Group the roles of ``json_data`` by team.

    Payloads that are not role lists yield an empty summary. Entries that
    are neither role identifiers nor readable role objects are skipped.
    State items of the ``_meta`` entry are listed in the ``other`` team.
    Within a team, roles are ordered by first-night position with roles that
    do not act on the first night last.
    """

    if not isinstance(json_data, list):
        return RoleSummary(meta=None, teams=())

    meta: ScriptMeta | None = None
    roles: list[ScriptRole] = []
    for index, entry in enumerate(json_data):
        if isinstance(entry, str):
            roles.append(ScriptRole(id=entry))
            continue
        if not isinstance(entry, Mapping):
            continue
        try:
            if entry.get("id") == META_IDENTIFIER:
                meta = ScriptMeta.model_validate(entry)
            else:
                roles.append(ScriptRole.model_validate(entry))
        except ValidationError as exc:
            logger.warning("Skipping unreadable script data entry %d: %s", index, exc)

    if meta is not None:
        roles.extend(_state_roles(meta.state))

    grouped: dict[str, list[ScriptRole]] = {}
    for role in roles:
        team = role.team if role.team in TEAM_ORDER else OTHER_TEAM
        grouped.setdefault(team, []).append(role)

    teams = tuple(
        TeamRoles(team=team, roles=tuple(_sort_by_first_night(grouped[team])))
        for team in TEAM_ORDER
        if team in grouped
    )
    return RoleSummary(meta=meta, teams=teams)


def _state_roles(items: Sequence[ScriptStateItem]) -> Iterable[ScriptRole]:
    for index, item in enumerate(items):
        yield ScriptRole(
            id=f"state_{index}",
            name=item.state_name,
            ability=item.state_description,
            team=OTHER_TEAM,
        )


def _sort_by_first_night(roles: list[ScriptRole]) -> list[ScriptRole]:
    # sorted() is stable, so roles without a first-night slot keep file order.
    return sorted(
        roles,
        key=lambda role: (not role.first_night, role.first_night or 0),
    )


__all__ = [
    "META_IDENTIFIER",
    "OTHER_TEAM",
    "RoleSummary",
    "ScriptMeta",
    "ScriptRole",
    "ScriptStateItem",
    "TEAM_ORDER",
    "TeamRoles",
    "parse_script_payload",
    "summarise_roles",
]
