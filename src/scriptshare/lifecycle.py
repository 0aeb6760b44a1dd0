"""Moderation, versioning and counter rules for uploaded scripts."""

from __future__ import annotations

import re
import time
from datetime import date
from enum import Enum
from typing import Collection, Iterable, Sequence
from urllib.parse import quote

from .errors import QuotaExceededError
from .models import Script, ScriptStatus, SystemSettings, User

ANONYMOUS_UPLOADER_ID = "anonymous"
ANONYMOUS_UPLOADER_NAME = "Anonymous"
DEFAULT_DOWNLOAD_STEM = "script"
DEFAULT_DOWNLOAD_VERSION = "v1.0"

_FILENAME_SANITISE_RE = re.compile(r"[^\w\s-]", re.ASCII)


class RankingMetric(str, Enum):
    """Counters the ranking view can sort by."""

    LIKES = "likes"
    DOWNLOADS = "downloads"


def initial_status(uploader: User | None, settings: SystemSettings) -> ScriptStatus:
    """Return the status a freshly uploaded script starts in."""

    if uploader is not None and uploader.skip_review:
        return ScriptStatus.APPROVED
    if not settings.require_script_approval:
        return ScriptStatus.APPROVED
    return ScriptStatus.PENDING


def upload_message(status: ScriptStatus) -> str:
    if status is ScriptStatus.APPROVED:
        return "Script uploaded and published."
    return "Script uploaded and awaiting review."


def mint_identifier(existing: Collection[str], *, now_ms: int | None = None) -> str:
    """Return a millisecond timestamp identifier not present in ``existing``."""

    candidate = now_ms if now_ms is not None else int(time.time() * 1000)
    while str(candidate) in existing:
        candidate += 1
    return str(candidate)


def parse_tags(raw: str | Iterable[str] | None) -> list[str]:
    """Split a comma separated tag field, trimming and dropping duplicates."""

    if raw is None:
        return []
    parts = raw.split(",") if isinstance(raw, str) else list(raw)

    tags: list[str] = []
    for part in parts:
        tag = part.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def group_by_series(scripts: Iterable[Script]) -> dict[str, list[Script]]:
    """Group ``scripts`` by series key, preserving first-seen order."""

    grouped: dict[str, list[Script]] = {}
    for script in scripts:
        grouped.setdefault(script.series_id, []).append(script)
    return grouped


def filter_scripts(
    scripts: Iterable[Script],
    *,
    status: ScriptStatus | None = None,
    search: str | None = None,
    tag: str | None = None,
) -> list[Script]:
    """Filter by status, title/description substring and tag membership.

    The search term is matched case-insensitively; tags match exactly.
    """

    query = search.strip().casefold() if search else ""
    resolved_tag = tag.strip() if tag else ""

    matches: list[Script] = []
    for script in scripts:
        if status is not None and script.status is not status:
            continue
        if query and not (
            query in script.title.casefold()
            or query in script.description.casefold()
        ):
            continue
        if resolved_tag and resolved_tag not in script.tags:
            continue
        matches.append(script)
    return matches


def rank_scripts(
    scripts: Iterable[Script],
    metric: RankingMetric,
    *,
    limit: int | None = None,
) -> list[Script]:
    """Return approved scripts sorted by ``metric`` descending.

    Ties keep their storage order.
    """

    approved = [script for script in scripts if script.is_approved]
    ranked = sorted(
        approved,
        key=lambda script: getattr(script, metric.value),
        reverse=True,
    )
    if limit is not None:
        return ranked[:limit]
    return ranked


def series_versions(scripts: Iterable[Script], series_id: str) -> list[Script]:
    """Return the approved members of a series, newest version string first."""

    members = [
        script
        for script in scripts
        if script.is_approved and script.series_id == series_id
    ]
    return sorted(members, key=lambda script: script.version, reverse=True)


def download_filename(script: Script) -> str:
    stem = _FILENAME_SANITISE_RE.sub("", script.title).strip() or DEFAULT_DOWNLOAD_STEM
    version = script.version or DEFAULT_DOWNLOAD_VERSION
    return f"{stem}_{version}.json"


def content_disposition(filename: str) -> str:
    return f"attachment; filename*=UTF-8''{quote(filename, safe='')}"


def check_upload_quota(
    uploader: User | None,
    scripts: Sequence[Script],
    settings: SystemSettings,
    *,
    today: date,
) -> None:
    """Raise when ``uploader`` has reached a per-user upload quota.

    Anonymous uploads and admins are not counted. Limits of zero or less
    disable the corresponding check.
    """

    if uploader is None or uploader.is_admin:
        return

    owned = [script for script in scripts if script.uploader_id == uploader.id]

    total_limit = settings.max_scripts_per_user
    if total_limit > 0 and len(owned) >= total_limit:
        raise QuotaExceededError(
            f"User '{uploader.id}' has reached the limit of {total_limit} scripts.",
            limit=total_limit,
        )

    daily_limit = settings.max_uploads_per_day
    today_iso = today.isoformat()
    uploaded_today = sum(1 for script in owned if script.upload_date == today_iso)
    if daily_limit > 0 and uploaded_today >= daily_limit:
        raise QuotaExceededError(
            f"User '{uploader.id}' has reached the limit of {daily_limit} uploads per day.",
            limit=daily_limit,
        )


__all__ = [
    "ANONYMOUS_UPLOADER_ID",
    "ANONYMOUS_UPLOADER_NAME",
    "RankingMetric",
    "check_upload_quota",
    "content_disposition",
    "download_filename",
    "filter_scripts",
    "group_by_series",
    "initial_status",
    "mint_identifier",
    "parse_tags",
    "rank_scripts",
    "series_versions",
    "upload_message",
]
