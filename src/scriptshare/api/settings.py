"""Configuration helpers for deploying the script sharing API."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _normalise_path(value: str | None, *, default: Path) -> Path:
    if value is None:
        return default

    trimmed = value.strip()
    if not trimmed:
        return default

    return Path(trimmed).expanduser()


def _normalise_string(value: str | None, *, default: str) -> str:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


def _parse_bool(value: str | None, *, name: str, default: bool) -> bool:
    if value is None:
        return default

    trimmed = value.strip().casefold()
    if not trimmed:
        return default
    if trimmed in _TRUE_VALUES:
        return True
    if trimmed in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag such as 'true' or 'false'.")


def _parse_origins(value: str | None, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default

    origins = tuple(item.strip() for item in value.split(",") if item.strip())
    return origins or default


@dataclass(frozen=True)
class ScriptShareSettings:
    """Deployment settings for the FastAPI application.

    The helper reads from environment variables so the API can be configured
    without modifying application code. Paths are expanded to support ``~``
    prefixes while empty strings are treated as if the variable was unset.
    """

    data_dir: Path = Path("data")
    upload_dir: Path = Path("uploads")
    public_url: str = ""
    enforce_permissions: bool = True
    allow_anonymous_uploads: bool = False
    cors_origins: tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ScriptShareSettings":
        """Return settings populated from ``environ``.

        Args:
            environ: Optional mapping of environment variables. When omitted,
                :data:`os.environ` is used.
        """

        source = environ if environ is not None else os.environ

        return cls(
            data_dir=_normalise_path(
                source.get("SCRIPTSHARE_DATA_DIR"), default=Path("data")
            ),
            upload_dir=_normalise_path(
                source.get("SCRIPTSHARE_UPLOAD_DIR"), default=Path("uploads")
            ),
            public_url=_normalise_string(
                source.get("SCRIPTSHARE_PUBLIC_URL"), default=""
            ).rstrip("/"),
            enforce_permissions=_parse_bool(
                source.get("SCRIPTSHARE_ENFORCE_PERMISSIONS"),
                name="SCRIPTSHARE_ENFORCE_PERMISSIONS",
                default=True,
            ),
            allow_anonymous_uploads=_parse_bool(
                source.get("SCRIPTSHARE_ALLOW_ANONYMOUS_UPLOADS"),
                name="SCRIPTSHARE_ALLOW_ANONYMOUS_UPLOADS",
                default=False,
            ),
            cors_origins=_parse_origins(
                source.get("SCRIPTSHARE_CORS_ORIGINS"), default=("*",)
            ),
            log_level=_normalise_string(
                source.get("SCRIPTSHARE_LOG_LEVEL"), default="INFO"
            ).upper(),
        )


__all__ = ["ScriptShareSettings"]
