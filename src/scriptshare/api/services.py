"""Business logic behind the script, user and configuration endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Sequence

from ..assets import AssetKind, AssetStore, StoredAsset
from ..errors import (
    InvalidScriptJsonError,
    LoginFailedError,
    PermissionDeniedError,
    RecordNotFoundError,
    ScriptValidationError,
    StorageError,
)
from ..lifecycle import (
    ANONYMOUS_UPLOADER_ID,
    ANONYMOUS_UPLOADER_NAME,
    RankingMetric,
    check_upload_quota,
    download_filename,
    filter_scripts,
    group_by_series,
    initial_status,
    parse_tags,
    rank_scripts,
    series_versions,
    upload_message,
)
from ..models import (
    Script,
    ScriptStatus,
    SystemConfig,
    SystemSettings,
    User,
    UserPermissions,
    UserRole,
)
from ..permissions import default_permissions
from ..script_data import RoleSummary, parse_script_payload, summarise_roles
from ..storage import ConfigRepository, ScriptRepository, UserRepository

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


class _UnsetType:
    """Sentinel indicating that an optional field was not provided."""

    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial representation
        return "_UNSET"


_UNSET = _UnsetType()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UploadedFile:
    """Raw upload received from the HTTP layer."""

    filename: str | None
    content_type: str | None
    content: bytes


@dataclass(frozen=True)
class ScriptUpload:
    title: str
    description: str
    version: str
    tags: str = ""
    base_script_id: str | None = None
    uploader_id: str | None = None
    uploader_name: str | None = None
    image: UploadedFile | None = None
    json_file: UploadedFile | None = None


@dataclass(frozen=True)
class ScriptCreation:
    script: Script
    message: str


@dataclass(frozen=True)
class ScriptDownload:
    script: Script
    path: Path
    filename: str


@dataclass(frozen=True)
class SeriesDeletion:
    """Outcome of deleting every version in a series one by one."""

    series_id: str
    deleted: tuple[str, ...]
    failed: tuple[str, ...]

    @property
    def total(self) -> int:
        return len(self.deleted) + len(self.failed)

    @property
    def complete(self) -> bool:
        return not self.failed


class ScriptService:
    """Upload, moderation, counters and deletion of scripts."""

    def __init__(
        self,
        *,
        scripts: ScriptRepository,
        users: UserRepository,
        config: ConfigRepository,
        assets: AssetStore,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._scripts = scripts
        self._users = users
        self._config = config
        self._assets = assets
        self._clock = clock

    def list_scripts(
        self,
        *,
        status: ScriptStatus | None = None,
        search: str | None = None,
        tag: str | None = None,
    ) -> list[Script]:
        return filter_scripts(self._scripts.list(), status=status, search=search, tag=tag)

    def list_series(self, *, status: ScriptStatus | None = None) -> dict[str, list[Script]]:
        return group_by_series(self.list_scripts(status=status))

    def rank(self, metric: RankingMetric, *, limit: int | None = None) -> list[Script]:
        return rank_scripts(self._scripts.list(), metric, limit=limit)

    def get_script(self, identifier: str) -> Script:
        return self._scripts.get(identifier)

    def list_versions(self, identifier: str) -> list[Script]:
        script = self._scripts.get(identifier)
        return series_versions(self._scripts.list(), script.series_id)

    def summarise_roles(self, identifier: str) -> RoleSummary:
        return summarise_roles(self._scripts.get(identifier).json_data)

    def create_script(self, upload: ScriptUpload) -> ScriptCreation:
        """Store an uploaded script and its two files.

        Raises:
            ScriptValidationError: If required fields or files are missing,
                a file is too large or of a disallowed type.
            InvalidScriptJsonError: If the data file is not valid JSON.
            QuotaExceededError: If the uploader has reached a quota.
            StorageError: If files or the record cannot be written.
        """

        title = upload.title.strip()
        description = upload.description.strip()
        version = upload.version.strip()
        if not title or not description or not version:
            raise ScriptValidationError("Title, description and version are required.")
        if upload.image is None or upload.json_file is None:
            raise ScriptValidationError(
                "Both a cover image and a script data file must be uploaded."
            )

        settings = self._config.get().system_settings
        _validate_upload(upload.image, AssetKind.IMAGE, settings)
        _validate_upload(upload.json_file, AssetKind.JSON, settings)

        uploader = self._users.find(upload.uploader_id)
        status = initial_status(uploader, settings)
        uploader_name = (
            (uploader.name if uploader is not None else None)
            or (upload.uploader_name or "").strip()
            or ANONYMOUS_UPLOADER_NAME
        )
        series_id = (upload.base_script_id or "").strip() or None

        # Quota check and append hold the scripts lock together.
        with self._scripts.locked():
            check_upload_quota(
                uploader, self._scripts.list(), settings, today=self._today()
            )

            stored = self._store_files(upload.image, upload.json_file)
            image_asset, json_asset = stored

            try:
                json_data = parse_script_payload(upload.json_file.content)
            except InvalidScriptJsonError:
                self._discard(stored)
                raise

            def build(identifier: str) -> Script:
                return Script(
                    id=identifier,
                    title=title,
                    description=description,
                    image_url=image_asset.url,
                    json_url=json_asset.url,
                    json_data=json_data,
                    uploader_id=upload.uploader_id or ANONYMOUS_UPLOADER_ID,
                    uploader_name=uploader_name,
                    upload_date=self._today().isoformat(),
                    likes=0,
                    downloads=0,
                    status=status,
                    tags=parse_tags(upload.tags),
                    version=version,
                    base_script_id=series_id or identifier,
                )

            try:
                script = self._scripts.create(build)
            except StorageError:
                self._discard(stored)
                raise

        logger.info(
            "Script '%s' (%s) uploaded by %s with status %s.",
            script.id,
            script.title,
            script.uploader_id,
            script.status.value,
        )

        if uploader is not None:
            # The script stays created even when the counter write fails.
            try:
                self._users.update(
                    uploader.id,
                    lambda user: user.model_copy(
                        update={"upload_count": user.upload_count + 1}
                    ),
                )
            except (RecordNotFoundError, StorageError) as exc:
                logger.error(
                    "Failed to update upload count for user '%s': %s", uploader.id, exc
                )

        return ScriptCreation(script=script, message=upload_message(status))

    def update_script(
        self,
        identifier: str,
        *,
        status: ScriptStatus | _UnsetType = _UNSET,
        likes: int | _UnsetType = _UNSET,
        downloads: int | _UnsetType = _UNSET,
    ) -> Script:
        """Apply the provided fields and leave every other field untouched."""

        changes: dict[str, Any] = {}
        if not isinstance(status, _UnsetType):
            changes["status"] = ScriptStatus(status)
        for name, value in (("likes", likes), ("downloads", downloads)):
            if isinstance(value, _UnsetType):
                continue
            if value < 0:
                raise ScriptValidationError(f"{name} must be zero or greater.")
            changes[name] = value

        updated = self._scripts.update(
            identifier, lambda script: script.model_copy(update=changes)
        )
        if "status" in changes:
            logger.info("Script '%s' is now %s.", identifier, updated.status.value)
        return updated

    def like_script(self, identifier: str, *, liked: bool = True) -> Script:
        """Add or withdraw one like without a client-side read-then-write."""

        delta = 1 if liked else -1
        return self._scripts.update(
            identifier,
            lambda script: script.model_copy(
                update={"likes": max(0, script.likes + delta)}
            ),
        )

    def delete_script(self, identifier: str) -> None:
        """Remove the record, then its image and data files if stored locally."""

        removed = self._scripts.delete(identifier)
        logger.info("Script '%s' deleted.", identifier)
        if removed is None:
            return
        self._assets.discard(removed.image_url)
        self._assets.discard(removed.json_url)

    def delete_series(self, series_id: str) -> SeriesDeletion:
        """Delete every version of a series, one independent delete each.

        A failure part way through is reported, not rolled back.
        """

        members = [
            script for script in self._scripts.list() if script.series_id == series_id
        ]
        if not members:
            raise RecordNotFoundError("Series", series_id)

        deleted: list[str] = []
        failed: list[str] = []
        for member in members:
            try:
                self.delete_script(member.id)
            except (RecordNotFoundError, StorageError) as exc:
                logger.warning(
                    "Failed to delete script '%s' of series '%s': %s",
                    member.id,
                    series_id,
                    exc,
                )
                failed.append(member.id)
            else:
                deleted.append(member.id)

        return SeriesDeletion(
            series_id=series_id, deleted=tuple(deleted), failed=tuple(failed)
        )

    def download_script(self, identifier: str) -> ScriptDownload:
        """Count one download and return the stored data file.

        Raises:
            RecordNotFoundError: If the script or its data file is missing.
        """

        script = self._scripts.get(identifier)
        path = self._assets.resolve(script.json_url)
        if path is None or not path.is_file():
            raise RecordNotFoundError("Script data file", identifier)

        updated = self._scripts.update(
            identifier,
            lambda current: current.model_copy(
                update={"downloads": current.downloads + 1}
            ),
        )
        return ScriptDownload(
            script=updated, path=path, filename=download_filename(updated)
        )

    def _today(self) -> date:
        return self._clock().date()

    def _store_files(
        self, image: UploadedFile, json_file: UploadedFile
    ) -> tuple[StoredAsset, StoredAsset]:
        image_asset = self._assets.save(AssetKind.IMAGE, image.filename, image.content)
        try:
            json_asset = self._assets.save(
                AssetKind.JSON, json_file.filename, json_file.content
            )
        except StorageError:
            self._assets.discard(image_asset.url)
            raise
        return image_asset, json_asset

    def _discard(self, assets: Sequence[StoredAsset]) -> None:
        for asset in assets:
            self._assets.discard(asset.url)


def _validate_upload(
    upload: UploadedFile, kind: AssetKind, settings: SystemSettings
) -> None:
    label = "Cover image" if kind is AssetKind.IMAGE else "Script data file"

    limit_kb = settings.max_upload_size_kb
    if limit_kb > 0 and len(upload.content) > limit_kb * 1024:
        raise ScriptValidationError(f"{label} exceeds the {limit_kb} KB upload limit.")

    allowed = settings.allowed_file_types
    content_type = (upload.content_type or "").split(";")[0].strip().casefold()
    if kind is AssetKind.IMAGE:
        accepted = content_type.startswith("image/") and (
            not allowed or content_type in allowed
        )
    else:
        looks_like_json = content_type == JSON_CONTENT_TYPE or (
            upload.filename or ""
        ).casefold().endswith(".json")
        accepted = looks_like_json and (not allowed or JSON_CONTENT_TYPE in allowed)

    if not accepted:
        raise ScriptValidationError(f"{label} has a file type that is not allowed.")


class UserService:
    """User records, login and self-service signup."""

    def __init__(
        self,
        *,
        users: UserRepository,
        config: ConfigRepository,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._users = users
        self._config = config
        self._clock = clock

    def list_users(self) -> list[User]:
        return self._users.list()

    def get_user(self, identifier: str) -> User:
        return self._users.get(identifier)

    def create_user(
        self,
        *,
        name: str,
        email: str,
        role: UserRole = UserRole.USER,
        can_upload: bool = True,
        skip_review: bool = False,
        permissions: UserPermissions | None = None,
    ) -> User:
        """Persist a new user with a minted id, today's join date and no uploads."""

        trimmed_name = name.strip()
        trimmed_email = email.strip()
        if not trimmed_name or not trimmed_email:
            raise ScriptValidationError("A user needs a name and an email address.")

        join_date = self._clock().date().isoformat()
        resolved_permissions = permissions or default_permissions(role)

        user = self._users.create(
            lambda identifier: User(
                id=identifier,
                name=trimmed_name,
                email=trimmed_email,
                role=role,
                can_upload=can_upload,
                skip_review=skip_review,
                join_date=join_date,
                upload_count=0,
                permissions=resolved_permissions,
            )
        )
        logger.info("User '%s' created with role %s.", user.id, user.role.value)
        return user

    def update_user(self, identifier: str, **changes: Any) -> User:
        """Shallow-merge ``changes``; a permissions bag replaces the old one."""

        return self._users.update(
            identifier, lambda user: user.model_copy(update=changes)
        )

    def delete_user(self, identifier: str) -> None:
        self._users.delete(identifier)
        logger.info("User '%s' deleted.", identifier)

    def login(self, email: str, password: str) -> User:
        """Return the user registered under ``email``.

        The password must be present but is not verified.
        """

        if not password:
            raise LoginFailedError("A password is required.")

        user = self._users.find_by_email(email.strip())
        if user is None:
            raise LoginFailedError(f"No user is registered with email '{email}'.")
        return user

    def signup(self, *, name: str, email: str) -> User:
        settings = self._config.get().system_settings
        if not settings.allow_user_registration:
            raise PermissionDeniedError("User registration is disabled.")

        return self.create_user(
            name=name,
            email=email,
            role=UserRole.USER,
            can_upload=settings.auto_approve_new_users,
        )


class SettingsNotifier:
    """Fire-and-forget fan-out of configuration changes to local subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[SystemConfig], None]] = []

    def subscribe(self, callback: Callable[[SystemConfig], None]) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""

        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, config: SystemConfig) -> None:
        for callback in list(self._subscribers):
            try:
                callback(config)
            except Exception:  # subscriber failures never fail the write
                logger.exception("Settings subscriber %r failed.", callback)


class ConfigService:
    """Read and replace the configuration singleton."""

    def __init__(
        self,
        *,
        config: ConfigRepository,
        notifier: SettingsNotifier | None = None,
    ) -> None:
        self._config = config
        self.notifier = notifier or SettingsNotifier()

    def get_config(self) -> SystemConfig:
        return self._config.get()

    def replace_config(self, config: SystemConfig) -> SystemConfig:
        stored = self._config.replace(config)
        self.notifier.publish(stored)
        return stored

    def add_tag(self, tag: str) -> SystemConfig:
        candidate = tag.strip()
        if not candidate:
            raise ScriptValidationError("Tag must be a non-empty string.")

        def mutate(config: SystemConfig) -> SystemConfig:
            if candidate in config.available_tags:
                return config
            return config.model_copy(
                update={"available_tags": [*config.available_tags, candidate]}
            )

        return self._apply(mutate)

    def remove_tag(self, tag: str) -> SystemConfig:
        """Drop ``tag`` from the vocabulary; scripts keep their tags."""

        candidate = tag.strip()
        return self._apply(
            lambda config: config.model_copy(
                update={
                    "available_tags": [
                        existing
                        for existing in config.available_tags
                        if existing != candidate
                    ]
                }
            )
        )

    def _apply(self, mutate: Callable[[SystemConfig], SystemConfig]) -> SystemConfig:
        updated = self._config.update(mutate)
        self.notifier.publish(updated)
        return updated


__all__ = [
    "ConfigService",
    "ScriptCreation",
    "ScriptDownload",
    "ScriptService",
    "ScriptUpload",
    "SeriesDeletion",
    "SettingsNotifier",
    "UploadedFile",
    "UserService",
]
