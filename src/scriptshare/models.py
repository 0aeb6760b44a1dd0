"""Record types persisted in the script, user and config documents."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ScriptStatus(str, Enum):
    """Moderation states a script can occupy."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UserRole(str, Enum):
    """Coarse user roles; ``admin`` unlocks the moderation views."""

    USER = "user"
    ADMIN = "admin"


class CamelModel(BaseModel):
    """Base model persisting snake_case attributes under camelCase keys.

    Unknown keys are kept so records written by newer clients survive a
    read-modify-write cycle untouched.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-serialisable document representation."""

        return self.model_dump(by_alias=True, mode="json")


class Script(CamelModel):
    """A single uploaded version of a script."""

    id: str
    title: str
    description: str = ""
    image_url: str = ""
    json_url: str | None = None
    json_data: Any = None
    uploader_id: str = "anonymous"
    uploader_name: str = ""
    upload_date: str = ""
    likes: int = 0
    downloads: int = 0
    status: ScriptStatus = ScriptStatus.PENDING
    tags: list[str] = Field(default_factory=list)
    version: str = ""
    base_script_id: str | None = None

    @property
    def series_id(self) -> str:
        """Key of the series this script belongs to.

        Every script belongs to exactly one series. A script without an
        explicit ``baseScriptId`` heads its own series.
        """

        return self.base_script_id or self.id

    @property
    def is_approved(self) -> bool:
        return self.status is ScriptStatus.APPROVED


class UserPermissions(CamelModel):
    """Fine-grained permission bag attached to every user."""

    can_view_scripts: bool = True
    can_download_scripts: bool = True
    can_upload_scripts: bool = True
    can_manage_users: bool = False
    can_manage_tags: bool = False
    can_approve_scripts: bool = False
    can_delete_scripts: bool = False


class User(CamelModel):
    id: str
    name: str
    email: str
    role: UserRole = UserRole.USER
    can_upload: bool = True
    skip_review: bool = False
    join_date: str = ""
    upload_count: int = 0
    permissions: UserPermissions = Field(default_factory=UserPermissions)

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN


class SystemSettings(CamelModel):
    """Policy knobs consulted by the upload and signup flows."""

    allow_user_registration: bool = True
    require_script_approval: bool = True
    max_upload_size_kb: int = Field(10240, alias="maxUploadSizeKB")
    allowed_file_types: list[str] = Field(
        default_factory=lambda: [
            "image/jpeg",
            "image/png",
            "image/gif",
            "application/json",
        ]
    )
    max_uploads_per_day: int = 10
    max_scripts_per_user: int = 50
    require_email_verification: bool = False
    auto_approve_new_users: bool = True


class SystemConfig(CamelModel):
    """The singleton configuration document."""

    available_tags: list[str] = Field(default_factory=list)
    system_settings: SystemSettings = Field(default_factory=SystemSettings)


__all__ = [
    "CamelModel",
    "Script",
    "ScriptStatus",
    "SystemConfig",
    "SystemSettings",
    "User",
    "UserPermissions",
    "UserRole",
]
