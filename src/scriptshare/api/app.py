"""FastAPI application exposing the script sharing endpoints."""

from __future__ import annotations

import logging
from typing import Any, Callable

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from starlette.responses import FileResponse

from ..assets import UPLOADS_URL_PREFIX, AssetStore
from ..errors import (
    LoginFailedError,
    PermissionDeniedError,
    QuotaExceededError,
    RecordNotFoundError,
    ScriptValidationError,
    StorageError,
)
from ..lifecycle import RankingMetric, content_disposition
from ..models import Script, ScriptStatus, SystemConfig, User, UserPermissions, UserRole
from ..permissions import GUEST, Actor, Permission, PermissionPolicy
from ..script_data import ScriptMeta, ScriptRole
from ..storage import (
    ConfigRepository,
    DocumentStore,
    FileDocumentStore,
    ScriptRepository,
    UserRepository,
    load_seed_documents,
)
from .services import (
    _UNSET,
    ConfigService,
    ScriptService,
    ScriptUpload,
    UploadedFile,
    UserService,
)
from .sessions import SessionRegistry, session_token
from .settings import ScriptShareSettings

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
_STORAGE_FAILURE_DETAIL = "Internal server error."


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScriptListResponse(_ApiModel):
    data: list[Script]


class SeriesResource(_ApiModel):
    series_id: str
    scripts: list[Script]


class SeriesListResponse(_ApiModel):
    data: list[SeriesResource]


class ScriptResponse(_ApiModel):
    success: bool = True
    script: Script


class ScriptCreateResponse(ScriptResponse):
    message: str


class MessageResponse(_ApiModel):
    success: bool = True
    message: str


class SeriesDeleteResponse(_ApiModel):
    success: bool
    deleted: list[str]
    failed: list[str]
    total: int
    message: str


class TeamResource(_ApiModel):
    team: str
    roles: list[ScriptRole]


class RoleSummaryResponse(_ApiModel):
    """Roles of a script grouped by team in display order."""

    script_id: str
    meta: ScriptMeta | None = None
    teams: list[TeamResource]
    role_count: int


class UserListResponse(_ApiModel):
    data: list[User]


class UserResponse(_ApiModel):
    success: bool = True
    user: User


class SessionResponse(UserResponse):
    token: str


class LogoutResponse(_ApiModel):
    success: bool


class ConfigUpdateResponse(_ApiModel):
    success: bool = True
    config: SystemConfig


class ScriptUpdateRequest(_ApiModel):
    """Partial update of a script's status or counters."""

    status: ScriptStatus | None = None
    likes: int | None = Field(None, ge=0)
    downloads: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def _require_changes(self) -> "ScriptUpdateRequest":
        provided = {
            name for name in self.model_fields_set if getattr(self, name) is not None
        }
        if not provided:
            raise ValueError("At least one of status, likes or downloads is required.")
        return self


class ScriptLikeRequest(_ApiModel):
    liked: bool = True


class UserUpdateRequest(_ApiModel):
    """Fields a caller may set on a user record.

    ``id``, ``joinDate`` and ``uploadCount`` are managed by the server and
    are ignored when sent.
    """

    name: str | None = None
    email: str | None = None
    role: UserRole | None = None
    can_upload: bool | None = None
    skip_review: bool | None = None
    permissions: UserPermissions | None = None

    @field_validator("name", "email")
    @classmethod
    def _strip_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("must not be empty")
        return trimmed

    def provided_changes(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if getattr(self, name) is not None
        }


class LoginRequest(_ApiModel):
    email: str
    password: str = ""


class SignupRequest(_ApiModel):
    name: str
    email: str


class TagRequest(_ApiModel):
    tag: str = Field(..., min_length=1)


def _denied(exc: PermissionDeniedError) -> HTTPException:
    return HTTPException(
        status_code=401 if exc.requires_login else 403, detail=str(exc)
    )


def _storage_failure(exc: StorageError) -> HTTPException:
    logger.error("Request failed while writing data: %s", exc)
    return HTTPException(status_code=500, detail=_STORAGE_FAILURE_DETAIL)


def _read_upload(upload: UploadFile | None, *, limit_kb: int) -> UploadedFile | None:
    """Read at most one byte past the size limit so oversized files stay on disk.

    A limit of zero or less reads the whole file.
    """

    if upload is None:
        return None
    size = limit_kb * 1024 + 1 if limit_kb > 0 else -1
    return UploadedFile(
        filename=upload.filename,
        content_type=upload.content_type,
        content=upload.file.read(size),
    )


def create_app(
    *,
    settings: ScriptShareSettings | None = None,
    store: DocumentStore | None = None,
    sessions: SessionRegistry | None = None,
) -> FastAPI:
    """Create a FastAPI app exposing the script sharing endpoints."""

    resolved_settings = settings or ScriptShareSettings.from_env()

    document_store = store or FileDocumentStore(resolved_settings.data_dir)
    created = document_store.seed(load_seed_documents())
    if created:
        logger.info("Seeded documents: %s", ", ".join(created))

    scripts = ScriptRepository(document_store)
    users = UserRepository(document_store)
    config = ConfigRepository(document_store)
    assets = AssetStore(
        resolved_settings.upload_dir, public_base_url=resolved_settings.public_url
    )

    script_service = ScriptService(
        scripts=scripts, users=users, config=config, assets=assets
    )
    user_service = UserService(users=users, config=config)
    config_service = ConfigService(config=config)
    policy = PermissionPolicy(
        enforce=resolved_settings.enforce_permissions,
        allow_anonymous_uploads=resolved_settings.allow_anonymous_uploads,
    )
    session_registry = sessions or SessionRegistry()

    tags_metadata = [
        {
            "name": "Scripts",
            "description": (
                "Browse, upload, moderate, rank and download shared scripts "
                "and their version series."
            ),
        },
        {
            "name": "Users",
            "description": "Manage user records and their permission bags.",
        },
        {
            "name": "Auth",
            "description": "Sign up, log in and end sessions.",
        },
        {
            "name": "Config",
            "description": "Read and change the tag vocabulary and system settings.",
        },
        {
            "name": "Admin",
            "description": "Moderation views reserved for administrators.",
        },
    ]

    app = FastAPI(
        title="Script Sharing API",
        version=API_VERSION,
        description=(
            "HTTP API for a community script sharing site. Users upload "
            "scripts with a cover image and a JSON data file, administrators "
            "review them, and everyone can browse, like and download the "
            "approved catalogue."
        ),
        openapi_tags=tags_metadata,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(resolved_settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.mount(
        UPLOADS_URL_PREFIX,
        StaticFiles(directory=str(resolved_settings.upload_dir)),
        name="uploads",
    )

    app.state.settings = resolved_settings
    app.state.script_service = script_service
    app.state.user_service = user_service
    app.state.config_service = config_service
    app.state.sessions = session_registry

    def current_actor(token: str | None = Depends(session_token)) -> Actor:
        user_id = session_registry.resolve(token)
        user = users.find(user_id)
        return GUEST if user is None else Actor(user=user)

    def _authorise(check: Callable[[], None]) -> None:
        try:
            check()
        except PermissionDeniedError as exc:
            raise _denied(exc) from exc

    def _series_resources(grouped: dict[str, list[Script]]) -> SeriesListResponse:
        return SeriesListResponse(
            data=[
                SeriesResource(series_id=series_id, scripts=members)
                for series_id, members in grouped.items()
            ]
        )

    @app.get("/", tags=["Scripts"])
    def service_banner() -> dict[str, Any]:
        return {
            "message": "Script sharing API server",
            "version": API_VERSION,
            "endpoints": {
                "scripts": "/api/scripts",
                "series": "/api/scripts/series",
                "users": "/api/users",
                "login": "/api/login",
                "signup": "/api/signup",
                "config": "/api/config",
                "admin": "/api/admin/scripts",
            },
        }

    @app.get(
        "/api/scripts",
        response_model=ScriptListResponse,
        tags=["Scripts"],
    )
    def list_scripts(
        *,
        status: ScriptStatus | None = Query(
            None, description="Only return scripts in this moderation state."
        ),
        search: str | None = Query(
            None, description="Case-insensitive title or description substring."
        ),
        tag: str | None = Query(None, description="Only return scripts carrying this tag."),
        actor: Actor = Depends(current_actor),
    ) -> ScriptListResponse:
        _authorise(lambda: policy.require(actor, Permission.VIEW, action="view scripts"))
        return ScriptListResponse(
            data=script_service.list_scripts(status=status, search=search, tag=tag)
        )

    @app.get(
        "/api/scripts/series",
        response_model=SeriesListResponse,
        tags=["Scripts"],
    )
    def list_series(
        status: ScriptStatus | None = Query(
            None, description="Only group scripts in this moderation state."
        ),
        actor: Actor = Depends(current_actor),
    ) -> SeriesListResponse:
        _authorise(lambda: policy.require(actor, Permission.VIEW, action="view scripts"))
        return _series_resources(script_service.list_series(status=status))

    @app.get(
        "/api/scripts/ranking",
        response_model=ScriptListResponse,
        tags=["Scripts"],
    )
    def rank_scripts(
        by: RankingMetric = Query(
            RankingMetric.LIKES, description="Counter to rank approved scripts by."
        ),
        limit: int | None = Query(None, ge=1, le=500),
        actor: Actor = Depends(current_actor),
    ) -> ScriptListResponse:
        _authorise(lambda: policy.require(actor, Permission.VIEW, action="view scripts"))
        return ScriptListResponse(data=script_service.rank(by, limit=limit))

    @app.get(
        "/api/scripts/{script_id}",
        response_model=Script,
        tags=["Scripts"],
    )
    def get_script(script_id: str, actor: Actor = Depends(current_actor)) -> Script:
        _authorise(lambda: policy.require(actor, Permission.VIEW, action="view scripts"))
        try:
            return script_service.get_script(script_id)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.get(
        "/api/scripts/{script_id}/versions",
        response_model=ScriptListResponse,
        tags=["Scripts"],
    )
    def list_script_versions(
        script_id: str, actor: Actor = Depends(current_actor)
    ) -> ScriptListResponse:
        _authorise(lambda: policy.require(actor, Permission.VIEW, action="view scripts"))
        try:
            return ScriptListResponse(data=script_service.list_versions(script_id))
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.get(
        "/api/scripts/{script_id}/roles",
        response_model=RoleSummaryResponse,
        tags=["Scripts"],
    )
    def get_script_roles(
        script_id: str, actor: Actor = Depends(current_actor)
    ) -> RoleSummaryResponse:
        _authorise(lambda: policy.require(actor, Permission.VIEW, action="view scripts"))
        try:
            summary = script_service.summarise_roles(script_id)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

        return RoleSummaryResponse(
            script_id=script_id,
            meta=summary.meta,
            teams=[
                TeamResource(team=team.team, roles=list(team.roles))
                for team in summary.teams
            ],
            role_count=summary.role_count,
        )

    @app.post(
        "/api/scripts",
        response_model=ScriptCreateResponse,
        status_code=201,
        tags=["Scripts"],
    )
    def upload_script(
        title: str = Form(""),
        description: str = Form(""),
        version: str = Form(""),
        tags: str = Form(""),
        uploader_name: str | None = Form(None, alias="uploaderName"),
        uploader_id: str | None = Form(None, alias="uploaderId"),
        base_script_id: str | None = Form(None, alias="baseScriptId"),
        image: UploadFile | None = File(None),
        json_file: UploadFile | None = File(None, alias="json"),
        actor: Actor = Depends(current_actor),
    ) -> ScriptCreateResponse:
        _authorise(lambda: policy.require_upload(actor))

        # Signed-in uploads are always attributed to the session's user.
        if actor.user is not None:
            resolved_uploader_id: str | None = actor.user.id
        elif policy.enforce:
            resolved_uploader_id = None
        else:
            resolved_uploader_id = uploader_id

        limit_kb = config_service.get_config().system_settings.max_upload_size_kb
        upload = ScriptUpload(
            title=title,
            description=description,
            version=version,
            tags=tags,
            base_script_id=base_script_id,
            uploader_id=resolved_uploader_id,
            uploader_name=uploader_name,
            image=_read_upload(image, limit_kb=limit_kb),
            json_file=_read_upload(json_file, limit_kb=limit_kb),
        )
        try:
            creation = script_service.create_script(upload)
        except ScriptValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except QuotaExceededError as exc:
            raise HTTPException(status_code=429, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc

        return ScriptCreateResponse(script=creation.script, message=creation.message)

    @app.put(
        "/api/scripts/{script_id}",
        response_model=ScriptResponse,
        tags=["Scripts"],
    )
    def update_script(
        script_id: str,
        payload: ScriptUpdateRequest,
        actor: Actor = Depends(current_actor),
    ) -> ScriptResponse:
        changes = {
            name: getattr(payload, name)
            for name in ("status", "likes", "downloads")
            if getattr(payload, name) is not None
        }
        _authorise(lambda: policy.require_script_update(actor, changes.keys()))
        try:
            script = script_service.update_script(
                script_id,
                status=changes.get("status", _UNSET),
                likes=changes.get("likes", _UNSET),
                downloads=changes.get("downloads", _UNSET),
            )
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ScriptValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc

        return ScriptResponse(script=script)

    @app.post(
        "/api/scripts/{script_id}/like",
        response_model=ScriptResponse,
        tags=["Scripts"],
    )
    def like_script(
        script_id: str,
        payload: ScriptLikeRequest | None = None,
        actor: Actor = Depends(current_actor),
    ) -> ScriptResponse:
        _authorise(lambda: policy.require_authenticated(actor, action="like scripts"))
        liked = payload.liked if payload is not None else True
        try:
            script = script_service.like_script(script_id, liked=liked)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc

        return ScriptResponse(script=script)

    @app.delete(
        "/api/scripts/{script_id}",
        response_model=MessageResponse,
        tags=["Scripts"],
    )
    def delete_script(
        script_id: str, actor: Actor = Depends(current_actor)
    ) -> MessageResponse:
        _authorise(lambda: policy.require(actor, Permission.DELETE, action="delete scripts"))
        try:
            script_service.delete_script(script_id)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc

        return MessageResponse(message="Script deleted.")

    @app.delete(
        "/api/series/{series_id}",
        response_model=SeriesDeleteResponse,
        tags=["Scripts"],
    )
    def delete_series(
        series_id: str, actor: Actor = Depends(current_actor)
    ) -> SeriesDeleteResponse:
        _authorise(lambda: policy.require(actor, Permission.DELETE, action="delete scripts"))
        try:
            outcome = script_service.delete_series(series_id)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

        if outcome.complete:
            message = f"Deleted all {outcome.total} versions of series '{series_id}'."
        else:
            message = (
                f"Deleted {len(outcome.deleted)} of {outcome.total} versions of "
                f"series '{series_id}'."
            )
        return SeriesDeleteResponse(
            success=outcome.complete,
            deleted=list(outcome.deleted),
            failed=list(outcome.failed),
            total=outcome.total,
            message=message,
        )

    @app.get("/api/scripts/{script_id}/download", tags=["Scripts"])
    def download_script(
        script_id: str, actor: Actor = Depends(current_actor)
    ) -> FileResponse:
        _authorise(
            lambda: policy.require(actor, Permission.DOWNLOAD, action="download scripts")
        )
        try:
            download = script_service.download_script(script_id)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc

        return FileResponse(
            download.path,
            media_type="application/json",
            headers={"Content-Disposition": content_disposition(download.filename)},
        )

    @app.get(
        "/api/users",
        response_model=UserListResponse,
        tags=["Users"],
    )
    def list_users(actor: Actor = Depends(current_actor)) -> UserListResponse:
        _authorise(lambda: policy.require(actor, Permission.MANAGE_USERS, action="list users"))
        return UserListResponse(data=user_service.list_users())

    @app.put(
        "/api/users/{user_id}",
        response_model=UserResponse,
        tags=["Users"],
    )
    def put_user(
        user_id: str,
        payload: UserUpdateRequest,
        actor: Actor = Depends(current_actor),
    ) -> UserResponse:
        changes = payload.provided_changes()
        try:
            if user_id == "new":
                _authorise(
                    lambda: policy.require(actor, Permission.MANAGE_USERS, action="create users")
                )
                role = changes.get("role", UserRole.USER)
                user = user_service.create_user(
                    name=changes.get("name", ""),
                    email=changes.get("email", ""),
                    role=role,
                    can_upload=changes.get("can_upload", True),
                    skip_review=changes.get("skip_review", False),
                    permissions=changes.get("permissions"),
                )
            else:
                _authorise(
                    lambda: policy.require_user_update(actor, user_id, changes.keys())
                )
                user = user_service.update_user(user_id, **changes)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ScriptValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc

        return UserResponse(user=user)

    @app.delete(
        "/api/users/{user_id}",
        response_model=MessageResponse,
        tags=["Users"],
    )
    def delete_user(
        user_id: str, actor: Actor = Depends(current_actor)
    ) -> MessageResponse:
        _authorise(lambda: policy.require(actor, Permission.MANAGE_USERS, action="delete users"))
        try:
            user_service.delete_user(user_id)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc

        session_registry.revoke_user(user_id)
        return MessageResponse(message="User deleted.")

    @app.post(
        "/api/login",
        response_model=SessionResponse,
        tags=["Auth"],
    )
    def login(payload: LoginRequest) -> SessionResponse:
        try:
            user = user_service.login(payload.email, payload.password)
        except LoginFailedError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc

        logger.info("User '%s' logged in.", user.id)
        return SessionResponse(user=user, token=session_registry.issue(user.id))

    @app.post(
        "/api/signup",
        response_model=SessionResponse,
        status_code=201,
        tags=["Auth"],
    )
    def signup(payload: SignupRequest) -> SessionResponse:
        try:
            user = user_service.signup(name=payload.name, email=payload.email)
        except PermissionDeniedError as exc:
            raise _denied(exc) from exc
        except ScriptValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc

        return SessionResponse(user=user, token=session_registry.issue(user.id))

    @app.post(
        "/api/logout",
        response_model=LogoutResponse,
        tags=["Auth"],
    )
    def logout(token: str | None = Depends(session_token)) -> LogoutResponse:
        revoked = session_registry.revoke(token)
        return LogoutResponse(success=revoked)

    @app.get(
        "/api/config",
        response_model=SystemConfig,
        tags=["Config"],
    )
    def get_config() -> SystemConfig:
        return config_service.get_config()

    @app.put(
        "/api/config",
        response_model=ConfigUpdateResponse,
        tags=["Config"],
    )
    def replace_config(
        payload: SystemConfig, actor: Actor = Depends(current_actor)
    ) -> ConfigUpdateResponse:
        current = config_service.get_config()
        _authorise(lambda: policy.require_config_replace(actor, current, payload))
        try:
            stored = config_service.replace_config(payload)
        except StorageError as exc:
            raise _storage_failure(exc) from exc
        return ConfigUpdateResponse(config=stored)

    @app.post(
        "/api/config/tags",
        response_model=ConfigUpdateResponse,
        tags=["Config"],
    )
    def add_tag(
        payload: TagRequest, actor: Actor = Depends(current_actor)
    ) -> ConfigUpdateResponse:
        _authorise(
            lambda: policy.require(actor, Permission.MANAGE_TAGS, action="change available tags")
        )
        try:
            stored = config_service.add_tag(payload.tag)
        except ScriptValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StorageError as exc:
            raise _storage_failure(exc) from exc
        return ConfigUpdateResponse(config=stored)

    @app.delete(
        "/api/config/tags/{tag}",
        response_model=ConfigUpdateResponse,
        tags=["Config"],
    )
    def remove_tag(
        tag: str, actor: Actor = Depends(current_actor)
    ) -> ConfigUpdateResponse:
        _authorise(
            lambda: policy.require(actor, Permission.MANAGE_TAGS, action="change available tags")
        )
        try:
            stored = config_service.remove_tag(tag)
        except StorageError as exc:
            raise _storage_failure(exc) from exc
        return ConfigUpdateResponse(config=stored)

    @app.get(
        "/api/admin/scripts",
        response_model=SeriesListResponse,
        tags=["Admin"],
    )
    def admin_scripts(actor: Actor = Depends(current_actor)) -> SeriesListResponse:
        _authorise(lambda: policy.require_admin(actor, action="review all scripts"))
        return _series_resources(script_service.list_series())

    return app


__all__ = ["create_app"]
