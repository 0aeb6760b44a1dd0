"""Test configuration for the script sharing project."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from scriptshare.api import ScriptShareSettings, create_app

ADMIN_EMAIL = "admin@example.com"
USER_EMAIL = "user@example.com"

ROLE_LIST_PAYLOAD: list[Any] = [
    {"id": "_meta", "name": "Trouble Brewing", "author": "Tester"},
    {"id": "imp", "team": "demon", "firstNight": 0, "otherNight": 24},
    {"id": "poisoner", "team": "minion", "firstNight": 17},
    "washerwoman",
]


@pytest.fixture
def settings(tmp_path: Path) -> ScriptShareSettings:
    return ScriptShareSettings(
        data_dir=tmp_path / "data",
        upload_dir=tmp_path / "uploads",
    )


@pytest.fixture
def client(settings: ScriptShareSettings) -> TestClient:
    return TestClient(create_app(settings=settings))


def login(client: TestClient, email: str) -> dict[str, str]:
    """Log in as ``email`` and return headers carrying the session token."""

    response = client.post("/api/login", json={"email": email, "password": "secret"})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def admin_headers(client: TestClient) -> dict[str, str]:
    return login(client, ADMIN_EMAIL)


@pytest.fixture
def user_headers(client: TestClient) -> dict[str, str]:
    return login(client, USER_EMAIL)


def upload_script(
    client: TestClient,
    headers: dict[str, str] | None = None,
    *,
    title: str = "Night of the Raven",
    description: str = "A social deduction script.",
    version: str = "v1.0",
    tags: str = "Mystery, Horror",
    base_script_id: str | None = None,
    uploader_id: str | None = None,
    payload: Any = None,
    json_bytes: bytes | None = None,
    image_type: str = "image/png",
    image_content: bytes = b"\x89PNG fake image",
) -> Any:
    """Post a multipart upload and return the raw response."""

    data = {"title": title, "description": description, "version": version, "tags": tags}
    if base_script_id is not None:
        data["baseScriptId"] = base_script_id
    if uploader_id is not None:
        data["uploaderId"] = uploader_id

    content = json_bytes
    if content is None:
        content = json.dumps(
            ROLE_LIST_PAYLOAD if payload is None else payload
        ).encode("utf-8")

    files = {
        "image": ("cover.png", image_content, image_type),
        "json": ("script.json", content, "application/json"),
    }
    return client.post("/api/scripts", data=data, files=files, headers=headers or {})

