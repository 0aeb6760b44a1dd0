from __future__ import annotations

import json
import threading
import time
from pathlib import Path

import pytest

from conftest import ROLE_LIST_PAYLOAD
from scriptshare.api.services import ScriptService, ScriptUpload, UploadedFile
from scriptshare.assets import AssetKind, AssetStore, StoredAsset
from scriptshare.errors import QuotaExceededError
from scriptshare.storage import (
    CONFIG_DOCUMENT,
    ConfigRepository,
    FileDocumentStore,
    ScriptRepository,
    UserRepository,
    load_seed_documents,
)


class _GatedAssetStore(AssetStore):
    """Holds the first save until ``release`` is set."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.started = threading.Event()
        self.release = threading.Event()
        self._first = True
        self._guard = threading.Lock()

    def save(self, kind: AssetKind, original_filename: str | None, content: bytes) -> StoredAsset:
        with self._guard:
            first, self._first = self._first, False
        if first:
            self.started.set()
            self.release.wait(timeout=5)
        return super().save(kind, original_filename, content)


def _upload() -> ScriptUpload:
    return ScriptUpload(
        title="Night of the Raven",
        description="A social deduction script.",
        version="v1.0",
        uploader_id="2",
        image=UploadedFile("cover.png", "image/png", b"\x89PNG fake image"),
        json_file=UploadedFile(
            "script.json", "application/json", json.dumps(ROLE_LIST_PAYLOAD).encode("utf-8")
        ),
    )


def test_concurrent_uploads_cannot_both_pass_the_daily_quota(tmp_path: Path) -> None:
    store = FileDocumentStore(tmp_path / "data")
    documents = load_seed_documents()
    documents[CONFIG_DOCUMENT]["systemSettings"]["maxUploadsPerDay"] = 1
    store.seed(documents)
    assets = _GatedAssetStore(tmp_path / "uploads")
    scripts = ScriptRepository(store)
    service = ScriptService(
        scripts=scripts,
        users=UserRepository(store),
        config=ConfigRepository(store),
        assets=assets,
    )

    outcomes: list[str] = []

    def upload() -> None:
        try:
            service.create_script(_upload())
        except QuotaExceededError:
            outcomes.append("quota")
        else:
            outcomes.append("created")

    first = threading.Thread(target=upload)
    first.start()
    assert assets.started.wait(timeout=5)

    second = threading.Thread(target=upload)
    second.start()
    time.sleep(0.1)
    assets.release.set()

    first.join(timeout=5)
    second.join(timeout=5)

    assert sorted(outcomes) == ["created", "quota"]
    owned = [script for script in scripts.list() if script.uploader_id == "2"]
    assert len([script for script in owned if script.title == "Night of the Raven"]) == 1
    assert len(list((tmp_path / "uploads" / "json").iterdir())) == 1


def test_quota_rejection_stores_no_files(tmp_path: Path) -> None:
    store = FileDocumentStore(tmp_path / "data")
    documents = load_seed_documents()
    documents[CONFIG_DOCUMENT]["systemSettings"]["maxUploadsPerDay"] = 1
    store.seed(documents)
    service = ScriptService(
        scripts=ScriptRepository(store),
        users=UserRepository(store),
        config=ConfigRepository(store),
        assets=AssetStore(tmp_path / "uploads"),
    )

    service.create_script(_upload())
    with pytest.raises(QuotaExceededError):
        service.create_script(_upload())

    assert len(list((tmp_path / "uploads" / "images").iterdir())) == 1
