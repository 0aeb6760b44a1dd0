"""Document persistence for users, scripts and the system configuration.

Each collection lives in a single JSON document that is read fully and
rewritten fully. Every read-modify-write runs while holding the document's
lock, so concurrent requests in one process cannot overwrite each other.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from importlib import resources
from pathlib import Path
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Mapping

from pydantic import ValidationError

from .errors import RecordNotFoundError, StorageError
from .lifecycle import mint_identifier
from .models import Script, SystemConfig, User

logger = logging.getLogger(__name__)

USERS_DOCUMENT = "users"
SCRIPTS_DOCUMENT = "scripts"
CONFIG_DOCUMENT = "config"
DOCUMENT_NAMES = (USERS_DOCUMENT, SCRIPTS_DOCUMENT, CONFIG_DOCUMENT)

_SEED_RESOURCE = "seed.json"


class DocumentStore(ABC):
    """Interface describing how named JSON documents are persisted."""

    def __init__(self) -> None:
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @abstractmethod
    def exists(self, name: str) -> bool:
        """Return whether document ``name`` has been written."""

    @abstractmethod
    def load(self, name: str) -> Any:
        """Return the decoded document.

        Raises:
            KeyError: If the document does not exist.
            ValueError: If the stored content cannot be decoded.
            OSError: If the underlying storage cannot be read.
        """

    @abstractmethod
    def write(self, name: str, payload: Any) -> None:
        """Replace document ``name`` with ``payload``.

        Raises:
            StorageError: If the document cannot be written.
        """

    def read(self, name: str, default: Callable[[], Any]) -> Any:
        """Return document ``name``, or ``default()`` when it cannot be read."""

        try:
            return self.load(name)
        except KeyError:
            return default()
        except (OSError, ValueError) as exc:
            logger.error("Failed to read document '%s': %s", name, exc)
            return default()

    @contextmanager
    def locked(self, name: str) -> Iterator[None]:
        """Hold the lock of document ``name`` for a read-modify-write."""

        with self._locks_guard:
            lock = self._locks.setdefault(name, threading.RLock())
        with lock:
            yield

    def seed(self, documents: Mapping[str, Any]) -> List[str]:
        """Write each document in ``documents`` that does not exist yet."""

        created: List[str] = []
        for name, payload in documents.items():
            with self.locked(name):
                if self.exists(name):
                    continue
                self.write(name, copy.deepcopy(payload))
                created.append(name)
        return created


class InMemoryDocumentStore(DocumentStore):
    """Keep documents in local process memory."""

    def __init__(self) -> None:
        super().__init__()
        self._documents: Dict[str, str] = {}

    def exists(self, name: str) -> bool:
        return name in self._documents

    def load(self, name: str) -> Any:
        return json.loads(self._documents[name])

    def write(self, name: str, payload: Any) -> None:
        self._documents[name] = json.dumps(payload, ensure_ascii=False)


class FileDocumentStore(DocumentStore):
    """Persist documents as ``<name>.json`` files in ``storage_dir``."""

    def __init__(self, storage_dir: Path) -> None:
        super().__init__()
        self.storage_dir = storage_dir
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.storage_dir / f"{name}.json"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def load(self, name: str) -> Any:
        path = self.path_for(name)
        if not path.exists():
            raise KeyError(name)
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def write(self, name: str, payload: Any) -> None:
        path = self.path_for(name)
        try:
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{name}-", suffix=".tmp", dir=self.storage_dir
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False, indent=2)
            os.replace(temp_name, path)
        except OSError as exc:
            logger.error("Failed to write document '%s': %s", name, exc)
            raise StorageError(f"Failed to write the {name} document.") from exc


def load_seed_documents() -> Dict[str, Any]:
    """Return the bundled first-run content for every document."""

    seed_path = resources.files("scriptshare.data").joinpath(_SEED_RESOURCE)
    payload = json.loads(seed_path.read_text(encoding="utf-8"))
    return {name: payload[name] for name in DOCUMENT_NAMES}


class _RecordRepository:
    """Shared list-document handling for the script and user repositories.

    Entries that fail validation are skipped when listing but written back
    untouched, so a malformed record never destroys its neighbours.
    """

    document: str
    kind: str
    model: type[Script] | type[User]

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def _entries(self) -> List[Any]:
        payload = self._store.read(self.document, list)
        if not isinstance(payload, list):
            logger.error("Document '%s' is not a list; treating as empty.", self.document)
            return []
        return payload

    def _parse(self, entry: Any) -> Any:
        try:
            return self.model.model_validate(entry)
        except ValidationError as exc:
            logger.warning("Skipping invalid %s record: %s", self.kind.lower(), exc)
            return None

    def _records(self) -> List[Any]:
        records = []
        for entry in self._entries():
            record = self._parse(entry)
            if record is not None:
                records.append(record)
        return records

    def _index_of(self, entries: List[Any], identifier: str) -> int:
        for index, entry in enumerate(entries):
            if isinstance(entry, Mapping) and entry.get("id") == identifier:
                return index
        raise RecordNotFoundError(self.kind, identifier)

    def _get(self, identifier: str) -> Any:
        entries = self._entries()
        record = self._parse(entries[self._index_of(entries, identifier)])
        if record is None:
            raise RecordNotFoundError(self.kind, identifier)
        return record

    def _find(self, identifier: str | None) -> Any:
        if not identifier:
            return None
        try:
            return self._get(identifier)
        except RecordNotFoundError:
            return None

    def _insert(self, build: Callable[[str], Any]) -> Any:
        with self._store.locked(self.document):
            entries = self._entries()
            existing = {
                str(entry.get("id")) for entry in entries if isinstance(entry, Mapping)
            }
            record = build(mint_identifier(existing))
            entries.append(record.to_payload())
            self._store.write(self.document, entries)
            return record

    def _update(self, identifier: str, mutate: Callable[[Any], Any]) -> Any:
        with self._store.locked(self.document):
            entries = self._entries()
            index = self._index_of(entries, identifier)
            current = self._parse(entries[index])
            if current is None:
                raise RecordNotFoundError(self.kind, identifier)
            updated = mutate(current)
            entries[index] = updated.to_payload()
            self._store.write(self.document, entries)
            return updated

    def _delete(self, identifier: str) -> Any:
        with self._store.locked(self.document):
            entries = self._entries()
            index = self._index_of(entries, identifier)
            removed = self._parse(entries[index])
            del entries[index]
            self._store.write(self.document, entries)
            return removed


class ScriptRepository(_RecordRepository):
    """Access to the scripts document."""

    document = SCRIPTS_DOCUMENT
    kind = "Script"
    model = Script

    def list(self) -> List[Script]:
        return self._records()

    def get(self, identifier: str) -> Script:
        return self._get(identifier)

    def locked(self) -> ContextManager[None]:
        """Hold the scripts document lock across several reads and a create."""

        return self._store.locked(self.document)

    def create(self, build: Callable[[str], Script]) -> Script:
        """Append the script returned by ``build(new_identifier)``."""

        return self._insert(build)

    def update(self, identifier: str, mutate: Callable[[Script], Script]) -> Script:
        return self._update(identifier, mutate)

    def delete(self, identifier: str) -> Script | None:
        """Remove the script and return its last valid state, if any."""

        return self._delete(identifier)


class UserRepository(_RecordRepository):
    """Access to the users document."""

    document = USERS_DOCUMENT
    kind = "User"
    model = User

    def list(self) -> List[User]:
        return self._records()

    def get(self, identifier: str) -> User:
        return self._get(identifier)

    def find(self, identifier: str | None) -> User | None:
        return self._find(identifier)

    def find_by_email(self, email: str) -> User | None:
        for user in self._records():
            if user.email == email:
                return user
        return None

    def create(self, build: Callable[[str], User]) -> User:
        return self._insert(build)

    def update(self, identifier: str, mutate: Callable[[User], User]) -> User:
        return self._update(identifier, mutate)

    def delete(self, identifier: str) -> User | None:
        return self._delete(identifier)


class ConfigRepository:
    """Access to the singleton configuration document."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def get(self) -> SystemConfig:
        payload = self._store.read(CONFIG_DOCUMENT, dict)
        try:
            return SystemConfig.model_validate(payload)
        except ValidationError as exc:
            logger.error("Configuration document is invalid; using defaults: %s", exc)
            return SystemConfig()

    def replace(self, config: SystemConfig) -> SystemConfig:
        with self._store.locked(CONFIG_DOCUMENT):
            self._store.write(CONFIG_DOCUMENT, config.to_payload())
        return config

    def update(self, mutate: Callable[[SystemConfig], SystemConfig]) -> SystemConfig:
        with self._store.locked(CONFIG_DOCUMENT):
            updated = mutate(self.get())
            self._store.write(CONFIG_DOCUMENT, updated.to_payload())
            return updated


__all__ = [
    "CONFIG_DOCUMENT",
    "ConfigRepository",
    "DOCUMENT_NAMES",
    "DocumentStore",
    "FileDocumentStore",
    "InMemoryDocumentStore",
    "SCRIPTS_DOCUMENT",
    "ScriptRepository",
    "USERS_DOCUMENT",
    "UserRepository",
    "load_seed_documents",
]
