"""
Off-Chain Store Backends

Two kinds of backend sit behind the OffchainStore:

- LocalBackend: synchronous, in-process, always available. Optionally
  mirrored to a JSON file so a restart keeps what was saved.
- RemoteBackend: the shared, durable store. May be slow, down or not
  configured at all. Every failure surfaces as RemoteStoreError; the
  OffchainStore decides what to do about it.

Values are JSON-compatible (dicts, lists, strings, numbers). Typed records
are dumped with ``model_dump(mode="json")`` before they get here.
"""

import copy
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Any, Optional, Sequence, Union

from ..observability import get_logger


logger = get_logger(__name__)


# ============================================================
# EXCEPTIONS
# ============================================================

class RemoteStoreError(Exception):
    """The remote backend timed out, was unreachable, or is misconfigured."""
    pass


class LocalStoreError(Exception):
    """A value could not be stored even locally (not JSON-serializable)."""
    pass


# ============================================================
# LOCAL BACKEND
# ============================================================

class LocalBackend:
    """
    In-process key/value store: collection -> key -> JSON document.

    With ``path`` set, every write rewrites the file through a temp file and
    an atomic rename. A missing file starts empty; an unreadable one is
    logged and ignored.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self._path = Path(path) if path else None
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = Lock()
        if self._path is not None:
            self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Local cache unreadable; starting empty", path=str(self._path), error=str(e))
            return
        if isinstance(data, dict):
            self._data = {c: dict(docs) for c, docs in data.items() if isinstance(docs, dict)}

    def _flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".givecore-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f)
            os.replace(tmp, self._path)
        except OSError as e:
            logger.error("Local cache write failed; keeping in-memory copy", path=str(self._path), error=str(e))
            if os.path.exists(tmp):
                os.unlink(tmp)

    def get(self, collection: str, key: str) -> Optional[Any]:
        with self._lock:
            value = self._data.get(collection, {}).get(key)
            return copy.deepcopy(value)

    def put(self, collection: str, key: str, value: Any) -> None:
        try:
            # Round-trip so only plain JSON is ever kept
            stored = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            raise LocalStoreError(f"{collection}/{key}: {e}") from e
        with self._lock:
            self._data.setdefault(collection, {})[key] = stored
            self._flush()

    def collection_sizes(self) -> dict[str, int]:
        with self._lock:
            return {c: len(docs) for c, docs in self._data.items()}
            self._flush()


# ============================================================
# REMOTE BACKEND INTERFACE
# ============================================================

class RemoteBackend(ABC):
    """
    Abstract async remote store.

    Implementations raise RemoteStoreError for every transport-level
    problem. A missing value is None, not an error.
    """

    @abstractmethod
    async def fetch(self, collection: str, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def fetch_many(self, collection: str, keys: Sequence[str]) -> dict[str, Any]:
        """Values for the keys that exist; absent keys are left out."""
        pass

    @abstractmethod
    async def upsert(self, collection: str, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def append(self, collection: str, key: str, item: Any) -> None:
        """Append one item to the list stored under key."""
        pass

    async def ping(self) -> None:
        """Raise RemoteStoreError if the backend cannot be reached."""
        pass

    async def close(self) -> None:
        pass
