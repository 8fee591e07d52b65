"""Key-value persistence surfaces for baselines."""

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

import structlog

from ..core.errors import PersistenceError

logger = structlog.get_logger(__name__)


class KeyValueStore(ABC):
    """Minimal durable store: bytes in, bytes out."""

    @abstractmethod
    def load(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None when the key is absent."""

    @abstractmethod
    def save(self, key: str, data: bytes) -> None:
        """Persist ``data`` under ``key``, replacing any previous value."""


class MemoryStore(KeyValueStore):
    """Process-local store, used in tests and when persistence is disabled."""

    def __init__(self, initial: Dict[str, bytes] = None):
        self._data: Dict[str, bytes] = dict(initial or {})
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def save(self, key: str, data: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(data)

    def keys(self):
        with self._lock:
            return list(self._data)


class FileStore(KeyValueStore):
    """One file per key under a directory; writes are atomic replaces."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        return self.directory / (quote(key, safe="") + ".json")

    def load(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(key, "load", str(e)) from e

    def save(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.directory), prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(key, "save", str(e)) from e
