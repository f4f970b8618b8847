"""
Local Key-Value Stores

The ledger keeps its last known state locally so the panel still opens
when the remote mirror is unreachable.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

import structlog

from shop_ledger.services.storage.interface import LocalStoreInterface, StorageError

logger = structlog.get_logger(__name__)


class JsonFileStore(LocalStoreInterface):
    """
    Key-value store backed by one JSON file.

    Writes go to a temporary file that replaces the original, so a crash
    mid-write leaves the previous state intact.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._cache: Optional[dict[str, Any]] = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache
        if not self._path.exists():
            self._cache = {}
            return self._cache
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("local_store_unreadable", path=str(self._path), error=str(e))
            data = {}
        self._cache = data if isinstance(data, dict) else {}
        return self._cache

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = dict(self._load())
        data[key] = value
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, ensure_ascii=False)
                os.replace(tmp_name, self._path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {self._path}: {e}")
        self._cache = data


class InMemoryStore(LocalStoreInterface):
    """Dict-backed store for tests and storage-less runs."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
