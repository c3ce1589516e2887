"""
Key-value storage abstraction for saves.

Separates persistence from the save policy for testability. Values are
strings (serialized JSON); the save manager owns encoding and quotas.
"""

import logging
import os
import re
from pathlib import Path
from typing import Protocol, runtime_checkable

from .errors import PersistenceError, QuotaExceededError

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """
    Abstract string storage keyed by name.

    Implementations:
    - JsonFileKeyValueStore: One file per key (production)
    - MemoryKeyValueStore: In-memory storage (testing)
    """

    def get_item(self, key: str) -> str | None:
        """Read a value. Returns None if not found."""
        ...

    def set_item(self, key: str, value: str) -> None:
        """
        Write a value.

        Raises:
            QuotaExceededError: If the backend is out of space
            PersistenceError: For any other write failure
        """
        ...

    def remove_item(self, key: str) -> bool:
        """Delete a value. Returns True if it existed."""
        ...

    def keys(self) -> list[str]:
        """All stored keys."""
        ...


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")


class JsonFileKeyValueStore:
    """
    File-based storage, one file per key.

    Features:
    - Backup of the previous value on overwrite
    - Keys are sanitized into file names
    """

    SUFFIX = ".json"

    def __init__(self, saves_dir: Path | str = "saves"):
        self.saves_dir = Path(saves_dir)
        self.saves_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.saves_dir / f"{_UNSAFE_CHARS.sub('_', key)}{self.SUFFIX}"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to read {key}") from e

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)

        # Backup previous save
        if path.exists():
            backup = path.with_suffix(f"{self.SUFFIX}.bak")
            try:
                backup.write_text(path.read_text(encoding="utf-8"), encoding="utf-8")
            except OSError:
                logger.warning(f"Could not back up {key}")

        # Write to a temp file first so a failed write never truncates the save
        tmp = path.with_suffix(f"{self.SUFFIX}.tmp")
        try:
            tmp.write_text(value, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            if getattr(e, "errno", None) == 28:  # ENOSPC
                raise QuotaExceededError(f"No space left writing {key}") from e
            raise PersistenceError(f"Failed to write {key}") from e

    def remove_item(self, key: str) -> bool:
        path = self._path(key)
        path.with_suffix(f"{self.SUFFIX}.bak").unlink(missing_ok=True)
        if path.exists():
            path.unlink()
            return True
        return False

    def keys(self) -> list[str]:
        return sorted(
            f.name[: -len(self.SUFFIX)]
            for f in self.saves_dir.glob(f"*{self.SUFFIX}")
            if not f.name.startswith(".")
        )


class MemoryKeyValueStore:
    """
    In-memory storage for testing.

    An optional quota (total characters across all values) makes set_item
    raise QuotaExceededError the way a browser's storage would.
    """

    def __init__(self, quota: int | None = None):
        self.items: dict[str, str] = {}
        self.quota = quota

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.quota is not None:
            used = sum(len(v) for k, v in self.items.items() if k != key)
            if used + len(value) > self.quota:
                raise QuotaExceededError(f"Quota of {self.quota} exceeded writing {key}")
        self.items[key] = value

    def remove_item(self, key: str) -> bool:
        if key in self.items:
            del self.items[key]
            return True
        return False

    def keys(self) -> list[str]:
        return list(self.items)

    def clear(self) -> None:
        """Clear all items (test utility)."""
        self.items.clear()
