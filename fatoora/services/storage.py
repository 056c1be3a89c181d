"""Storage for signed invoices: local disk behind a ``put`` interface."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from fatoora.core.config import settings
from fatoora.services.zatca.exceptions import StorageError


class Storage(Protocol):
    def put(self, filename: str, data: bytes) -> str: ...


class LocalStorage:
    """Store files under a root directory (``settings.FILE_STORAGE_PATH`` by default)."""

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root if root is not None else settings.FILE_STORAGE_PATH)

    @property
    def root(self) -> Path:
        return self._root

    def put(self, filename: str, data: bytes) -> str:
        """Persist *data* under *filename* and return the full path."""
        dest = self._root / filename
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Cannot save {dest}: {exc}") from exc
        return str(dest)

    def read(self, filename: str) -> bytes:
        return (self._root / filename).read_bytes()
