from __future__ import annotations

import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .config import Settings


@dataclass(slots=True)
class StorageStat:
    size_bytes: int | None
    etag: str | None = None


class Storage(ABC):
    """Binary blob store addressed by relative keys (``uploads/<token>/clip.mp4``)."""

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    @abstractmethod
    def stat(self, key: str) -> StorageStat: ...

    @abstractmethod
    def path_for(self, key: str) -> Path: ...

    @abstractmethod
    def uri_for(self, key: str) -> str: ...

    @abstractmethod
    def put_file(self, key: str, source: Path) -> str: ...

    @abstractmethod
    def write_bytes(self, key: str, payload: bytes) -> str: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def delete_prefix(self, prefix: str) -> None: ...

    @abstractmethod
    def list(self, prefix: str) -> Iterable[str]: ...


class LocalStorage(Storage):
    """Filesystem-backed storage abstraction suitable for development."""

    def __init__(self, base_path: Path):
        self.base_path = base_path.resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if path != self.base_path and self.base_path not in path.parents:
            raise ValueError(f"Storage key escapes base path: {key}")
        return path

    def exists(self, key: str) -> bool:
        return self._resolve(key).exists()

    def stat(self, key: str) -> StorageStat:
        path = self._resolve(key)
        if not path.exists():
            raise FileNotFoundError(key)
        return StorageStat(size_bytes=path.stat().st_size)

    def path_for(self, key: str) -> Path:
        return self._resolve(key)

    def uri_for(self, key: str) -> str:
        return self._resolve(key).as_uri()

    def put_file(self, key: str, source: Path) -> str:
        path = self._resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, path)
        return key

    def write_bytes(self, key: str, payload: bytes) -> str:
        path = self._resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        return key

    def delete(self, key: str) -> None:
        path = self._resolve(key)
        path.unlink(missing_ok=True)
        self._prune_empty_parents(path.parent)

    def delete_prefix(self, prefix: str) -> None:
        base = self._resolve(prefix)
        if base == self.base_path:
            raise ValueError("Refusing to delete the storage root")
        if base.is_dir():
            shutil.rmtree(base)
        elif base.exists():
            base.unlink()
        self._prune_empty_parents(base.parent)

    def list(self, prefix: str) -> Iterable[str]:
        base = self._resolve(prefix)
        if not base.exists():
            return []
        if base.is_file():
            return [base.relative_to(self.base_path).as_posix()]
        return sorted(p.relative_to(self.base_path).as_posix() for p in base.rglob("*") if p.is_file())

    def _prune_empty_parents(self, directory: Path) -> None:
        while directory != self.base_path and self.base_path in directory.parents:
            if not directory.exists() or any(directory.iterdir()):
                return
            directory.rmdir()
            directory = directory.parent


def get_storage(settings: Settings) -> Storage:
    return LocalStorage(base_path=Path(settings.storage_root))


__all__ = [
    "Storage",
    "LocalStorage",
    "StorageStat",
    "get_storage",
]
