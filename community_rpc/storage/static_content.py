"""Read-only static content (validator address maps published per network)."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


class StaticContentStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def list(self, prefix: str = "") -> list[str]: ...


@dataclass
class DirectoryContentStore:
    """``StaticContentStore`` over files below *root*; keys are relative paths."""

    root: Path

    def _resolve(self, key: str) -> Path | None:
        root = self.root.resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            return None
        return path

    async def get(self, key: str) -> str | None:
        path = self._resolve(key)
        if path is None or not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    async def list(self, prefix: str = "") -> list[str]:
        if not self.root.is_dir():
            return []
        keys = (p.relative_to(self.root).as_posix() for p in self.root.rglob("*") if p.is_file())
        return sorted(k for k in keys if k.startswith(prefix))
