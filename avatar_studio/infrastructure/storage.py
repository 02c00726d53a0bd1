"""Object storage for generated artifacts.

The managed deployment keeps artifacts in an S3-style bucket; this module
defines the small contract the application needs ("put bytes, get a public
URL") and a filesystem implementation used locally and in tests.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class StoredArtifact:
    storage_path: str
    url: str


class ArtifactStore(Protocol):
    """Contract for artifact storage integrations."""

    async def put(self, owner: str, filename: str, data: bytes, content_type: str) -> StoredArtifact: ...

    async def delete(self, storage_path: str) -> None: ...


class LocalArtifactStore:
    """Stores artifacts under ``root/<owner>/<filename>``."""

    def __init__(self, root: Path, public_base: str = "/api/images/serve") -> None:
        self._root = Path(root)
        self._public_base = public_base.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, storage_path: str) -> Path | None:
        """Map a storage path to a file inside the root, rejecting traversal."""

        root = self._root.resolve()
        candidate = (root / storage_path).resolve()
        if not str(candidate).startswith(str(root) + "/"):
            return None
        return candidate

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def put(self, owner: str, filename: str, data: bytes, content_type: str) -> StoredArtifact:
        storage_path = f"{Path(owner).name}/{Path(filename).name}"
        target = self.resolve(storage_path)
        if target is None:
            raise ValueError("invalid storage path")
        await asyncio.to_thread(self._write, target, data)
        return StoredArtifact(storage_path=storage_path, url=f"{self._public_base}/{storage_path}")

    async def delete(self, storage_path: str) -> None:
        target = self.resolve(storage_path)
        if target is not None:
            await asyncio.to_thread(target.unlink, True)
