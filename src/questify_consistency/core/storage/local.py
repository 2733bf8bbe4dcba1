"""Filesystem blob store for development and tests."""

from __future__ import annotations

import mimetypes
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from .base import BlobData, BlobMetadata, BlobStore, StorageBackend, as_bytes, normalize_key, sha256_hex

_PARTIAL_SUFFIX = ".partial"


class LocalFilesystemBlobStore(BlobStore):
    """
    Blobs are plain files under `base_path` (ARTIFACT_STORAGE_PATH,
    default ./data/blobs). Writes go to a ".partial" file that is renamed
    into place, so a reader sees either the old or the new content.
    """

    def __init__(self, base_path: Optional[Union[str, Path]] = None, *, create_dirs: bool = True):
        root = base_path if base_path is not None else os.getenv("ARTIFACT_STORAGE_PATH", "./data/blobs")
        self.base_path = Path(root).resolve()
        if create_dirs:
            self.base_path.mkdir(parents=True, exist_ok=True)

    @property
    def backend_type(self) -> StorageBackend:
        return StorageBackend.LOCAL

    def _path(self, key: str) -> Path:
        return self.base_path / normalize_key(key)

    def _info(self, path: Path, content_type: Optional[str] = None, sha256: Optional[str] = None,
              metadata: Optional[Dict[str, str]] = None) -> BlobMetadata:
        stat = path.stat()
        return BlobMetadata(
            storage_key=path.relative_to(self.base_path).as_posix(),
            storage_uri=path.as_uri(),
            storage_backend=StorageBackend.LOCAL,
            content_type=content_type or mimetypes.guess_type(path.name)[0] or "application/octet-stream",
            size_bytes=stat.st_size,
            sha256=sha256,
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            metadata=metadata or {},
        )

    def put(self, key, data: BlobData, *, content_type="application/octet-stream", metadata=None):
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        content = as_bytes(data)

        partial = path.with_name(path.name + _PARTIAL_SUFFIX)
        partial.write_bytes(content)
        os.replace(partial, path)

        return self._info(path, content_type=content_type, sha256=sha256_hex(content), metadata=metadata)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as e:
            raise FileNotFoundError(f"Blob not found: {key}") from e

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def get_url(self, key: str, *, expires_in: int = 900, for_download: bool = False) -> str:
        path = self._path(key)
        if not path.is_file():
            raise FileNotFoundError(f"Blob not found: {key}")
        return path.as_uri()

    def list(self, prefix: str = "", *, max_results: int = 1000) -> Iterator[BlobMetadata]:
        root = self._path(prefix) if prefix else self.base_path
        if root.is_file():
            candidates = [root]
        elif root.is_dir():
            candidates = sorted(root.rglob("*"))
        else:
            candidates = []

        files = (p for p in candidates if p.is_file() and not p.name.endswith(_PARTIAL_SUFFIX))
        for count, path in enumerate(files):
            if count >= max_results:
                return
            yield self._info(path)
