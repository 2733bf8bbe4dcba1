"""
Blob storage interface.

The export coordinator keeps per-service part files and the assembled
archive under one prefix per job:

    exports/{userId}/{jobId}/parts/{service}.json
    exports/{userId}/{jobId}/questify-export.zip

Backends are synchronous; the coordinator calls them from a worker
thread.
"""

from __future__ import annotations

import hashlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import BinaryIO, Dict, Iterator, Optional, Union

BlobData = Union[bytes, BinaryIO]

_SLASHES = re.compile(r"/{2,}")


class StorageBackend(str, Enum):
    LOCAL = "local"
    S3 = "s3"


@dataclass
class BlobMetadata:
    storage_key: str
    storage_uri: str
    storage_backend: StorageBackend
    content_type: str
    size_bytes: int
    sha256: Optional[str] = None
    modified_at: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)


def normalize_key(key: str) -> str:
    """
    Canonical form of a storage key: forward slashes, no leading,
    trailing or repeated slashes.

    Raises:
        ValueError: empty key, or a key with a ".." segment
    """
    cleaned = _SLASHES.sub("/", key.replace("\\", "/")).strip("/")
    if not cleaned or ".." in cleaned.split("/"):
        raise ValueError(f"Invalid storage key: {key!r}")
    return cleaned


def as_bytes(data: BlobData) -> bytes:
    if isinstance(data, bytes):
        return data
    if data.seekable():
        data.seek(0)
    return data.read()


def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class BlobStore(ABC):
    """Key/value blob storage with time-limited read URLs."""

    @property
    @abstractmethod
    def backend_type(self) -> StorageBackend:
        ...

    @abstractmethod
    def put(
        self,
        key: str,
        data: BlobData,
        *,
        content_type: str = "application/octet-stream",
        metadata: Optional[Dict[str, str]] = None,
    ) -> BlobMetadata:
        """Store `data` under `key`, replacing what was there."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Raises FileNotFoundError for a missing key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """True if something was deleted."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def get_url(self, key: str, *, expires_in: int = 900, for_download: bool = False) -> str:
        """
        A URL the caller can read the blob from.

        S3 presigns for `expires_in` seconds; the local backend returns a
        file:// URI and ignores both options.

        Raises:
            FileNotFoundError: the blob does not exist
        """

    @abstractmethod
    def list(self, prefix: str = "", *, max_results: int = 1000) -> Iterator[BlobMetadata]:
        """Blobs under `prefix`, recursively."""
