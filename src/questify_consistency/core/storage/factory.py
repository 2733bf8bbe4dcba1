"""
Blob store selection.

ARTIFACT_STORAGE_BACKEND picks the backend ("local" by default, or
"s3"). Without overrides the store is a process-wide singleton.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from .base import BlobStore
from .local import LocalFilesystemBlobStore
from .s3 import S3BlobStore

logger = logging.getLogger(__name__)

BACKENDS = {
    "local": LocalFilesystemBlobStore,
    "s3": S3BlobStore,
}

_default_store: Optional[BlobStore] = None


def get_blob_store(backend: Optional[str] = None, *, force_new: bool = False, **options) -> BlobStore:
    """
    Return the configured BlobStore.

    `options` go to the backend constructor, e.g.
    get_blob_store("s3", bucket="questify-exports") or
    get_blob_store("local", base_path=tmp_path). Passing options or
    force_new bypasses the singleton.
    """
    global _default_store

    name = (backend or os.getenv("ARTIFACT_STORAGE_BACKEND", "local")).lower()
    if name not in BACKENDS:
        raise ValueError(f"Unknown storage backend '{name}' (expected one of {sorted(BACKENDS)})")

    shared = not force_new and not options
    if shared and _default_store is not None:
        return _default_store

    if name == "s3" and "prefix" not in options:
        options["prefix"] = os.getenv("AWS_S3_PREFIX", "")
    store = BACKENDS[name](**options)
    logger.info(f"Blob store created: backend={name} type={type(store).__name__}")

    if shared:
        _default_store = store
    return store


def reset_default_store() -> None:
    global _default_store
    _default_store = None
