"""Blob storage for export parts and archives (local filesystem or S3)."""

from .base import BlobMetadata, BlobStore, StorageBackend, normalize_key
from .factory import get_blob_store, reset_default_store
from .local import LocalFilesystemBlobStore
from .s3 import S3BlobStore

__all__ = [
    "BlobStore",
    "BlobMetadata",
    "StorageBackend",
    "normalize_key",
    "LocalFilesystemBlobStore",
    "S3BlobStore",
    "get_blob_store",
    "reset_default_store",
]
