"""
S3 blob store (AWS S3, MinIO, localstack).

Configuration, when not passed explicitly:
    AWS_S3_BUCKET            bucket name (required)
    AWS_S3_ENDPOINT_URL      endpoint the service talks to
    AWS_S3_PUBLIC_ENDPOINT   endpoint baked into presigned URLs, when
                             users reach storage through another host
    AWS_REGION               default us-east-1
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Iterator, Optional

import boto3
from botocore.exceptions import ClientError

from .base import BlobData, BlobMetadata, BlobStore, StorageBackend, as_bytes, normalize_key, sha256_hex

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client


def _missing(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound")


class S3BlobStore(BlobStore):
    def __init__(
        self,
        bucket: Optional[str] = None,
        *,
        prefix: str = "",
        endpoint_url: Optional[str] = None,
        public_endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        client: Optional["S3Client"] = None,
        presign_client: Optional["S3Client"] = None,
    ):
        self.bucket = bucket or os.getenv("AWS_S3_BUCKET")
        if not self.bucket:
            raise ValueError("S3 bucket required: set AWS_S3_BUCKET or pass bucket=")

        self.prefix = f"{prefix.strip('/')}/" if prefix.strip("/") else ""
        region = region or os.getenv("AWS_REGION", "us-east-1")
        public_endpoint_url = public_endpoint_url or os.getenv("AWS_S3_PUBLIC_ENDPOINT")

        self._client = client or boto3.client(
            "s3", region_name=region, endpoint_url=endpoint_url or os.getenv("AWS_S3_ENDPOINT_URL")
        )
        if presign_client is None and public_endpoint_url and client is None:
            presign_client = boto3.client("s3", region_name=region, endpoint_url=public_endpoint_url)
        self._presign_client = presign_client or self._client

    @property
    def backend_type(self) -> StorageBackend:
        return StorageBackend.S3

    def _object_key(self, key: str) -> str:
        return self.prefix + normalize_key(key)

    def _uri(self, object_key: str) -> str:
        return f"s3://{self.bucket}/{object_key}"

    def put(self, key, data: BlobData, *, content_type="application/octet-stream", metadata=None):
        object_key = self._object_key(key)
        content = as_bytes(data)
        digest = sha256_hex(content)
        self._client.put_object(
            Bucket=self.bucket,
            Key=object_key,
            Body=content,
            ContentType=content_type,
            Metadata={**(metadata or {}), "sha256": digest},
        )
        return BlobMetadata(
            storage_key=normalize_key(key),
            storage_uri=self._uri(object_key),
            storage_backend=StorageBackend.S3,
            content_type=content_type,
            size_bytes=len(content),
            sha256=digest,
            metadata=metadata or {},
        )

    def get(self, key: str) -> bytes:
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=self._object_key(key))
        except ClientError as e:
            if _missing(e):
                raise FileNotFoundError(f"Blob not found: {key}") from e
            raise
        return obj["Body"].read()

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=self._object_key(key))
        except ClientError as e:
            if _missing(e):
                return False
            raise
        return True

    def delete(self, key: str) -> bool:
        # delete_object succeeds for missing keys, so check first
        if not self.exists(key):
            return False
        self._client.delete_object(Bucket=self.bucket, Key=self._object_key(key))
        return True

    def get_url(self, key: str, *, expires_in: int = 900, for_download: bool = False) -> str:
        if not self.exists(key):
            raise FileNotFoundError(f"Blob not found: {key}")
        params = {"Bucket": self.bucket, "Key": self._object_key(key)}
        if for_download:
            filename = normalize_key(key).rsplit("/", 1)[-1]
            params["ResponseContentDisposition"] = f'attachment; filename="{filename}"'
        return self._presign_client.generate_presigned_url("get_object", Params=params, ExpiresIn=expires_in)

    def list(self, prefix: str = "", *, max_results: int = 1000) -> Iterator[BlobMetadata]:
        search = self._object_key(prefix) if prefix else self.prefix
        pages = self._client.get_paginator("list_objects_v2").paginate(Bucket=self.bucket, Prefix=search)
        yielded = 0
        for page in pages:
            for obj in page.get("Contents", []):
                object_key = obj["Key"]
                if object_key.endswith("/"):
                    continue
                if yielded >= max_results:
                    return
                yield BlobMetadata(
                    storage_key=object_key[len(self.prefix):],
                    storage_uri=self._uri(object_key),
                    storage_backend=StorageBackend.S3,
                    content_type="application/octet-stream",
                    size_bytes=obj["Size"],
                    modified_at=obj.get("LastModified"),
                )
                yielded += 1
