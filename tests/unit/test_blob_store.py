"""
Unit tests for the blob store backends.

The local backend runs against a temp directory; the S3 backend runs
against a mocked boto3 client.
"""

import hashlib
import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from questify_consistency.core.storage import (
    LocalFilesystemBlobStore,
    S3BlobStore,
    StorageBackend,
    get_blob_store,
    reset_default_store,
)


def client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestLocalFilesystemBlobStore:
    """Tests for LocalFilesystemBlobStore."""

    def test_put_and_get(self, blob_store):
        meta = blob_store.put("exports/u1/j1/parts/quest-service.json", b'{"quests": []}',
                              content_type="application/json")

        assert meta.storage_backend == StorageBackend.LOCAL
        assert meta.storage_key == "exports/u1/j1/parts/quest-service.json"
        assert meta.size_bytes == 14
        assert meta.content_type == "application/json"
        assert meta.sha256 == hashlib.sha256(b'{"quests": []}').hexdigest()
        assert blob_store.get("exports/u1/j1/parts/quest-service.json") == b'{"quests": []}'

    def test_put_overwrites(self, blob_store):
        blob_store.put("a/b.json", b"first")
        blob_store.put("a/b.json", b"second")

        assert blob_store.get("a/b.json") == b"second"

    def test_put_file_like(self, blob_store):
        blob_store.put("a/stream.bin", io.BytesIO(b"streamed"))

        assert blob_store.get("a/stream.bin") == b"streamed"

    def test_get_missing_raises(self, blob_store):
        with pytest.raises(FileNotFoundError):
            blob_store.get("missing.json")

    def test_delete(self, blob_store):
        blob_store.put("a/b.json", b"x")

        assert blob_store.delete("a/b.json") is True
        assert blob_store.exists("a/b.json") is False
        assert blob_store.delete("a/b.json") is False

    def test_get_url_is_file_uri(self, blob_store):
        blob_store.put("exports/u1/j1/questify-export.zip", b"PK")

        url = blob_store.get_url("exports/u1/j1/questify-export.zip", expires_in=60, for_download=True)

        assert url.startswith("file://")
        assert url.endswith("questify-export.zip")

    def test_get_url_missing_raises(self, blob_store):
        with pytest.raises(FileNotFoundError):
            blob_store.get_url("nope.zip")

    def test_list_under_prefix(self, blob_store):
        blob_store.put("exports/u1/j1/parts/a.json", b"a")
        blob_store.put("exports/u1/j1/parts/b.json", b"b")
        blob_store.put("exports/u2/j2/parts/a.json", b"a")

        listed = list(blob_store.list("exports/u1"))

        assert [m.storage_key for m in listed] == [
            "exports/u1/j1/parts/a.json",
            "exports/u1/j1/parts/b.json",
        ]
        assert listed[0].content_type == "application/json"
        assert listed[0].size_bytes == 1

    @pytest.mark.parametrize("key", ["", "/", "../escape.json", "a/../../b"])
    def test_invalid_keys_rejected(self, blob_store, key):
        with pytest.raises(ValueError):
            blob_store.put(key, b"x")

    def test_key_normalization(self, blob_store):
        blob_store.put("/a//b\\c.json", b"x")

        assert blob_store.exists("a/b/c.json")


class TestS3BlobStore:
    """Tests for S3BlobStore against a mocked client."""

    @pytest.fixture
    def s3_client(self):
        return MagicMock()

    @pytest.fixture
    def store(self, s3_client):
        return S3BlobStore(bucket="questify-exports", prefix="prod/", client=s3_client)

    def test_requires_bucket(self, monkeypatch):
        monkeypatch.delenv("AWS_S3_BUCKET", raising=False)

        with pytest.raises(ValueError):
            S3BlobStore(client=MagicMock())

    def test_put_uses_prefix_and_sha(self, store, s3_client):
        meta = store.put("exports/u1/j1/questify-export.zip", b"PK", content_type="application/zip")

        kwargs = s3_client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "questify-exports"
        assert kwargs["Key"] == "prod/exports/u1/j1/questify-export.zip"
        assert kwargs["ContentType"] == "application/zip"
        assert kwargs["Metadata"]["sha256"] == meta.sha256
        assert meta.storage_uri == "s3://questify-exports/prod/exports/u1/j1/questify-export.zip"
        assert meta.storage_key == "exports/u1/j1/questify-export.zip"

    def test_get_reads_body(self, store, s3_client):
        s3_client.get_object.return_value = {"Body": io.BytesIO(b"payload")}

        assert store.get("a.json") == b"payload"

    def test_get_missing_maps_to_file_not_found(self, store, s3_client):
        s3_client.get_object.side_effect = client_error("NoSuchKey", "GetObject")

        with pytest.raises(FileNotFoundError):
            store.get("a.json")

    def test_get_other_errors_propagate(self, store, s3_client):
        s3_client.get_object.side_effect = client_error("AccessDenied", "GetObject")

        with pytest.raises(ClientError):
            store.get("a.json")

    def test_exists(self, store, s3_client):
        assert store.exists("a.json") is True

        s3_client.head_object.side_effect = client_error("404")
        assert store.exists("a.json") is False

    def test_delete_missing_returns_false(self, store, s3_client):
        s3_client.head_object.side_effect = client_error("404")

        assert store.delete("a.json") is False
        s3_client.delete_object.assert_not_called()

    def test_delete(self, store, s3_client):
        assert store.delete("a.json") is True
        s3_client.delete_object.assert_called_once_with(Bucket="questify-exports", Key="prod/a.json")

    def test_presigned_download_url(self, store, s3_client):
        s3_client.generate_presigned_url.return_value = "https://s3.example/signed"

        url = store.get_url("exports/u1/j1/questify-export.zip", expires_in=900, for_download=True)

        assert url == "https://s3.example/signed"
        args, kwargs = s3_client.generate_presigned_url.call_args
        assert args == ("get_object",)
        assert kwargs["ExpiresIn"] == 900
        assert kwargs["Params"]["Key"] == "prod/exports/u1/j1/questify-export.zip"
        assert kwargs["Params"]["ResponseContentDisposition"] == 'attachment; filename="questify-export.zip"'

    def test_presign_uses_public_client(self, s3_client):
        presign_client = MagicMock()
        presign_client.generate_presigned_url.return_value = "http://public/signed"
        store = S3BlobStore(bucket="b", client=s3_client, presign_client=presign_client)

        assert store.get_url("a.zip") == "http://public/signed"
        s3_client.generate_presigned_url.assert_not_called()

    def test_get_url_missing_raises(self, store, s3_client):
        s3_client.head_object.side_effect = client_error("NotFound")

        with pytest.raises(FileNotFoundError):
            store.get_url("a.zip")

    def test_list_strips_prefix(self, store, s3_client):
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [
                {"Key": "prod/exports/u1/", "Size": 0},
                {"Key": "prod/exports/u1/j1/parts/a.json", "Size": 3},
            ]},
        ]
        s3_client.get_paginator.return_value = paginator

        listed = list(store.list("exports/u1"))

        assert [m.storage_key for m in listed] == ["exports/u1/j1/parts/a.json"]
        paginator.paginate.assert_called_once_with(Bucket="questify-exports", Prefix="prod/exports/u1")


class TestBlobStoreFactory:
    """Backend selection."""

    @pytest.fixture(autouse=True)
    def reset(self):
        reset_default_store()
        yield
        reset_default_store()

    def test_local_default(self, monkeypatch, tmp_path):
        monkeypatch.delenv("ARTIFACT_STORAGE_BACKEND", raising=False)
        monkeypatch.setenv("ARTIFACT_STORAGE_PATH", str(tmp_path))

        store = get_blob_store()

        assert isinstance(store, LocalFilesystemBlobStore)
        assert get_blob_store() is store

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            get_blob_store("ftp", force_new=True)
