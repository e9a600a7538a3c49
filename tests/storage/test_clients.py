"""Tests for the IPFS and S3 clients at their library boundaries."""

import io
import json
import os
from unittest.mock import MagicMock

import httpx
import pytest
from botocore.exceptions import ClientError

from pavilion.core.exceptions import StorageError
from pavilion.modules.storage.ipfs import IPFSClient
from pavilion.modules.storage.s3 import S3Config, S3ObjectStore


def _ipfs_client(handler) -> IPFSClient:
    return IPFSClient(
        api_url="http://ipfs.test:5001/",
        gateway_url="https://gateway.test/ipfs",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


class TestIPFSClient:
    """IPFS HTTP API calls."""

    def test_upload_returns_hash_of_last_entry(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            lines = [
                json.dumps({"Name": "part", "Hash": "QmPart", "Size": "3"}),
                json.dumps({"Name": "video.mp4", "Hash": "QmRoot", "Size": "12"}),
            ]
            return httpx.Response(200, text="\n".join(lines) + "\n")

        cid = _ipfs_client(handler).upload(io.BytesIO(b"video-bytes"), filename="video.mp4")

        assert cid == "QmRoot"
        assert seen["url"].startswith("http://ipfs.test:5001/api/v0/add")
        assert b"video-bytes" in seen["body"]

    def test_upload_error_status_raises(self) -> None:
        client = _ipfs_client(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(StorageError):
            client.upload(io.BytesIO(b"x"))

    def test_upload_without_hash_raises(self) -> None:
        client = _ipfs_client(lambda request: httpx.Response(200, text=json.dumps({"Name": "x"})))

        with pytest.raises(StorageError):
            client.upload(io.BytesIO(b"x"))

    def test_download_writes_content(self, tmp_path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["arg"] == "QmAbc"
            return httpx.Response(200, content=b"payload")

        path = _ipfs_client(handler).download("QmAbc", dest_dir=str(tmp_path))

        with open(path, "rb") as f:
            assert f.read() == b"payload"

    def test_download_failure_removes_partial_file(self, tmp_path) -> None:
        client = _ipfs_client(lambda request: httpx.Response(404))

        with pytest.raises(StorageError):
            client.download("QmMissing", dest_dir=str(tmp_path))

        assert os.listdir(tmp_path) == []

    def test_gateway_url(self) -> None:
        client = _ipfs_client(lambda request: httpx.Response(200))

        assert client.gateway_url("QmAbc") == "https://gateway.test/ipfs/QmAbc"


class TestS3ObjectStore:
    """boto3 calls made by the object store."""

    def _store(self, client, **config) -> S3ObjectStore:
        return S3ObjectStore(S3Config(bucket="media", region="us-east-1", **config), client=client)

    def test_upload_streams_object_and_returns_url(self) -> None:
        client = MagicMock()
        client.generate_presigned_url.return_value = "https://signed/url"
        stream = io.BytesIO(b"abc")

        url = self._store(client).upload(stream, "Qm1.mp4", content_type="video/mp4")

        client.upload_fileobj.assert_called_once_with(
            stream, "media", "Qm1.mp4", ExtraArgs={"ContentType": "video/mp4"}
        )
        assert url == "https://signed/url"

    def test_upload_client_error_raises(self) -> None:
        client = MagicMock()
        client.upload_fileobj.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
        )

        with pytest.raises(StorageError):
            self._store(client).upload(io.BytesIO(b"abc"), "k")

    def test_cdn_url_takes_precedence(self) -> None:
        client = MagicMock()
        store = self._store(client, cdn_domain="cdn.test", cdn_enabled=True)

        assert store.get_url("videos/1/720p.mp4") == "https://cdn.test/videos/1/720p.mp4"
        client.generate_presigned_url.assert_not_called()

    def test_delete_removes_every_listed_key(self) -> None:
        client = MagicMock()
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "videos/1/720p.mp4"}, {"Key": "videos/1/480p.mp4"}]},
            {"Contents": [{"Key": "videos/1/360p.mp4"}]},
            {},
        ]
        client.get_paginator.return_value = paginator
        client.delete_objects.return_value = {}

        deleted = self._store(client).delete("videos/1/")

        assert deleted == 3
        paginator.paginate.assert_called_once_with(Bucket="media", Prefix="videos/1/")
        assert client.delete_objects.call_count == 2

    def test_delete_reports_per_key_errors(self) -> None:
        client = MagicMock()
        paginator = MagicMock()
        paginator.paginate.return_value = [{"Contents": [{"Key": "a"}]}]
        client.get_paginator.return_value = paginator
        client.delete_objects.return_value = {"Errors": [{"Key": "a", "Code": "AccessDenied"}]}

        with pytest.raises(StorageError):
            self._store(client).delete("a")
