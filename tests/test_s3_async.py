"""Test the aiohttp based S3 writer."""

import hashlib
from datetime import datetime, timezone

import pytest
from aiohttp import test_utils, web
from botocore.exceptions import ClientError

from repostore.storage.s3_async import (
    AsyncS3Client,
    create_async_s3_client,
    sign_request,
)

from . import S3_TEST_CONFIG

NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def sign(method="PUT", key="repo-42/HEAD", data=b"ref: refs/heads/main\n", **kwargs):
    return sign_request(
        method,
        "http://127.0.0.1:38483",
        "git-test",
        key,
        data,
        "minio",
        "test-minio-password-123",
        now=NOW,
        **kwargs,
    )


def test_put_headers():
    data = b"ref: refs/heads/main\n"
    headers, url = sign(data=data)

    assert url == "http://127.0.0.1:38483/git-test/repo-42/HEAD"
    assert "host" not in headers
    assert headers["x-amz-date"] == "20240102T030405Z"
    assert headers["x-amz-content-sha256"] == hashlib.sha256(data).hexdigest()
    assert headers["Content-Length"] == str(len(data))
    assert headers["Content-Type"] == "application/octet-stream"
    assert headers["Authorization"].startswith(
        "AWS4-HMAC-SHA256 Credential=minio/20240102/us-east-1/s3/aws4_request, "
        "SignedHeaders=host;x-amz-content-sha256;x-amz-date, Signature="
    )


def test_delete_headers():
    headers, _ = sign(method="DELETE", data=b"")
    assert "Content-Length" not in headers
    assert headers["x-amz-content-sha256"] == EMPTY_SHA256


def test_metadata_is_signed():
    headers, _ = sign(metadata={"Repostore-Type": "symlink"})
    assert headers["x-amz-meta-repostore-type"] == "symlink"
    assert (
        "SignedHeaders=host;x-amz-content-sha256;x-amz-date;x-amz-meta-repostore-type,"
        in headers["Authorization"]
    )
    assert headers["Authorization"] != sign()[0]["Authorization"]


def test_key_is_encoded():
    _, url = sign(key="repo-42/refs/heads/feature one+two")
    assert url.endswith("/git-test/repo-42/refs/heads/feature%20one%2Btwo")


def test_signature_is_deterministic():
    assert sign() == sign()
    assert sign()[0]["Authorization"] != sign(data=b"other")[0]["Authorization"]
    assert (
        sign()[0]["Authorization"]
        != sign(region="eu-west-1")[0]["Authorization"]
    )


def test_create_client_from_config():
    client = create_async_s3_client(S3_TEST_CONFIG)
    assert isinstance(client, AsyncS3Client)


@pytest.mark.asyncio
async def test_put_and_delete_round_trip():
    requests = []

    async def handle(request):
        requests.append(
            (request.method, request.match_info["key"], dict(request.headers), await request.read())
        )
        if request.match_info["key"].startswith("denied/"):
            return web.Response(status=403, text="<Error><Code>AccessDenied</Code></Error>")
        return web.Response(status=204 if request.method == "DELETE" else 200)

    app = web.Application()
    app.router.add_route("PUT", "/{bucket}/{key:.*}", handle)
    app.router.add_route("DELETE", "/{bucket}/{key:.*}", handle)

    async with test_utils.TestServer(app) as server:
        client = AsyncS3Client(
            endpoint_url=f"http://{server.host}:{server.port}/",
            access_key_id="minio",
            secret_access_key="test-minio-password-123",
        )
        try:
            response = await client.put_object(
                "git-test", "repo-42/HEAD", b"refs/heads/main", metadata={"repostore-type": "symlink"}
            )
            assert response == {"HTTPStatusCode": 200}
            assert (await client.delete_object("git-test", "repo-42/HEAD")) == {
                "HTTPStatusCode": 204
            }
            with pytest.raises(ClientError) as exc_info:
                await client.put_object("git-test", "denied/HEAD", b"x")
            assert exc_info.value.response["Error"]["Code"] == "403"
        finally:
            await client.close()

    method, key, headers, body = requests[0]
    assert (method, key, body) == ("PUT", "repo-42/HEAD", b"refs/heads/main")
    assert headers["x-amz-meta-repostore-type"] == "symlink"
    assert headers["Authorization"].startswith("AWS4-HMAC-SHA256 ")
    assert requests[1][:2] == ("DELETE", "repo-42/HEAD")
