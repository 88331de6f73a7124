"""Object writes over aiohttp, signed with AWS Signature V4.

aiobotocore's ``put_object`` can hang against some MinIO versions. The object
store adapter can route its PUT and DELETE requests through ``AsyncS3Client``
instead; reads and listings always stay on aiobotocore.

User metadata (``x-amz-meta-*``) is part of the signature, which is how
emulated symlinks keep their type tag on this path too.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple
from urllib.parse import quote, urlparse

import aiohttp
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
METADATA_HEADER_PREFIX = "x-amz-meta-"


def _hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def _signing_key(secret_key: str, date_stamp: str, region: str) -> bytes:
    key = ("AWS4" + secret_key).encode("utf-8")
    for scope_part in (date_stamp, region, "s3", "aws4_request"):
        key = _hmac_sha256(key, scope_part)
    return key


def sign_request(
    method: str,
    endpoint_url: str,
    bucket: str,
    key: str,
    body: bytes,
    access_key: str,
    secret_key: str,
    region: str = "us-east-1",
    metadata: Optional[Dict[str, str]] = None,
    now: Optional[datetime] = None,
) -> Tuple[Dict[str, str], str]:
    """Build the URL and signed headers of a path-style object request.

    Every ``x-amz-*`` header that is sent is also signed; ``host`` is signed
    but left for the HTTP client to send.

    :param metadata: User metadata, sent as ``x-amz-meta-<name>`` headers.
    :param now: Signing time, the current UTC time by default.
    :return: The headers to send and the request URL.
    """
    # "/" separates key segments and must stay literal
    object_path = f"/{bucket}/{quote(key, safe='-_.~/')}"
    url = endpoint_url.rstrip("/") + object_path

    timestamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    date_stamp = timestamp[:8]
    payload_hash = hashlib.sha256(body).hexdigest()

    signed = {
        "host": urlparse(endpoint_url).netloc,
        "x-amz-content-sha256": payload_hash,
        "x-amz-date": timestamp,
    }
    for name, value in (metadata or {}).items():
        signed[METADATA_HEADER_PREFIX + name.lower()] = str(value).strip()
    names = sorted(signed)
    signed_headers = ";".join(names)

    canonical_request = "\n".join(
        [
            method,
            object_path,
            "",  # no query string
            "".join(f"{name}:{signed[name]}\n" for name in names),
            signed_headers,
            payload_hash,
        ]
    )
    scope = f"{date_stamp}/{region}/s3/aws4_request"
    string_to_sign = "\n".join(
        [
            ALGORITHM,
            timestamp,
            scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )
    signature = hmac.new(
        _signing_key(secret_key, date_stamp, region),
        string_to_sign.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()

    headers = {name: value for name, value in signed.items() if name != "host"}
    headers["Authorization"] = (
        f"{ALGORITHM} Credential={access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    headers["Content-Type"] = "application/octet-stream"
    if method != "DELETE":
        headers["Content-Length"] = str(len(body))
    return headers, url


class AsyncS3Client:
    """PUT and DELETE objects with aiohttp.

    HTTP errors are raised as ``botocore.exceptions.ClientError`` with the
    status code as error code, so callers handle both write paths alike.
    """

    def __init__(
        self,
        endpoint_url: str,
        access_key_id: str,
        secret_access_key: str,
        region_name: str = "us-east-1",
    ):
        self.endpoint_url = endpoint_url.rstrip("/")
        self.region_name = region_name
        self._credentials = (access_key_id, secret_access_key)
        self._session: Optional[aiohttp.ClientSession] = None

    def _client_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # proxy variables from the environment break requests to MinIO
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=10, force_close=True),
                trust_env=False,
            )
        return self._session

    async def _send(
        self,
        method: str,
        operation: str,
        bucket: str,
        key: str,
        body: bytes = b"",
        metadata: Optional[Dict[str, str]] = None,
    ) -> dict:
        access_key, secret_key = self._credentials
        headers, url = sign_request(
            method,
            self.endpoint_url,
            bucket,
            key,
            body,
            access_key,
            secret_key,
            self.region_name,
            metadata=metadata,
        )
        async with self._client_session().request(
            method, url, data=body or None, headers=headers
        ) as response:
            if response.status >= 400:
                text = await response.text()
                raise ClientError(
                    {
                        "Error": {"Code": str(response.status), "Message": text[:200]},
                        "ResponseMetadata": {"HTTPStatusCode": response.status},
                    },
                    operation,
                )
            logger.debug("%s %s/%s: %d", method, bucket, key, response.status)
            return {"HTTPStatusCode": response.status}

    async def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        metadata: Optional[Dict[str, str]] = None,
    ) -> dict:
        return await self._send("PUT", "PutObject", bucket, key, body, metadata)

    async def delete_object(self, bucket: str, key: str) -> dict:
        return await self._send("DELETE", "DeleteObject", bucket, key)

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def create_async_s3_client(s3_config: dict) -> AsyncS3Client:
    """Create a writer from the dict returned by ``StorageConfig.get_s3_config``."""
    return AsyncS3Client(
        endpoint_url=s3_config.get("endpoint_url", ""),
        access_key_id=s3_config.get("access_key_id", ""),
        secret_access_key=s3_config.get("secret_access_key", ""),
        region_name=s3_config.get("region_name", "us-east-1"),
    )
