"""Provide utilities that should not be aware of repostore."""
import os
import re
from typing import AsyncIterator, List, Optional

import shortuuid

# S3 caps a single DeleteObjects request at 1000 keys
DELETE_BATCH_SIZE = 1000
TEMP_SIBLING_PATTERN = re.compile(r"\..+\.[0-9A-Za-z]{12}\.tmp")


def random_id(length=22):
    """Generate a random ID."""
    return shortuuid.ShortUUID().random(length=length)


def temp_sibling(path: str) -> str:
    """Return a hidden temporary path next to ``path``, for atomic replaces."""
    directory, name = os.path.split(path)
    return os.path.join(directory, f".{name}.{random_id(12)}.tmp")


def is_temp_sibling(name: str) -> bool:
    """Check whether a directory entry was made by ``temp_sibling``."""
    return TEMP_SIBLING_PATTERN.fullmatch(name) is not None


def is_safe_path(basedir: str, path: str, follow_symlinks: bool = True) -> bool:
    """Check if the file path is safe."""
    # resolves symbolic links
    if follow_symlinks:
        matchpath = os.path.realpath(path)
        basedir = os.path.realpath(basedir)
    else:
        matchpath = os.path.abspath(path)
    return basedir == os.path.commonpath((basedir, matchpath))


def format_bytes(size: int) -> str:
    """Format a byte count for humans."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.2f} MB"
    return f"{size / (1024 * 1024 * 1024):.2f} GB"


def s3_error_code(error) -> Optional[str]:
    """Return the error code of a botocore ``ClientError``."""
    response = getattr(error, "response", None) or {}
    code = response.get("Error", {}).get("Code")
    if code is None:
        status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        code = str(status) if status else None
    return code


async def iter_object_keys_async(
    s3_client, bucket: str, prefix: str
) -> AsyncIterator[dict]:
    """Yield every object entry under ``prefix``, following pagination."""
    paginator = s3_client.get_paginator("list_objects_v2")
    async for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
        for obj in page.get("Contents", []):
            yield obj


async def has_objects_async(s3_client, bucket: str, prefix: str) -> bool:
    """Check whether at least one key starts with ``prefix``."""
    response = await s3_client.list_objects_v2(
        Bucket=bucket, Prefix=prefix, MaxKeys=1
    )
    return bool(response.get("Contents"))


async def remove_objects_async(s3_client, bucket, prefix) -> int:
    """Remove all objects in a folder asynchronously.

    Returns the number of deleted keys.
    """
    assert prefix != "" and prefix.endswith("/")
    keys: List[str] = []
    async for obj in iter_object_keys_async(s3_client, bucket, prefix):
        keys.append(obj["Key"])

    for start in range(0, len(keys), DELETE_BATCH_SIZE):
        batch = keys[start : start + DELETE_BATCH_SIZE]
        delete_response = await s3_client.delete_objects(
            Bucket=bucket,
            Delete={
                "Objects": [{"Key": key} for key in batch],
                "Quiet": True,
            },
        )
        if delete_response.get("Errors"):
            failed = delete_response["Errors"][0]
            raise RuntimeError(
                f"Failed to delete {len(delete_response['Errors'])} object(s), "
                f"first error: {failed.get('Code')} {failed.get('Message')}"
            )
    return len(keys)
