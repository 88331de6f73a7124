"""S3-compatible object store adapter.

A flat key space has no directories, no symlinks and no permission bits, so
this adapter emulates them on top of plain objects:

- Directories: never stored. A key ``<dir>/<name>`` makes ``<dir>`` exist.
  ``mkdir`` writes an empty marker key ``<dir>/`` so an empty directory can
  still be listed, and ``rmdir`` deletes everything under the prefix.
- Symlinks: an object whose body is the link target, tagged with the
  ``repostore-type: symlink`` metadata entry. Relative targets are resolved
  inside the root, absolute targets are refused when followed.
- Stats: size and mtime come from the object metadata, the mode is one of the
  constants in ``repostore.storage.interface``. Permission bits passed to
  ``write_file`` are dropped; this translation is lossy.

Uses the S3 client factory pattern: each operation opens a fresh client
context with ``async with s3_client_factory() as s3_client``. Writes use the
factory client's ``put_object``, or the aiohttp based writer from
``repostore.storage.s3_async`` when an ``s3_config`` is given.

The engine expects to read back what it just wrote. AWS S3 and MinIO provide
strong read-after-write consistency per key; for other providers enable
``verify_writes`` to check every write with a ``head_object`` call.
"""

import errno
import logging
import os
import posixpath
from typing import Callable, List, Optional, Tuple, Union

from botocore.exceptions import ClientError

from repostore.metrics import StorageMetrics, track_operation
from repostore.storage.errors import PathTraversalError, StorageConsistencyError
from repostore.storage.interface import (
    DIRECTORY_MODE,
    FILE_MODE,
    SYMLINK_MODE,
    EntryType,
    Stats,
)
from repostore.storage.paths import resolve_key, security_logger
from repostore.storage.s3_async import create_async_s3_client
from repostore.utils import (
    has_objects_async,
    iter_object_keys_async,
    remove_objects_async,
    s3_error_code,
)

logger = logging.getLogger(__name__)

SYMLINK_METADATA_KEY = "repostore-type"
SYMLINK_METADATA_VALUE = "symlink"
# same limit as Linux MAXSYMLINKS
MAX_SYMLINK_HOPS = 40

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
ACCESS_DENIED_CODES = {"AccessDenied", "Forbidden", "403"}


def _os_error(error_class, code: int, path: str):
    return error_class(code, os.strerror(code), path)


def _is_symlink(head: dict) -> bool:
    metadata = head.get("Metadata") or {}
    return metadata.get(SYMLINK_METADATA_KEY) == SYMLINK_METADATA_VALUE


def _stats_from_head(head: dict, entry_type: EntryType) -> Stats:
    last_modified = head.get("LastModified")
    return Stats(
        type=entry_type,
        mode=SYMLINK_MODE if entry_type == EntryType.symlink else FILE_MODE,
        size=head.get("ContentLength", 0),
        mtime_ms=last_modified.timestamp() * 1000 if last_modified else 0.0,
    )


DIRECTORY_STATS = dict(type=EntryType.directory, mode=DIRECTORY_MODE, size=0, mtime_ms=0.0)


class S3StorageAdapter:
    """Storage adapter over one key prefix of an S3 bucket.

    Usage:
        def s3_client_factory():
            return session.create_client("s3", ...)

        storage = S3StorageAdapter(s3_client_factory, "git-repos", "repos/repo-42")
        await storage.write_file("objects/ab/cdef", data)
    """

    backend = "s3"

    def __init__(
        self,
        s3_client_factory: Callable,
        bucket: str,
        prefix: str,
        s3_config: Optional[dict] = None,
        verify_writes: bool = False,
        metrics: Optional[StorageMetrics] = None,
    ):
        """Initialize the adapter.

        Args:
            s3_client_factory: Factory returning an async context manager
                               for an aiobotocore S3 client
            bucket: S3 bucket name
            prefix: Key prefix of the repository (e.g. "repos/repo-42")
            s3_config: Dict with endpoint_url, access_key_id,
                       secret_access_key, region_name; when given, writes go
                       through the aiohttp SigV4 writer
            verify_writes: Check each write with a ``head_object`` call
            metrics: Optional metrics aggregator
        """
        self._prefix = prefix.strip("/")
        if not self._prefix:
            raise ValueError("An S3 storage adapter needs a non-empty key prefix")
        self._s3_client_factory = s3_client_factory
        self._bucket = bucket
        self._s3_config = s3_config
        self._verify_writes = verify_writes
        self.root = self._prefix
        self.metrics = metrics

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def prefix(self) -> str:
        return self._prefix

    # =========================================================================
    # Key helpers
    # =========================================================================

    def _resolve(self, path: str) -> str:
        try:
            return resolve_key(self._prefix, path)
        except PathTraversalError:
            if self.metrics is not None:
                self.metrics.record_path_traversal(self.backend)
            raise

    def _resolve_link_target(self, link_key: str, target: str) -> str:
        """Resolve a link target the way the kernel would, inside the root.

        An absolute target names a host path, which is always outside the
        repository.
        """
        if target.startswith("/"):
            security_logger.warning(
                "Blocked symlink escape: %r points to absolute path %r",
                link_key,
                target,
            )
            if self.metrics is not None:
                self.metrics.record_path_traversal(self.backend)
            raise PathTraversalError(
                target,
                f"Path traversal detected: {target!r} leaves the root via a symlink",
            )
        # relative to the root, so ".." segments cannot be clamped at "/"
        link_dir = posixpath.dirname(link_key[len(self._prefix) + 1 :])
        return self._resolve(posixpath.join(link_dir, target))

    def _translate(self, error: ClientError, path: str) -> Exception:
        code = s3_error_code(error)
        if code in NOT_FOUND_CODES:
            return _os_error(FileNotFoundError, errno.ENOENT, path)
        if code in ACCESS_DENIED_CODES:
            return _os_error(PermissionError, errno.EACCES, path)
        return error

    # =========================================================================
    # Raw S3 access
    # =========================================================================

    async def _head(self, s3_client, key: str, path: str) -> Optional[dict]:
        """Return the object metadata, or None if there is no such object."""
        if key == self._prefix:
            return None
        try:
            return await s3_client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if s3_error_code(e) in NOT_FOUND_CODES:
                return None
            raise self._translate(e, path) from e

    async def _get_body(self, s3_client, key: str, path: str) -> bytes:
        try:
            response = await s3_client.get_object(Bucket=self._bucket, Key=key)
            return await response["Body"].read()
        except ClientError as e:
            raise self._translate(e, path) from e

    async def _is_directory(self, s3_client, key: str) -> bool:
        if key == self._prefix:
            return True
        return await has_objects_async(s3_client, self._bucket, key + "/")

    async def _check_parents(self, s3_client, key: str, path: str):
        """Raise ENOTDIR if an ancestor of ``key`` is stored as a file.

        Walks up until a parent that already has children, which is a
        directory by construction, or the root.
        """
        parent = posixpath.dirname(key)
        while parent != self._prefix and parent.startswith(self._prefix + "/"):
            if await has_objects_async(s3_client, self._bucket, parent + "/"):
                return
            if await self._head(s3_client, parent, path) is not None:
                raise _os_error(NotADirectoryError, errno.ENOTDIR, path)
            parent = posixpath.dirname(parent)

    async def _follow(self, s3_client, key: str, path: str) -> Tuple[str, Optional[dict]]:
        """Follow emulated symlinks starting at ``key``.

        Returns the final key and its metadata (None if nothing is stored
        there, which may still be a directory).
        """
        for _ in range(MAX_SYMLINK_HOPS):
            head = await self._head(s3_client, key, path)
            if head is None or not _is_symlink(head):
                return key, head
            target = (await self._get_body(s3_client, key, path)).decode("utf-8")
            key = self._resolve_link_target(key, target)
        raise _os_error(OSError, errno.ELOOP, path)

    async def _put(
        self, s3_client, key: str, body: bytes, metadata: Optional[dict] = None
    ):
        if self._s3_config:
            async_client = create_async_s3_client(self._s3_config)
            try:
                await async_client.put_object(
                    self._bucket, key, body, metadata=metadata
                )
            finally:
                await async_client.close()
        else:
            kwargs = {"Metadata": metadata} if metadata else {}
            await s3_client.put_object(
                Bucket=self._bucket, Key=key, Body=body, **kwargs
            )

        if self._verify_writes:
            head = await s3_client.head_object(Bucket=self._bucket, Key=key)
            if head.get("ContentLength") != len(body):
                raise StorageConsistencyError(
                    f"Object {key} reads back {head.get('ContentLength')} bytes "
                    f"after writing {len(body)}"
                )
        logger.debug("Wrote %d bytes to s3://%s/%s", len(body), self._bucket, key)

    async def _delete(self, s3_client, key: str):
        if self._s3_config:
            async_client = create_async_s3_client(self._s3_config)
            try:
                await async_client.delete_object(self._bucket, key)
            finally:
                await async_client.close()
        else:
            await s3_client.delete_object(Bucket=self._bucket, Key=key)
        logger.debug("Deleted s3://%s/%s", self._bucket, key)

    # =========================================================================
    # Storage contract
    # =========================================================================

    @track_operation("read_file")
    async def read_file(
        self, path: str, encoding: Optional[str] = None
    ) -> Union[bytes, str]:
        key = self._resolve(path)
        async with self._s3_client_factory() as s3_client:
            key, head = await self._follow(s3_client, key, path)
            if head is None:
                if await self._is_directory(s3_client, key):
                    raise _os_error(IsADirectoryError, errno.EISDIR, path)
                raise _os_error(FileNotFoundError, errno.ENOENT, path)
            data = await self._get_body(s3_client, key, path)
        return data.decode(encoding) if encoding else data

    @track_operation("write_file")
    async def write_file(
        self,
        path: str,
        data: Union[bytes, str],
        encoding: Optional[str] = None,
        mode: Optional[int] = None,
    ) -> None:
        """Store a file as one object; parent directories are implicit.

        A single PUT replaces the object atomically. Writing below a key that
        is stored as a file raises ``NotADirectoryError``. ``mode`` is accepted
        for compatibility and not persisted.
        """
        key = self._resolve(path)
        if isinstance(data, str):
            data = data.encode(encoding or "utf-8")
        async with self._s3_client_factory() as s3_client:
            key, head = await self._follow(s3_client, key, path)
            if head is None and await self._is_directory(s3_client, key):
                raise _os_error(IsADirectoryError, errno.EISDIR, path)
            await self._check_parents(s3_client, key, path)
            await self._put(s3_client, key, data)

    @track_operation("unlink")
    async def unlink(self, path: str) -> None:
        key = self._resolve(path)
        async with self._s3_client_factory() as s3_client:
            head = await self._head(s3_client, key, path)
            if head is None:
                if await self._is_directory(s3_client, key):
                    raise _os_error(IsADirectoryError, errno.EISDIR, path)
                raise _os_error(FileNotFoundError, errno.ENOENT, path)
            await self._delete(s3_client, key)

    @track_operation("readdir")
    async def readdir(self, path: str) -> List[str]:
        """List the names directly inside a directory.

        Every key under ``<dir>/`` is reduced to its first segment past the
        prefix, which yields both files and subdirectory names.
        """
        key = self._resolve(path)
        async with self._s3_client_factory() as s3_client:
            key, head = await self._follow(s3_client, key, path)
            if head is not None:
                raise _os_error(NotADirectoryError, errno.ENOTDIR, path)

            dir_prefix = key + "/"
            names = set()
            found = False
            async for obj in iter_object_keys_async(
                s3_client, self._bucket, dir_prefix
            ):
                found = True
                rest = obj["Key"][len(dir_prefix) :]
                if rest:
                    names.add(rest.split("/", 1)[0])

        if not found and key != self._prefix:
            raise _os_error(FileNotFoundError, errno.ENOENT, path)
        return sorted(names)

    @track_operation("mkdir")
    async def mkdir(self, path: str, recursive: bool = True) -> None:
        key = self._resolve(path)
        async with self._s3_client_factory() as s3_client:
            if await self._head(s3_client, key, path) is not None:
                raise _os_error(FileExistsError, errno.EEXIST, path)
            if await self._is_directory(s3_client, key):
                if recursive:
                    return
                raise _os_error(FileExistsError, errno.EEXIST, path)
            await self._check_parents(s3_client, key, path)
            if not recursive:
                parent = posixpath.dirname(key)
                if not await self._is_directory(s3_client, parent):
                    raise _os_error(FileNotFoundError, errno.ENOENT, path)
            await self._put(s3_client, key + "/", b"")

    @track_operation("rmdir")
    async def rmdir(self, path: str) -> None:
        """Remove a directory and every key nested under it.

        The store has no notion of an empty directory, so unlike the local
        adapter this is recursive.
        """
        key = self._resolve(path)
        async with self._s3_client_factory() as s3_client:
            if await self._head(s3_client, key, path) is not None:
                raise _os_error(NotADirectoryError, errno.ENOTDIR, path)
            deleted = await remove_objects_async(s3_client, self._bucket, key + "/")
        if deleted == 0 and key != self._prefix:
            raise _os_error(FileNotFoundError, errno.ENOENT, path)
        logger.info("Removed %d object(s) under s3://%s/%s/", deleted, self._bucket, key)

    @track_operation("stat")
    async def stat(self, path: str) -> Stats:
        key = self._resolve(path)
        async with self._s3_client_factory() as s3_client:
            key, head = await self._follow(s3_client, key, path)
            if head is not None:
                return _stats_from_head(head, EntryType.file)
            if await self._is_directory(s3_client, key):
                return Stats(**DIRECTORY_STATS)
        raise _os_error(FileNotFoundError, errno.ENOENT, path)

    @track_operation("lstat")
    async def lstat(self, path: str) -> Stats:
        key = self._resolve(path)
        async with self._s3_client_factory() as s3_client:
            head = await self._head(s3_client, key, path)
            if head is not None:
                entry_type = EntryType.symlink if _is_symlink(head) else EntryType.file
                return _stats_from_head(head, entry_type)
            if await self._is_directory(s3_client, key):
                return Stats(**DIRECTORY_STATS)
        raise _os_error(FileNotFoundError, errno.ENOENT, path)

    @track_operation("readlink")
    async def readlink(self, path: str) -> str:
        key = self._resolve(path)
        async with self._s3_client_factory() as s3_client:
            head = await self._head(s3_client, key, path)
            if head is None:
                if await self._is_directory(s3_client, key):
                    raise _os_error(OSError, errno.EINVAL, path)
                raise _os_error(FileNotFoundError, errno.ENOENT, path)
            if not _is_symlink(head):
                raise _os_error(OSError, errno.EINVAL, path)
            target = await self._get_body(s3_client, key, path)
        return target.decode("utf-8")

    @track_operation("symlink")
    async def symlink(self, target: str, path: str) -> None:
        """Create ``path`` as a link to ``target``.

        The target is stored verbatim; it is resolved inside the root only
        when the link is followed.
        """
        key = self._resolve(path)
        async with self._s3_client_factory() as s3_client:
            if await self._head(s3_client, key, path) is not None or (
                await self._is_directory(s3_client, key)
            ):
                raise _os_error(FileExistsError, errno.EEXIST, path)
            await self._check_parents(s3_client, key, path)
            await self._put(
                s3_client,
                key,
                target.encode("utf-8"),
                metadata={SYMLINK_METADATA_KEY: SYMLINK_METADATA_VALUE},
            )

    async def exists(self, path: str) -> bool:
        """Check whether an entry exists, without following a final symlink."""
        try:
            await self.lstat(path)
        except (FileNotFoundError, NotADirectoryError):
            return False
        return True

    async def close(self) -> None:
        """Clients are opened per operation, nothing is held between calls."""
