"""Git repository storage backends.

This package lets an embedded version-control engine read and write
repository data (loose objects, refs, packs, working-tree files) through one
filesystem-like contract, backed by a local directory or an S3-compatible
object store.

Key components:
- resolve_path / resolve_key: Sanitize untrusted paths against a repository root
- GitStorageAdapter: The contract every backend provides
- LocalFsAdapter: Local filesystem backend
- S3StorageAdapter: Object store backend with emulated directories and symlinks
- StreamSizeCounter: Byte budget for streamed payloads such as pushes
"""

from repostore.storage.errors import (
    InvalidRepositoryIdError,
    PathTraversalError,
    PayloadTooLargeError,
    StorageConsistencyError,
    StorageError,
)
from repostore.storage.paths import resolve_key, resolve_path, validate_repository_id
from repostore.storage.interface import EntryType, GitStorageAdapter, Stats
from repostore.storage.local import LocalFsAdapter
from repostore.storage.s3 import S3StorageAdapter
from repostore.storage.stream import (
    StreamSizeCounter,
    create_stream_size_counter,
    read_limited,
)

__all__ = [
    "EntryType",
    "GitStorageAdapter",
    "InvalidRepositoryIdError",
    "LocalFsAdapter",
    "PathTraversalError",
    "PayloadTooLargeError",
    "S3StorageAdapter",
    "Stats",
    "StorageConsistencyError",
    "StorageError",
    "StreamSizeCounter",
    "create_stream_size_counter",
    "read_limited",
    "resolve_key",
    "resolve_path",
    "validate_repository_id",
]
