"""The storage contract the version-control engine depends on.

Adapters do not inherit from ``GitStorageAdapter``; they only have to provide
the same coroutines, so a new backend can be added without touching the
existing ones or the engine.
"""

import stat as stat_module
from enum import Enum
from typing import List, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel

# Synthesized modes for stores that cannot persist POSIX permissions
FILE_MODE = stat_module.S_IFREG | 0o644
SYMLINK_MODE = stat_module.S_IFLNK | 0o777
DIRECTORY_MODE = stat_module.S_IFDIR | 0o755


class EntryType(str, Enum):
    """Represent the type of a storage entry."""

    file = "file"
    directory = "directory"
    symlink = "symlink"


class Stats(BaseModel):
    """Represent the metadata of a storage entry.

    ``type`` is fixed when the model is built, the predicates never go back
    to the store.
    """

    type: EntryType
    mode: int
    size: int
    mtime_ms: float

    def is_file(self) -> bool:
        """Check whether the entry is a regular file."""
        return self.type == EntryType.file

    def is_directory(self) -> bool:
        """Check whether the entry is a directory."""
        return self.type == EntryType.directory

    def is_symbolic_link(self) -> bool:
        """Check whether the entry is a symbolic link."""
        return self.type == EntryType.symlink

    @classmethod
    def from_stat_result(cls, result) -> "Stats":
        """Translate an ``os.stat_result``."""
        if stat_module.S_ISLNK(result.st_mode):
            entry_type = EntryType.symlink
        elif stat_module.S_ISDIR(result.st_mode):
            entry_type = EntryType.directory
        else:
            entry_type = EntryType.file
        return cls(
            type=entry_type,
            mode=result.st_mode,
            size=result.st_size,
            mtime_ms=result.st_mtime_ns / 1_000_000,
        )


@runtime_checkable
class GitStorageAdapter(Protocol):
    """Filesystem-like operations on one repository root.

    Every path is untrusted and relative to the repository root; adapters
    resolve it with ``repostore.storage.paths`` before touching storage.
    """

    backend: str
    root: str

    async def read_file(
        self, path: str, encoding: Optional[str] = None
    ) -> Union[bytes, str]:
        ...

    async def write_file(
        self,
        path: str,
        data: Union[bytes, str],
        encoding: Optional[str] = None,
        mode: Optional[int] = None,
    ) -> None:
        ...

    async def unlink(self, path: str) -> None:
        ...

    async def readdir(self, path: str) -> List[str]:
        ...

    async def mkdir(self, path: str, recursive: bool = True) -> None:
        ...

    async def rmdir(self, path: str) -> None:
        ...

    async def stat(self, path: str) -> Stats:
        ...

    async def lstat(self, path: str) -> Stats:
        ...

    async def readlink(self, path: str) -> str:
        ...

    async def symlink(self, target: str, path: str) -> None:
        ...

    async def exists(self, path: str) -> bool:
        ...

    async def close(self) -> None:
        ...
