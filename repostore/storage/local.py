"""Local filesystem storage adapter.

Maps every contract operation onto the matching filesystem primitive after
path resolution. Used for development, tests and single-node deployments.
"""

import asyncio
import contextlib
import logging
import os
import stat
from typing import List, Optional, Union

import aiofiles
import aiofiles.os

from repostore.metrics import StorageMetrics, track_operation
from repostore.storage.errors import PathTraversalError
from repostore.storage.interface import Stats
from repostore.storage.paths import canonical_root, resolve_path, security_logger
from repostore.utils import is_safe_path, is_temp_sibling, temp_sibling

logger = logging.getLogger(__name__)


class LocalFsAdapter:
    """Storage adapter over one local directory tree.

    Native ``OSError`` subclasses are propagated unchanged.

    Usage:
        storage = LocalFsAdapter("/data/repos/repo-42")
        await storage.write_file("HEAD", b"ref: refs/heads/main\\n")
        head = await storage.read_file("HEAD", encoding="utf-8")
    """

    backend = "local"

    def __init__(self, base_dir: str, metrics: Optional[StorageMetrics] = None):
        self.root = canonical_root(base_dir)
        self.metrics = metrics

    def _resolve(self, path: str, follow_symlinks: bool = False) -> str:
        """Resolve ``path`` inside the root.

        With ``follow_symlinks`` the real location on disk is checked too, so
        an operation that dereferences links cannot leave the root through a
        symlink planted inside it.
        """
        try:
            full_path = resolve_path(self.root, path)
            if follow_symlinks and not is_safe_path(self.root, full_path):
                security_logger.warning(
                    "Blocked symlink escape: %r resolves outside repository root %s",
                    path,
                    self.root,
                )
                raise PathTraversalError(
                    path, f"Path traversal detected: {path!r} leaves the root via a symlink"
                )
        except PathTraversalError:
            if self.metrics is not None:
                self.metrics.record_path_traversal(self.backend)
            raise
        return full_path

    @track_operation("read_file")
    async def read_file(
        self, path: str, encoding: Optional[str] = None
    ) -> Union[bytes, str]:
        full_path = self._resolve(path, follow_symlinks=True)
        async with aiofiles.open(full_path, "rb") as fil:
            data = await fil.read()
        return data.decode(encoding) if encoding else data

    @track_operation("write_file")
    async def write_file(
        self,
        path: str,
        data: Union[bytes, str],
        encoding: Optional[str] = None,
        mode: Optional[int] = None,
    ) -> None:
        """Write a file atomically, creating parent directories as needed.

        The content goes to a temporary sibling first and is renamed into
        place, so readers see either the old file or the complete new one.
        Writing to a symlink replaces the file it points to, not the link.
        Without ``mode`` an existing file keeps its permission bits.
        """
        full_path = os.path.realpath(self._resolve(path, follow_symlinks=True))
        if isinstance(data, str):
            data = data.encode(encoding or "utf-8")

        if mode is None:
            with contextlib.suppress(FileNotFoundError):
                mode = stat.S_IMODE((await aiofiles.os.stat(full_path)).st_mode)

        await aiofiles.os.makedirs(os.path.dirname(full_path), exist_ok=True)
        tmp_path = temp_sibling(full_path)
        try:
            async with aiofiles.open(tmp_path, "wb") as fil:
                await fil.write(data)
            if mode is not None:
                await asyncio.to_thread(os.chmod, tmp_path, mode)
            await aiofiles.os.replace(tmp_path, full_path)
        except BaseException:
            # also runs on cancellation, the rename never happened
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_path)
            raise
        logger.debug("Wrote %d bytes to %s", len(data), full_path)

    @track_operation("unlink")
    async def unlink(self, path: str) -> None:
        full_path = self._resolve(path)
        await aiofiles.os.remove(full_path)
        logger.debug("Removed %s", full_path)

    @track_operation("readdir")
    async def readdir(self, path: str) -> List[str]:
        full_path = self._resolve(path, follow_symlinks=True)
        names = await aiofiles.os.listdir(full_path)
        # hide files of writes still in flight
        return sorted(name for name in names if not is_temp_sibling(name))

    @track_operation("mkdir")
    async def mkdir(self, path: str, recursive: bool = True) -> None:
        full_path = self._resolve(path)
        if recursive:
            await aiofiles.os.makedirs(full_path, exist_ok=True)
        else:
            await aiofiles.os.mkdir(full_path)

    @track_operation("rmdir")
    async def rmdir(self, path: str) -> None:
        """Remove an empty directory; callers delete the contents first."""
        full_path = self._resolve(path)
        await aiofiles.os.rmdir(full_path)

    @track_operation("stat")
    async def stat(self, path: str) -> Stats:
        full_path = self._resolve(path, follow_symlinks=True)
        return Stats.from_stat_result(await aiofiles.os.stat(full_path))

    @track_operation("lstat")
    async def lstat(self, path: str) -> Stats:
        full_path = self._resolve(path)
        return Stats.from_stat_result(await asyncio.to_thread(os.lstat, full_path))

    @track_operation("readlink")
    async def readlink(self, path: str) -> str:
        full_path = self._resolve(path)
        return await aiofiles.os.readlink(full_path)

    @track_operation("symlink")
    async def symlink(self, target: str, path: str) -> None:
        """Create ``path`` as a link to ``target``.

        The target is stored verbatim; it is checked when the link is followed.
        """
        full_path = self._resolve(path)
        await aiofiles.os.symlink(target, full_path)

    async def exists(self, path: str) -> bool:
        """Check whether an entry exists, without following a final symlink."""
        try:
            await self.lstat(path)
        except (FileNotFoundError, NotADirectoryError):
            return False
        return True

    async def close(self) -> None:
        """Nothing to release for the local filesystem."""
