"""Path sanitizing for untrusted repository paths.

Every path handed to a storage adapter comes from the version-control engine
and, ultimately, from the network. ``resolve_path`` turns such a path into an
absolute path inside a repository root or raises ``PathTraversalError``.
"""

import logging
import os
import posixpath
import re

from repostore.storage.errors import InvalidRepositoryIdError, PathTraversalError

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("repostore.security")

REPOSITORY_ID_PATTERN = re.compile(r"[A-Za-z0-9_-][A-Za-z0-9._-]{0,127}")


def _clean(relative_path: str) -> str:
    # NUL bytes truncate strings in lower level file APIs
    return relative_path.replace("\0", "").replace("\\", "/")


def _is_within(candidate: str, root: str, pathmod) -> bool:
    candidate = pathmod.normcase(candidate)
    root = pathmod.normcase(root)
    return candidate == root or candidate.startswith(root.rstrip(pathmod.sep) + pathmod.sep)


def canonical_root(root: str, pathmod=os.path) -> str:
    """Return the absolute, normalized form of a repository root."""
    return pathmod.normpath(pathmod.abspath(root))


def resolve_path(root: str, relative_path: str, pathmod=os.path) -> str:
    """Resolve an untrusted path against a repository root.

    NUL bytes are dropped and backslashes count as separators, so both
    separator conventions resolve identically on every platform. A leading
    separator means "relative to the repository root", never "relative to
    the filesystem root". The only exception is a path that already lies
    inside the root: it is returned unchanged, which makes resolving a
    resolved path a no-op.

    Only ``.`` and ``..`` segments are normalized; symlinks on disk are not
    followed here.

    :param root: The trusted repository root.
    :param relative_path: The untrusted path.
    :param pathmod: ``os.path`` for filesystem paths, ``posixpath`` for keys.
    :return: The resolved absolute path.
    :raises PathTraversalError: If the path escapes the root.
    """
    base = canonical_root(root, pathmod)
    cleaned = _clean(relative_path)

    if pathmod.isabs(cleaned):
        absolute = pathmod.normpath(cleaned)
        if _is_within(absolute, base, pathmod):
            return absolute

    segments = [segment for segment in cleaned.lstrip("/").split("/") if segment]
    resolved = pathmod.normpath(pathmod.join(base, *segments))

    if not _is_within(resolved, base, pathmod):
        security_logger.warning(
            "Blocked path traversal attempt: %r escapes repository root %s",
            relative_path,
            base,
        )
        raise PathTraversalError(relative_path)
    return resolved


def resolve_key(prefix: str, relative_path: str) -> str:
    """Resolve an untrusted path to an object key under ``prefix``.

    The prefix is treated as a directory under a virtual ``/`` so the same
    rules as ``resolve_path`` apply; the returned key has no leading slash.
    """
    virtual_root = "/" + prefix.strip("/")
    resolved = resolve_path(virtual_root, relative_path, pathmod=posixpath)
    return resolved.lstrip("/")


def validate_repository_id(repository_id: str) -> str:
    """Check that a repository identifier can safely name a storage root."""
    if not isinstance(repository_id, str) or not REPOSITORY_ID_PATTERN.fullmatch(
        repository_id
    ):
        raise InvalidRepositoryIdError(
            "Invalid repository id: only letters, digits, '-', '_' and '.' "
            "are allowed, up to 128 characters, not starting with '.'"
        )
    return repository_id
