"""Test path resolution for untrusted repository paths."""

import logging
import posixpath

import pytest

from repostore.storage.errors import (
    InvalidRepositoryIdError,
    PathTraversalError,
    StorageError,
)
from repostore.storage.paths import resolve_key, resolve_path, validate_repository_id

ROOT = "/data/repo-42"


def test_resolve_relative_path():
    """A plain relative path lands under the root."""
    assert resolve_path(ROOT, "refs/heads/main") == "/data/repo-42/refs/heads/main"


def test_resolve_rejects_parent_escape():
    """A path climbing out of the root is rejected."""
    with pytest.raises(PathTraversalError) as exc_info:
        resolve_path(ROOT, "../../etc/passwd")
    assert exc_info.value.path == "../../etc/passwd"


@pytest.mark.parametrize(
    "path",
    [
        "..",
        "../..",
        "../",
        "a/../../b",
        "a/b/../../..",
        "objects/../../repo-43/HEAD",
        "../repo-42-evil/secret",
        "..\\..\\etc\\passwd",
        "refs\\..\\..\\other",
        ".\\..",
        "..\0/etc",
    ],
)
def test_resolve_rejects_traversal(path):
    with pytest.raises(PathTraversalError):
        resolve_path(ROOT, path)


@pytest.mark.parametrize(
    "path, expected",
    [
        ("", ROOT),
        (".", ROOT),
        ("/", ROOT),
        ("///", ROOT),
        ("./HEAD", ROOT + "/HEAD"),
        ("/HEAD", ROOT + "/HEAD"),
        ("//objects//ab", ROOT + "/objects/ab"),
        ("refs/../HEAD", ROOT + "/HEAD"),
        ("a/./b/./c", ROOT + "/a/b/c"),
        ("objects\\ab\\cdef", ROOT + "/objects/ab/cdef"),
        ("../repo-42/HEAD", ROOT + "/HEAD"),
        ("/etc/passwd", ROOT + "/etc/passwd"),
        ("HEAD\0.lock", ROOT + "/HEAD.lock"),
        ("\0", ROOT),
    ],
)
def test_resolve_normalizes(path, expected):
    assert resolve_path(ROOT, path) == expected


def test_resolve_is_idempotent():
    """Resolving an already resolved path changes nothing."""
    for path in ["refs/heads/main", "", "/HEAD", "objects\\ab", "a/../b"]:
        resolved = resolve_path(ROOT, path)
        assert resolve_path(ROOT, resolved) == resolved


def test_resolve_normalizes_root():
    """Trailing separators and dot segments in the root do not matter."""
    assert resolve_path("/data/./repo-42/", "HEAD") == "/data/repo-42/HEAD"
    assert resolve_path("/data/x/../repo-42", "HEAD") == "/data/repo-42/HEAD"


def test_resolve_relative_root(tmp_path, monkeypatch):
    """A relative root is made absolute against the working directory."""
    monkeypatch.chdir(tmp_path)
    assert resolve_path("repos", "HEAD") == str(tmp_path.resolve() / "repos" / "HEAD")


def test_traversal_error_is_not_an_os_error():
    """Traversal must never read as "not found" or "permission denied"."""
    with pytest.raises(PathTraversalError) as exc_info:
        resolve_path(ROOT, "../x")
    assert not isinstance(exc_info.value, OSError)
    assert isinstance(exc_info.value, StorageError)
    assert exc_info.value.public_message == "Invalid path"
    assert ROOT not in exc_info.value.public_message


def test_traversal_is_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="repostore.security"):
        with pytest.raises(PathTraversalError):
            resolve_path(ROOT, "../../etc/passwd")
    records = [r for r in caplog.records if r.name == "repostore.security"]
    assert len(records) == 1
    assert "../../etc/passwd" in records[0].getMessage()


def test_resolve_with_posix_paths():
    """The same rules apply to object keys under a virtual root."""
    assert (
        resolve_path("/prefix", "a\\b", pathmod=posixpath) == "/prefix/a/b"
    )
    with pytest.raises(PathTraversalError):
        resolve_path("/prefix", "../prefix2/x", pathmod=posixpath)


@pytest.mark.parametrize(
    "path, expected",
    [
        ("HEAD", "repositories/repo-42/HEAD"),
        ("objects/ab/cdef", "repositories/repo-42/objects/ab/cdef"),
        ("/refs/heads/main", "repositories/repo-42/refs/heads/main"),
        ("", "repositories/repo-42"),
        ("/", "repositories/repo-42"),
        ("refs\\tags\\v1", "repositories/repo-42/refs/tags/v1"),
        ("refs/../HEAD", "repositories/repo-42/HEAD"),
    ],
)
def test_resolve_key(path, expected):
    assert resolve_key("repositories/repo-42", path) == expected


def test_resolve_key_ignores_prefix_slashes():
    assert resolve_key("/repositories/repo-42/", "HEAD") == "repositories/repo-42/HEAD"


@pytest.mark.parametrize(
    "path", ["..", "../repo-42-evil/secret", "../../x", "a/../../..\\b"]
)
def test_resolve_key_rejects_traversal(path):
    with pytest.raises(PathTraversalError):
        resolve_key("repositories/repo-42", path)


@pytest.mark.parametrize(
    "repository_id", ["repo-42", "my_repo.git", "A1", "-", "x" * 128]
)
def test_valid_repository_ids(repository_id):
    assert validate_repository_id(repository_id) == repository_id


@pytest.mark.parametrize(
    "repository_id",
    ["", ".", "..", ".hidden", "a/b", "a\\b", "a b", "x" * 129, "repo\0", "repo\n", None],
)
def test_invalid_repository_ids(repository_id):
    with pytest.raises(InvalidRepositoryIdError):
        validate_repository_id(repository_id)
    # still usable wherever a ValueError is expected
    with pytest.raises(ValueError):
        validate_repository_id(repository_id)
