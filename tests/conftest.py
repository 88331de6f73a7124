"""Provide common pytest fixtures."""

import pytest

from repostore.metrics import StorageMetrics
from repostore.storage.local import LocalFsAdapter
from repostore.storage.s3 import S3StorageAdapter

from . import TEST_BUCKET, TEST_PREFIX
from .fake_s3 import FakeS3Server


@pytest.fixture
def metrics():
    """Create a metrics aggregator with its own registry."""
    return StorageMetrics()


@pytest.fixture
def fake_s3():
    """Create an in-memory S3 server with one empty bucket."""
    return FakeS3Server(buckets=(TEST_BUCKET,))


@pytest.fixture
def repo_root(tmp_path):
    """Create a repository root with a sibling that must stay unreachable."""
    root = tmp_path / "repos" / "repo-42"
    root.mkdir(parents=True)
    outside = tmp_path / "repos" / "repo-42-evil"
    outside.mkdir()
    (outside / "secret").write_bytes(b"top secret")
    (tmp_path / "passwd").write_bytes(b"root:x:0:0")
    return root


@pytest.fixture
def local_storage(repo_root, metrics):
    """Create a local filesystem adapter."""
    return LocalFsAdapter(str(repo_root), metrics=metrics)


@pytest.fixture
def s3_storage(fake_s3, metrics):
    """Create an object store adapter on the fake S3 server."""
    fake_s3.store(TEST_BUCKET, "repositories/repo-42-evil/secret", b"top secret")
    return S3StorageAdapter(
        fake_s3.client_factory, TEST_BUCKET, TEST_PREFIX, metrics=metrics
    )


@pytest.fixture(params=["local", "s3"])
def storage(request):
    """Run a test against every storage backend."""
    return request.getfixturevalue(f"{request.param}_storage")
