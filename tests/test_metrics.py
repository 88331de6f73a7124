"""Test storage metrics."""

import pytest
from prometheus_client import CollectorRegistry

from repostore.metrics import StorageMetrics
from repostore.storage.errors import PathTraversalError

OPERATIONS = "repostore_storage_operations_total"


def test_registries_are_independent():
    first = StorageMetrics()
    second = StorageMetrics()
    first.record_operation("local", "read_file", "ok")
    assert first.get_value(OPERATIONS, {"backend": "local", "operation": "read_file", "status": "ok"}) == 1
    assert second.get_value(OPERATIONS, {"backend": "local", "operation": "read_file", "status": "ok"}) == 0


def test_injected_registry():
    registry = CollectorRegistry()
    metrics = StorageMetrics(registry)
    metrics.record_path_traversal("s3")
    assert registry.get_sample_value(
        "repostore_path_traversal_rejections_total", {"backend": "s3"}
    ) == 1


def test_export():
    metrics = StorageMetrics()
    metrics.record_payload_rejection("git-receive-pack")
    metrics.record_stream_bytes("git-receive-pack", 512)
    exported = metrics.export().decode("utf-8")
    assert 'repostore_payload_rejections_total{operation="git-receive-pack"} 1.0' in exported
    assert 'repostore_stream_bytes_total{operation="git-receive-pack"} 512.0' in exported


@pytest.mark.asyncio
async def test_adapter_operations_are_recorded(storage, metrics):
    await storage.write_file("HEAD", b"ref: refs/heads/main\n")
    await storage.read_file("HEAD")
    with pytest.raises(FileNotFoundError):
        await storage.read_file("ORIG_HEAD")

    labels = {"backend": storage.backend, "operation": "read_file"}
    assert metrics.get_value(OPERATIONS, dict(labels, status="ok")) == 1
    assert metrics.get_value(OPERATIONS, dict(labels, status="FileNotFoundError")) == 1
    assert (
        metrics.get_value(
            OPERATIONS,
            {"backend": storage.backend, "operation": "write_file", "status": "ok"},
        )
        == 1
    )


@pytest.mark.asyncio
async def test_traversal_is_recorded(storage, metrics):
    with pytest.raises(PathTraversalError):
        await storage.write_file("../repo-42-evil/secret", b"pwned")
    with pytest.raises(PathTraversalError):
        await storage.readdir("..")

    assert metrics.get_value(
        "repostore_path_traversal_rejections_total", {"backend": storage.backend}
    ) == 2
    assert metrics.get_value(
        OPERATIONS,
        {
            "backend": storage.backend,
            "operation": "write_file",
            "status": "PathTraversalError",
        },
    ) == 1
