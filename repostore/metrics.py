"""Prometheus metrics for the storage layer.

Unlike module-level collectors, every ``StorageMetrics`` owns its own
``CollectorRegistry``: the application creates one and hands it to the
adapters and stream counters it wires up, and tests get a fresh, empty one.

Metrics:
- Operations: storage calls per backend, operation and outcome
- Security: blocked path traversal attempts
- Streams: rejected oversized payloads and bytes accepted per operation
"""

import functools
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, generate_latest


class StorageMetrics:
    """An injectable aggregator of storage metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.operations = Counter(
            "repostore_storage_operations_total",
            "Storage adapter operations",
            ["backend", "operation", "status"],  # status: ok or exception class
            registry=self.registry,
        )
        self.path_traversal_rejections = Counter(
            "repostore_path_traversal_rejections_total",
            "Paths rejected for escaping their repository root",
            ["backend"],
            registry=self.registry,
        )
        self.payload_rejections = Counter(
            "repostore_payload_rejections_total",
            "Streams aborted for exceeding their byte budget",
            ["operation"],
            registry=self.registry,
        )
        self.stream_bytes = Counter(
            "repostore_stream_bytes_total",
            "Bytes accepted by bounded streams",
            ["operation"],
            registry=self.registry,
        )

    def record_operation(self, backend: str, operation: str, status: str):
        self.operations.labels(
            backend=backend, operation=operation, status=status
        ).inc()

    def record_path_traversal(self, backend: str):
        self.path_traversal_rejections.labels(backend=backend).inc()

    def record_payload_rejection(self, operation: str):
        self.payload_rejections.labels(operation=operation).inc()

    def record_stream_bytes(self, operation: str, size: int):
        self.stream_bytes.labels(operation=operation).inc(size)

    def get_value(self, name: str, labels: Optional[dict] = None) -> float:
        """Return the current value of a sample, 0 if it was never recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return value or 0.0

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)


def track_operation(operation: str):
    """Record the outcome of an adapter coroutine.

    The adapter must expose ``backend`` and ``metrics`` (which may be None).
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                result = await func(self, *args, **kwargs)
            except Exception as exc:
                if self.metrics is not None:
                    self.metrics.record_operation(
                        self.backend, operation, type(exc).__name__
                    )
                raise
            if self.metrics is not None:
                self.metrics.record_operation(self.backend, operation, "ok")
            return result

        return wrapper

    return decorator
