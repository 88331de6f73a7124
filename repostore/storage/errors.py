"""Error kinds raised by the storage layer.

Native I/O failures (``FileNotFoundError``, ``PermissionError``,
``IsADirectoryError``, ``NotADirectoryError``, ``FileExistsError``) are not
wrapped: they propagate unchanged so the version-control engine can tell a
missing loose object from a real failure. The classes below cover the cases
that have no native equivalent.
"""

from repostore.utils import format_bytes


class StorageError(Exception):
    """Base class for errors raised by repostore itself."""

    public_message = "Storage operation failed"


class PathTraversalError(StorageError):
    """Raised when a path tries to escape its repository root.

    Deliberately not an ``OSError`` so it can never be mistaken for
    "not found" or "permission denied".
    """

    public_message = "Invalid path"

    def __init__(self, path: str, message: str = None):
        self.path = path
        super().__init__(
            message or f"Path traversal detected: {path!r} escapes the repository root"
        )


class PayloadTooLargeError(StorageError):
    """Raised by a bounded stream once its byte budget is exceeded."""

    status_code = 413
    public_message = "Request body too large"

    def __init__(self, operation_name: str, max_size: int, bytes_received: int):
        self.operation_name = operation_name
        self.max_size = max_size
        self.bytes_received = bytes_received
        super().__init__(
            f"{operation_name}: Stream size limit exceeded. "
            f"Received {format_bytes(bytes_received)}, "
            f"maximum allowed is {format_bytes(max_size)}"
        )


class StorageConsistencyError(StorageError):
    """Raised when a freshly written object does not read back as written."""


class InvalidRepositoryIdError(ValueError):
    """Raised for a repository identifier that cannot name a storage root."""
