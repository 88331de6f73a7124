"""Helpers for the HTTP layer that serves Git Smart HTTP.

The routes themselves live in the application; this module only provides
what they need from the storage layer: reading a request body under a byte
budget and turning storage errors into responses that reveal nothing about
the storage layout.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from repostore.metrics import StorageMetrics
from repostore.storage.errors import PathTraversalError, PayloadTooLargeError
from repostore.storage.stream import read_limited

logger = logging.getLogger(__name__)


async def read_request_body(
    request: Request,
    max_size: int,
    operation_name: str = "git-receive-pack",
    metrics: Optional[StorageMetrics] = None,
) -> bytes:
    """Read the request body, counting the bytes actually streamed.

    The Content-Length header is checked first as a shortcut, but chunked
    bodies are bounded by the stream counter regardless of headers.
    """
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > max_size:
        if metrics is not None:
            metrics.record_payload_rejection(operation_name)
        raise PayloadTooLargeError(operation_name, max_size, int(content_length))
    return await read_limited(request.stream(), max_size, operation_name, metrics=metrics)


async def payload_too_large_handler(request: Request, exc: PayloadTooLargeError):
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "statusCode": exc.status_code,
            "message": exc.public_message,
            "error": "Payload Too Large",
        },
        headers={"Connection": "close"},
    )


async def path_traversal_handler(request: Request, exc: PathTraversalError):
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=400,
        content={
            "statusCode": 400,
            "message": exc.public_message,
            "error": "Bad Request",
        },
    )


def install_exception_handlers(app: FastAPI):
    """Map storage errors to HTTP responses on ``app``."""
    app.add_exception_handler(PayloadTooLargeError, payload_too_large_handler)
    app.add_exception_handler(PathTraversalError, path_traversal_handler)
