"""Configure which storage backend serves the repositories.

Options come from the command line, or from ``REPOSTORE_<OPTION>``
environment variables (``--from-env``); a ``.env`` file is loaded first.
"""

import argparse
import logging
import os
import sys
from contextlib import asynccontextmanager
from enum import Enum
from os import environ as env
from typing import Optional

from aiobotocore.session import get_session
from botocore.config import Config
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, model_validator

from repostore.metrics import StorageMetrics
from repostore.storage.interface import GitStorageAdapter
from repostore.storage.local import LocalFsAdapter
from repostore.storage.paths import resolve_key, resolve_path, validate_repository_id
from repostore.storage.s3 import S3StorageAdapter
from repostore.storage.stream import (
    DEFAULT_RECEIVE_PACK_MAX_SIZE,
    DEFAULT_UPLOAD_PACK_MAX_SIZE,
)

LOGLEVEL = os.environ.get("REPOSTORE_LOGLEVEL", "WARNING").upper()
logging.basicConfig(level=LOGLEVEL, stream=sys.stdout)
logger = logging.getLogger("config")
logger.setLevel(LOGLEVEL)

ENV_FILE = find_dotenv(usecwd=True)
if ENV_FILE:
    load_dotenv(ENV_FILE)


class BackendEnum(str, Enum):
    """Represent the storage backend."""

    local = "local"
    s3 = "s3"


class StorageConfig(BaseModel):
    """Represent the storage configuration of a deployment."""

    backend: BackendEnum = BackendEnum.local
    base_dir: str = "./repositories"
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    region_name: str = "us-east-1"
    bucket: Optional[str] = None
    prefix: str = "repositories"
    use_async_writer: bool = False
    verify_writes: bool = False
    max_push_size: int = DEFAULT_RECEIVE_PACK_MAX_SIZE
    max_fetch_size: int = DEFAULT_UPLOAD_PACK_MAX_SIZE

    @model_validator(mode="after")
    def check_backend_settings(self):
        """Check that the selected backend has what it needs."""
        if self.backend == BackendEnum.s3:
            missing = [
                name
                for name in ("endpoint_url", "access_key_id", "secret_access_key", "bucket")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(
                    "The s3 backend requires: " + ", ".join(sorted(missing))
                )
        if self.max_push_size <= 0 or self.max_fetch_size <= 0:
            raise ValueError("Size limits must be positive")
        return self

    def get_s3_config(self) -> dict:
        """Return the S3 settings as used by the async writer."""
        return {
            "endpoint_url": self.endpoint_url,
            "access_key_id": self.access_key_id,
            "secret_access_key": self.secret_access_key,
            "region_name": self.region_name,
        }

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "StorageConfig":
        fields = cls.model_fields.keys()
        return cls.model_validate(
            {key: value for key, value in vars(args).items() if key in fields and value is not None}
        )


def create_s3_client_factory(config: StorageConfig):
    """Create an S3 client factory.

    Returns a callable that returns an async context manager for an
    aiobotocore S3 client; each call opens a fresh client.
    """
    session = get_session()

    @asynccontextmanager
    async def s3_client_factory():
        async with session.create_client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region_name,
            config=Config(connect_timeout=60, read_timeout=300),
        ) as client:
            yield client

    return s3_client_factory


def create_storage_adapter(
    config: StorageConfig,
    repository_id: str,
    metrics: Optional[StorageMetrics] = None,
    s3_client_factory=None,
) -> GitStorageAdapter:
    """Create the configured adapter for one repository.

    The repository id picks the storage root: ``<base_dir>/<id>`` for the
    local backend, ``<prefix>/<id>`` for the s3 backend.
    """
    validate_repository_id(repository_id)

    if config.backend == BackendEnum.local:
        root = resolve_path(config.base_dir, repository_id)
        logger.debug("Using local storage at %s", root)
        return LocalFsAdapter(root, metrics=metrics)

    prefix = resolve_key(config.prefix, repository_id)
    logger.debug("Using s3 storage at s3://%s/%s", config.bucket, prefix)
    return S3StorageAdapter(
        s3_client_factory or create_s3_client_factory(config),
        config.bucket,
        prefix,
        s3_config=config.get_s3_config() if config.use_async_writer else None,
        verify_writes=config.verify_writes,
        metrics=metrics,
    )


TRUE_VALUES = ("true", "1", "yes", "y", "on")


def get_args_from_env():
    """Read the storage options from ``REPOSTORE_<OPTION>`` variables.

    Flags accept true/1/yes/y/on; typed options are converted with the
    parser's type, and a value that does not convert is skipped.
    """
    parser = get_argparser(add_help=False)
    args = parser.parse_args([])

    for action in parser._actions:
        env_var = "REPOSTORE_" + action.dest.upper()
        if action.dest == "help" or env_var not in env:
            continue
        raw = env[env_var]
        if isinstance(action, argparse._StoreTrueAction):
            value = raw.strip().lower() in TRUE_VALUES
        elif action.type is not None:
            try:
                value = action.type(raw)
            except (ValueError, TypeError):
                logger.warning("Ignoring %s=%r, expected %s", env_var, raw, action.type.__name__)
                continue
        else:
            value = raw
        setattr(args, action.dest, value)

    return args


def get_argparser(add_help=True):
    """Return the argument parser for the storage options."""
    parser = argparse.ArgumentParser(add_help=add_help)
    add_storage_arguments(parser)
    return parser


def add_storage_arguments(parser: argparse.ArgumentParser):
    """Add the storage options to ``parser``."""
    parser.add_argument(
        "--from-env",
        action="store_true",
        help="load arguments from environment variables, the environment variables should be in the format of REPOSTORE_<ARG_NAME_UPPER>",
    )
    parser.add_argument(
        "--backend",
        type=str,
        choices=[backend.value for backend in BackendEnum],
        default=None,
        help="storage backend for repositories (local or s3)",
    )
    parser.add_argument(
        "--base-dir",
        type=str,
        default=None,
        help="directory holding one sub-directory per repository (local backend)",
    )
    parser.add_argument(
        "--endpoint-url",
        type=str,
        default=None,
        help="set endpoint URL for S3",
    )
    parser.add_argument(
        "--access-key-id",
        type=str,
        default=None,
        help="set AccessKeyID for S3",
    )
    parser.add_argument(
        "--secret-access-key",
        type=str,
        default=None,
        help="set SecretAccessKey for S3",
    )
    parser.add_argument(
        "--region-name",
        type=str,
        default=None,
        help="set region name for S3",
    )
    parser.add_argument(
        "--bucket",
        type=str,
        default=None,
        help="S3 bucket for storing repositories",
    )
    parser.add_argument(
        "--prefix",
        type=str,
        default=None,
        help="key prefix under which each repository gets its own prefix",
    )
    parser.add_argument(
        "--use-async-writer",
        action="store_true",
        help="write objects with the aiohttp based S3 client instead of aiobotocore",
    )
    parser.add_argument(
        "--verify-writes",
        action="store_true",
        help="check every S3 write by reading its metadata back",
    )
    parser.add_argument(
        "--max-push-size",
        type=int,
        default=None,
        help="maximum size in bytes of a push payload",
    )
    parser.add_argument(
        "--max-fetch-size",
        type=int,
        default=None,
        help="maximum size in bytes of a fetch request body",
    )
    return parser


def load_config(args: argparse.Namespace) -> StorageConfig:
    """Build the storage config from parsed arguments, honoring ``--from-env``."""
    if args.from_env:
        logger.info("Reading storage options from REPOSTORE_* variables")
        # variables that are set win over command line values
        for key, value in vars(get_args_from_env()).items():
            if value is None or value is False:
                continue
            setattr(args, key, value)
    return StorageConfig.from_args(args)
