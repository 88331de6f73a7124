"""Main module for repostore."""

import argparse
import asyncio
import json
import logging
import sys

from repostore import __version__
from repostore.config import add_storage_arguments, create_storage_adapter, load_config
from repostore.storage.errors import InvalidRepositoryIdError, StorageError
from repostore.storage.stream import StreamSizeCounter

logger = logging.getLogger("cli")

CHUNK_SIZE = 64 * 1024


def create_cli_parser():
    """Create the main CLI parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="repostore", description="Inspect and edit hosted Git repository storage"
    )
    parser.add_argument("--version", action="version", version=__version__)
    add_storage_arguments(parser)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.required = True

    ls_parser = subparsers.add_parser("ls", help="List a directory")
    ls_parser.add_argument("repository", help="Repository id")
    ls_parser.add_argument("path", nargs="?", default="", help="Directory path")

    cat_parser = subparsers.add_parser("cat", help="Write a file to stdout")
    cat_parser.add_argument("repository", help="Repository id")
    cat_parser.add_argument("path", help="File path")

    stat_parser = subparsers.add_parser("stat", help="Show entry metadata as JSON")
    stat_parser.add_argument("repository", help="Repository id")
    stat_parser.add_argument("path", nargs="?", default="", help="Entry path")
    stat_parser.add_argument(
        "--no-follow",
        action="store_true",
        help="describe a symbolic link itself instead of its target",
    )

    put_parser = subparsers.add_parser("put", help="Store stdin as a file")
    put_parser.add_argument("repository", help="Repository id")
    put_parser.add_argument("path", help="File path")
    put_parser.add_argument(
        "--max-size",
        type=int,
        default=None,
        help="maximum number of bytes to accept (default: the push size limit)",
    )

    rm_parser = subparsers.add_parser("rm", help="Remove a file")
    rm_parser.add_argument("repository", help="Repository id")
    rm_parser.add_argument("path", help="File path")

    mkdir_parser = subparsers.add_parser("mkdir", help="Create a directory")
    mkdir_parser.add_argument("repository", help="Repository id")
    mkdir_parser.add_argument("path", help="Directory path")
    mkdir_parser.add_argument(
        "-p", "--parents", action="store_true", help="create missing parents"
    )

    return parser


async def run_command(args, stdin=None, stdout=None) -> int:
    """Run one subcommand against the configured storage."""
    stdin = stdin or sys.stdin.buffer
    stdout = stdout or sys.stdout.buffer

    config = load_config(args)
    storage = create_storage_adapter(config, args.repository)
    try:
        if args.command == "ls":
            for name in await storage.readdir(args.path):
                stdout.write(name.encode("utf-8") + b"\n")
        elif args.command == "cat":
            stdout.write(await storage.read_file(args.path))
        elif args.command == "stat":
            if args.no_follow:
                stats = await storage.lstat(args.path)
            else:
                stats = await storage.stat(args.path)
            stdout.write(json.dumps(stats.model_dump(mode="json")).encode("utf-8") + b"\n")
        elif args.command == "put":
            counter = StreamSizeCounter(
                args.max_size or config.max_push_size, "repostore put"
            )
            chunks = []
            while True:
                chunk = stdin.read(CHUNK_SIZE)
                if not chunk:
                    break
                chunks.append(counter.feed(chunk))
            await storage.write_file(args.path, b"".join(chunks))
            logger.info("Stored %d bytes at %s", counter.get_bytes_received(), args.path)
        elif args.command == "rm":
            await storage.unlink(args.path)
        elif args.command == "mkdir":
            await storage.mkdir(args.path, recursive=args.parents)
    finally:
        await storage.close()
    stdout.flush()
    return 0


def main(argv=None):
    """Main entry point for the CLI."""
    parser = create_cli_parser()
    args = parser.parse_args(argv)
    try:
        return asyncio.run(run_command(args))
    except (StorageError, InvalidRepositoryIdError, OSError, ValueError) as e:
        print(f"repostore: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
