"""Command-line interface for the OSS client.

Provides argument parsing and main entry point for signing URLs,
listing, uploading and downloading objects from the command line.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ossclient.client import OssClient
from ossclient.config import ClientConfig, ConfigError, load_config
from ossclient.errors import OssClientError
from ossclient.multipart import DEFAULT_CONCURRENCY, DEFAULT_PART_SIZE, upload_file
from ossclient.progress import ConsoleProgress

logger = logging.getLogger(__name__)

# Use legacy_windows=True for ASCII-safe output on Windows consoles
console = Console(legacy_windows=True)
error_console = Console(stderr=True, legacy_windows=True)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="ossclient",
        description="Sign, list, upload and download objects in OSS buckets",
    )

    parser.add_argument(
        "-c", "--config",
        default="config.json",
        help="Path to configuration file (default: config.json)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log request dispatch and upload lifecycle",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    presign = commands.add_parser("presign", help="Print a pre-signed URL for an object")
    presign.add_argument("bucket")
    presign.add_argument("key")
    presign.add_argument(
        "--expires",
        type=int,
        default=3600,
        metavar="SECONDS",
        help="URL lifetime in seconds (default: 3600)",
    )
    presign.add_argument(
        "--method",
        choices=["GET", "PUT"],
        default="GET",
        help="HTTP method the URL authorizes (default: GET)",
    )

    ls = commands.add_parser("ls", help="List objects in a bucket")
    ls.add_argument(
        "bucket",
        nargs="?",
        help="Bucket to list (default: bucket from configuration)",
    )
    ls.add_argument("--prefix", help="Only list keys starting with this prefix")
    ls.add_argument("--delimiter", help="Group keys sharing a prefix up to this character")
    ls.add_argument(
        "--max-items",
        type=int,
        default=1000,
        metavar="N",
        help="Maximum number of entries to list (default: 1000)",
    )

    upload = commands.add_parser("upload", help="Upload a file as a multipart upload")
    upload.add_argument("bucket")
    upload.add_argument("key")
    upload.add_argument("file")
    upload.add_argument(
        "--part-size",
        type=int,
        default=DEFAULT_PART_SIZE,
        metavar="BYTES",
        help=f"Part size in bytes (default: {DEFAULT_PART_SIZE})",
    )
    upload.add_argument(
        "--concurrency",
        type=int,
        default=DEFAULT_CONCURRENCY,
        metavar="N",
        help=f"Parts uploaded in parallel (default: {DEFAULT_CONCURRENCY})",
    )

    download = commands.add_parser("download", help="Download an object into a new file")
    download.add_argument("bucket")
    download.add_argument("key")
    download.add_argument("dest")

    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    """Route library logs through Rich when verbose output is requested."""
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=error_console, rich_tracebacks=False)],
    )
    # httpx/httpcore debug output drowns out ours
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def cmd_presign(client: OssClient, args: argparse.Namespace) -> int:
    url = client.sign_object_url(
        args.bucket,
        args.key,
        expires_in=args.expires,
        method=args.method,
    )
    console.print(url, soft_wrap=True, highlight=False)
    return 0


async def cmd_ls(client: OssClient, args: argparse.Namespace, bucket: str) -> int:
    result = await client.list_objects(
        bucket,
        prefix=args.prefix,
        delimiter=args.delimiter,
        max_items=args.max_items,
    )

    table = Table(title=f"oss://{bucket}/{args.prefix or ''}", box=box.ROUNDED)
    table.add_column("Key", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Last Modified")
    table.add_column("Storage Class")

    for prefix in result.prefixes:
        table.add_row(f"[bold]{prefix.prefix}[/bold]", "DIR", "", "")
    for obj in result.objects:
        table.add_row(obj.key, str(obj.size), obj.last_modified, obj.storage_class)

    console.print(table)
    if result.next_continuation_token:
        console.print(
            f"[yellow]More entries available; continuation token:[/yellow] "
            f"{result.next_continuation_token}"
        )
    return 0


async def cmd_upload(client: OssClient, args: argparse.Namespace) -> int:
    size = os.path.getsize(args.file)
    upload = client.multipart_upload(args.bucket, args.key)

    with ConsoleProgress(f"upload {os.path.basename(args.file)}", total=size) as progress:
        result = await upload_file(
            upload,
            args.file,
            part_size=args.part_size,
            concurrency=args.concurrency,
            observer_factory=progress.part_observer,
        )

    console.print(
        f"[green]Uploaded[/green] {args.file} -> oss://{args.bucket}/{args.key} "
        f"({len(result.manifest)} parts, ETag {result.etag})"
    )
    return 0


async def cmd_download(client: OssClient, args: argparse.Namespace) -> int:
    with ConsoleProgress(f"download {args.key}") as progress:
        written = await client.get_object_to_file(
            args.bucket, args.key, args.dest, observer=progress
        )

    console.print(
        f"[green]Downloaded[/green] oss://{args.bucket}/{args.key} -> {args.dest} "
        f"({written} bytes)"
    )
    return 0


async def run_command(config: ClientConfig, args: argparse.Namespace) -> int:
    """Build a client and dispatch to the selected subcommand."""
    async with OssClient.from_config(config) as client:
        if args.command == "presign":
            return cmd_presign(client, args)
        if args.command == "ls":
            bucket = args.bucket or config.bucket
            if not bucket:
                raise ConfigError("No bucket given and none configured")
            return await cmd_ls(client, args, bucket)
        if args.command == "upload":
            return await cmd_upload(client, args)
        if args.command == "download":
            return await cmd_download(client, args)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code: 0 for success, 1 for client errors, 2 for configuration errors
    """
    args = parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = load_config(args.config)
        return asyncio.run(run_command(config, args))
    except ConfigError as e:
        error_console.print(f"[red]Configuration error:[/red] {e}")
        return 2
    except OssClientError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        return 1
    except OSError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
