#!/usr/bin/env python3
"""assetsync - Asset storage sync and backup."""

import argparse
import logging
import mimetypes
import os
import sys
import threading

from assetsync import AssetSync, __version__
from assetsync.config import StorageKey
from assetsync.targets import load_targets
from storage import StorageError, Visibility


def configure_logging(verbose: bool = False) -> None:
    """Set up root logging. LOG_LEVEL applies unless --verbose is given."""
    level = logging.DEBUG if verbose else os.environ.get('LOG_LEVEL', 'INFO').upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_sync(service: AssetSync, args: argparse.Namespace) -> int:
    """Run one sync cycle, or keep running with --interval."""
    if args.targets:
        service.scheduler.targets = load_targets(args.targets)

    if args.interval:
        stop = threading.Event()
        try:
            service.scheduler.run_periodically(args.interval, stop)
        except KeyboardInterrupt:
            stop.set()
        return 0

    report = service.run_sync_cycle()
    for result in report.targets:
        print(f"{result.target}: {result.uploaded} uploaded, {result.deleted} deleted, "
              f"{result.skipped} skipped, {result.failed} failed (of {result.total})")
        for error in result.errors:
            print(f"  ! {error}")
    for export in report.exports:
        status = f"{export.rows} rows" if export.ok else f"failed: {export.error}"
        print(f"{export.name}: {status}")
    return 0 if report.ok else 1


def cmd_config(service: AssetSync, args: argparse.Namespace) -> int:
    """Show resolved storage locations, or change an override."""
    if args.set:
        key, value = args.set
        entry = service.set_config(key, value)
        print(f"{entry.key.name} = {entry.value} ({entry.source.value})")
        return 0
    if args.unset:
        entry = service.clear_config(args.unset)
        print(f"{entry.key.name} = {entry.value} ({entry.source.value})")
        return 0

    for entry in service.config.resolve_all():
        print(f"{entry.key.name:<22} {entry.source.value:<12} {entry.value}")
    return 0


def cmd_upload(service: AssetSync, args: argparse.Namespace) -> int:
    """Upload a single local file."""
    folder_id = service.resolve_folder(args.key, args.path)
    name = os.path.basename(args.file)
    mime_type = mimetypes.guess_type(name)[0] or 'application/octet-stream'
    with open(args.file, 'rb') as f:
        data = f.read()

    visibility = Visibility.PUBLIC if args.public else Visibility.PRIVATE
    result = service.upload(folder_id, name, mime_type, data, visibility)
    print(f"{result.object_id} {result.url}")
    return 0


def cmd_list(service: AssetSync, args: argparse.Namespace) -> int:
    """List objects in a storage location."""
    folder_id = service.resolve_folder(args.key, args.path)
    for record in service.list(folder_id):
        size = record.size_bytes if record.size_bytes is not None else '-'
        print(f"{record.remote_object_id}  {record.visibility.value:<7} {size:>10}  {record.logical_name}")
    return 0


def cmd_delete(service: AssetSync, args: argparse.Namespace) -> int:
    """Delete an object by ID or URL."""
    service.delete(args.object)
    print(f"Deleted {args.object}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    key_names = ", ".join(k.name for k in StorageKey)

    parser = argparse.ArgumentParser(description="Asset storage sync and backup")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Run a sync cycle")
    sync.add_argument("--targets", type=str,
                      help="JSON file with sync targets (default: ASSETSYNC_TARGETS)")
    sync.add_argument("--interval", type=float,
                      help="Repeat every INTERVAL seconds until interrupted")
    sync.set_defaults(func=cmd_sync)

    config = subparsers.add_parser("config", help="Show or change storage locations")
    group = config.add_mutually_exclusive_group()
    group.add_argument("--set", nargs=2, metavar=("KEY", "VALUE"),
                       help="Store an override for KEY")
    group.add_argument("--unset", metavar="KEY",
                       help="Remove the override for KEY")
    config.set_defaults(func=cmd_config)

    upload = subparsers.add_parser("upload", help="Upload a file")
    upload.add_argument("file", help="Local file to upload")
    upload.add_argument("--key", required=True, help=f"Storage key ({key_names})")
    upload.add_argument("--path", help="Sub-folder path below the key's folder, e.g. a/b")
    upload.add_argument("--public", action="store_true",
                        help="Make the object readable by anyone with the link")
    upload.set_defaults(func=cmd_upload)

    list_cmd = subparsers.add_parser("list", help="List objects in a folder")
    list_cmd.add_argument("--key", required=True, help="Storage key")
    list_cmd.add_argument("--path", help="Sub-folder path below the key's folder")
    list_cmd.set_defaults(func=cmd_list)

    delete = subparsers.add_parser("delete", help="Delete an object")
    delete.add_argument("object", help="Object ID or URL")
    delete.set_defaults(func=cmd_delete)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        service = AssetSync.from_env()
    except (StorageError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        return args.func(service, args)
    except StorageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())
