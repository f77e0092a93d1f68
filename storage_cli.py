#!/usr/bin/env python3
"""
Command-line front end for storage groups.

Examples:
    storage_cli.py devices --selectable
    storage_cli.py add "Media" --master WD-1234 --backup WD-5678=MediaB
    storage_cli.py edit 1 --add-backup ST-42 --remove-backup 1
    storage_cli.py remove 2 3
"""

import argparse
import json
import logging
import sys
from typing import Callable, Optional, Sequence, Tuple

from app.logging import configure_logging
from media_storage.errors import ConfigurationError, StorageError
from media_storage.group_manager import StorageGroupManager, build_manager
from media_storage.models import StorageDrive
from media_storage.settings import SettingsManager
from media_storage.validator import index_devices

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STORAGE_ERROR = 1
EXIT_USAGE = 2


def ask_yes_no(question: str, input_func: Optional[Callable[[str], str]] = None) -> bool:
    """Ask until the answer is yes or no. End of input counts as no."""
    input_func = input_func or input
    while True:
        try:
            answer = input_func(f"{question} [y/N] ").strip().lower()
        except EOFError:
            return False
        if answer in ('y', 'yes'):
            return True
        if answer in ('', 'n', 'no'):
            return False
        print("Please answer 'y' or 'n'.")


def parse_drive_spec(spec: str) -> Tuple[str, Optional[str]]:
    """Split ``SERIAL`` or ``SERIAL=LABEL``."""
    serial, _, label = spec.partition('=')
    serial = serial.strip()
    if not serial:
        raise ValueError(f"Invalid drive '{spec}': expected SERIAL or SERIAL=LABEL")
    return serial, (label.strip() or None)


def _build_drive(spec: str, devices) -> StorageDrive:
    serial, label = parse_drive_spec(spec)
    device = devices.get(serial)
    if device is not None:
        return StorageDrive.from_device(device, label)
    return StorageDrive(label=label or serial, serial_number=serial)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage Master/Backup storage groups")
    parser.add_argument("--settings", help="JSON settings file")
    parser.add_argument("--non-interactive", action="store_true",
                        help="Reject serials already used by another group instead of asking")
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    devices = subparsers.add_parser("devices", help="List attached devices")
    devices.add_argument("--selectable", action="store_true",
                         help="Only devices that can be added to a group")

    subparsers.add_parser("groups", help="List configured groups")
    subparsers.add_parser("validate", help="Match groups against attached devices")
    subparsers.add_parser("registry", help="Print the registry snapshot")

    add = subparsers.add_parser("add", help="Add a group")
    add.add_argument("name", help="Display name")
    add.add_argument("--master", required=True, metavar="SERIAL[=LABEL]")
    add.add_argument("--backup", action="append", default=[], metavar="SERIAL[=LABEL]")

    edit = subparsers.add_parser("edit", help="Edit a group")
    edit.add_argument("group_id")
    edit.add_argument("--name", help="New display name")
    edit.add_argument("--master", metavar="SERIAL[=LABEL]")
    edit.add_argument("--add-backup", action="append", default=[], metavar="SERIAL[=LABEL]")
    edit.add_argument("--remove-backup", action="append", default=[], metavar="BACKUP_ID")

    remove = subparsers.add_parser("remove", help="Remove groups")
    remove.add_argument("group_ids", nargs="+")

    return parser


def run_command(args: argparse.Namespace, manager: StorageGroupManager) -> int:
    """Execute one parsed command against a loaded manager."""
    if args.command == "devices":
        devices = manager.selectable_devices() if args.selectable else manager.list_devices()
        _print_json([d.to_dict() for d in devices])
        return EXIT_OK

    if args.command == "groups":
        _print_json([g.to_dict() for g in manager.list_groups()])
        return EXIT_OK

    if args.command == "validate":
        issues = manager.refresh()
        for issue in issues:
            print(f"[{issue.severity.value}] {issue.message}")
        if not issues:
            print(f"All drives of {len(manager.list_groups())} group(s) are available")
        return EXIT_OK

    if args.command == "registry":
        _print_json(manager.registry.export())
        return EXIT_OK

    if args.command == "add":
        devices = index_devices(manager.list_devices())
        group_id = manager.add_group(
            args.name,
            _build_drive(args.master, devices),
            [_build_drive(spec, devices) for spec in args.backup],
        )
        print(f"Added storage group {group_id}")
        return EXIT_OK

    if args.command == "edit":
        devices = index_devices(manager.list_devices())
        group_id = manager.edit_group(
            args.group_id,
            display_name=args.name,
            master=_build_drive(args.master, devices) if args.master else None,
            add_backups=[_build_drive(spec, devices) for spec in args.add_backup],
            remove_backup_ids=args.remove_backup,
        )
        print(f"Updated storage group {group_id}")
        return EXIT_OK

    if args.command == "remove":
        removed = manager.remove_groups(args.group_ids)
        print(f"Removed storage group(s) {', '.join(removed)}; "
              f"{len(manager.list_groups())} remaining")
        return EXIT_OK

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[Sequence[str]] = None,
         manager: Optional[StorageGroupManager] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = SettingsManager(args.settings).load_settings()
    except ValueError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        return EXIT_USAGE

    configure_logging(args.log_level or settings.log_level)

    if manager is None:
        manager = build_manager(
            settings,
            interactive=not args.non_interactive,
            confirm=ask_yes_no,
        )

    logger.debug(f"Running storage command '{args.command}'")
    try:
        try:
            manager.load()
        except ConfigurationError as e:
            if not manager.loaded:
                raise
            # Parsed, but some groups lack a Master; edit and remove can repair them
            print(f"Warning: {e}", file=sys.stderr)
        return run_command(args, manager)
    except StorageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_STORAGE_ERROR
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
