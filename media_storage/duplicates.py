"""Serial-number uniqueness rules for storage groups."""

import logging
from typing import Callable, Iterable, Optional, Tuple

from .errors import DuplicateSerialError
from .models import StorageConfiguration, StorageDrive

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str], bool]


def find_conflict(config: StorageConfiguration, serial: str,
                  exclude_group_id: Optional[str] = None) -> Tuple[Optional[str], bool]:
    """
    Look for ``serial`` in every group except ``exclude_group_id``.

    Returns:
        Tuple of (conflicting group id, found)
    """
    for group in config.sorted_groups():
        if group.group_id == exclude_group_id:
            continue
        if serial in group.serials():
            return group.group_id, True
    return None, False


def check_within_group(master: Optional[StorageDrive],
                       backups: Iterable[StorageDrive]) -> None:
    """
    Reject a serial that appears twice inside one group.

    This check has no override.

    Raises:
        DuplicateSerialError: Master repeated as a Backup, or a Backup repeated
    """
    seen = {}
    drives = ([('Master', master)] if master is not None else [])
    drives += [(f'Backup #{position}', drive) for position, drive in enumerate(backups, start=1)]
    for name, drive in drives:
        serial = drive.serial_number
        if serial in seen:
            raise DuplicateSerialError(
                f"Serial {serial} is used by both {seen[serial]} and {name} of the same group",
                serial=serial,
                within_group=True,
            )
        seen[serial] = name


def resolve_cross_group(config: StorageConfiguration,
                        serials: Iterable[str],
                        exclude_group_id: Optional[str] = None,
                        interactive: bool = False,
                        confirm: Optional[ConfirmCallback] = None) -> None:
    """
    Apply the cross-group policy to every serial.

    Non-interactive callers get an error on the first conflict. Interactive
    callers are asked through ``confirm``; a refusal is an error too.

    Raises:
        DuplicateSerialError: On a rejected or declined conflict
    """
    for serial in serials:
        conflict_id, found = find_conflict(config, serial, exclude_group_id)
        if not found:
            continue

        if not interactive or confirm is None:
            raise DuplicateSerialError(
                f"Serial {serial} is already assigned to storage group {conflict_id}",
                serial=serial,
                conflicting_group_id=conflict_id,
            )

        question = (f"Serial {serial} is already assigned to storage group {conflict_id}. "
                    f"Use it in this group as well?")
        if not confirm(question):
            raise DuplicateSerialError(
                f"Shared use of serial {serial} (group {conflict_id}) was declined",
                serial=serial,
                conflicting_group_id=conflict_id,
            )
        logger.info(f"Operator accepted shared serial {serial} (also in group {conflict_id})",
                    extra={'event': 'storage.shared_serial', 'serial': serial,
                           'group_id': conflict_id})
