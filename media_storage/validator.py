"""Reconcile configured storage groups with the devices that are actually attached."""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .errors import ConfigurationError
from .models import (DeviceDescriptor, DriveRole, IssueSeverity, StorageConfiguration,
                     StorageGroup, ValidationIssue, normalize_serial, role_name)

logger = logging.getLogger(__name__)


def index_devices(devices: Iterable[DeviceDescriptor]) -> Dict[str, DeviceDescriptor]:
    """
    Map serial number -> descriptor.

    A disk with several partitions reports the same serial more than once; the
    first mounted volume wins, otherwise the first one seen.
    """
    index: Dict[str, DeviceDescriptor] = {}
    for device in devices:
        if not device.serial_number:
            continue
        current = index.get(device.serial_number)
        if current is None or (not current.is_mounted and device.is_mounted):
            index[device.serial_number] = device
    return index


def validate(config: StorageConfiguration,
             devices: Iterable[DeviceDescriptor]) -> List[ValidationIssue]:
    """
    Match every configured drive to a live device by serial number.

    Runtime status of each drive is updated in place. Drives that cannot be
    found are reported; nothing is removed from the configuration.

    Raises:
        ConfigurationError: If a group has no Master entry at all. Every
            other group is matched before this is raised.
    """
    index = index_devices(devices)
    seen_at = datetime.now()
    issues: List[ValidationIssue] = []
    masterless: List[str] = []

    for group in config.sorted_groups():
        if group.master is None:
            masterless.append(group.group_id)
            continue

        for role, backup_id, drive in group.drives():
            device = index.get(drive.serial_number)
            if device is not None:
                drive.runtime.mark_available(device, seen_at)
                logger.debug(f"Matched {role_name(role, backup_id)} of group {group.group_id} "
                             f"to {device.mount_point or device.device_path}")
                continue

            drive.runtime.mark_missing()
            issue = ValidationIssue(
                group_id=group.group_id,
                group_name=group.display_name,
                role=role,
                backup_id=backup_id,
                serial_number=drive.serial_number,
                label=drive.label,
                severity=IssueSeverity.ERROR if role == DriveRole.MASTER else IssueSeverity.WARNING,
            )
            issues.append(issue)
            log = logger.warning if role == DriveRole.MASTER else logger.info
            log(issue.message, extra={
                'event': 'storage.drive_missing',
                'group_id': group.group_id,
                'role': issue.role_name,
                'serial': drive.serial_number,
            })

    if masterless:
        raise ConfigurationError(
            f"Storage group(s) {', '.join(masterless)} have no Master drive",
            group_ids=masterless,
        )
    return issues


def find_group_for_serial(config: StorageConfiguration, serial: str) -> Optional[str]:
    """Return the id of the first group (numeric order) using ``serial``, or None."""
    serial = normalize_serial(serial)
    if not serial:
        return None
    for group in config.sorted_groups():
        if serial in group.serials():
            return group.group_id
    return None


def invalid_groups(config: StorageConfiguration) -> List[StorageGroup]:
    """Groups whose Master is not currently available."""
    return [group for group in config.sorted_groups() if not group.is_valid]
