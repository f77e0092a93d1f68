"""Device discovery: list attached volumes together with their hardware serial numbers."""

import json
import logging
import os
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import psutil

from .errors import DiscoveryError
from .models import DeviceDescriptor, HealthStatus, normalize_serial
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)


class DeviceEnumerator(ABC):
    """Lists the devices currently attached to this machine."""

    @abstractmethod
    def list_devices(self) -> List[DeviceDescriptor]:
        """Return one descriptor per volume; an empty list when nothing is found."""
        raise NotImplementedError


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {'1', 'true', 'yes'}


def _as_int(value: Any, field_name: str, device: Optional[str]) -> int:
    if value in (None, ''):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        raise DiscoveryError(f"Invalid {field_name} value {value!r}", device=device)


class LinuxDeviceEnumerator(DeviceEnumerator):
    """Enumerate volumes with lsblk; capacity of mounted volumes comes from psutil."""

    # Node types that can hold a filesystem we would store media on
    VOLUME_TYPES = {'part', 'crypt', 'lvm', 'md', 'raid0', 'raid1', 'raid5', 'raid10'}

    SKIP_TYPES = {'loop', 'rom', 'zram'}

    def __init__(self, executor: Optional[SystemCommandExecutor] = None):
        self._executor = executor or SystemCommandExecutor()

    def list_devices(self) -> List[DeviceDescriptor]:
        if not self._executor.is_available(CommandType.LSBLK):
            logger.info("lsblk not found; device enumeration unavailable",
                        extra={'event': 'discovery.unavailable'})
            return []

        success, stdout, stderr = self._executor.execute_lsblk()
        if not success:
            logger.warning(f"lsblk failed: {stderr.strip()}",
                           extra={'event': 'discovery.failed'})
            return []

        try:
            data = json.loads(stdout or '{}')
        except json.JSONDecodeError as e:
            logger.error(f"lsblk output is not valid JSON: {e}",
                         extra={'event': 'discovery.failed'})
            return []

        if not isinstance(data, dict):
            logger.error("lsblk output has no blockdevices object",
                         extra={'event': 'discovery.failed'})
            return []

        devices: List[DeviceDescriptor] = []
        for disk in data.get('blockdevices') or []:
            try:
                devices.extend(self._walk_disk(disk))
            except DiscoveryError as e:
                logger.warning(f"Skipping disk {e.device or '?'}: {e}",
                               extra={'event': 'discovery.device_skipped'})

        logger.info(f"Enumerated {len(devices)} device(s)",
                    extra={'event': 'discovery.complete'})
        return devices

    def _walk_disk(self, disk: Dict[str, Any]) -> List[DeviceDescriptor]:
        if not isinstance(disk, dict):
            raise DiscoveryError(f"Malformed lsblk entry {disk!r}")
        if disk.get('type') in self.SKIP_TYPES:
            return []

        serial = normalize_serial(disk.get('serial'))
        removable = (_as_bool(disk.get('rm')) or _as_bool(disk.get('hotplug'))
                     or str(disk.get('tran') or '').lower() == 'usb')
        children = disk.get('children') or []

        nodes = []
        if children:
            stack = list(children)
            while stack:
                node = stack.pop(0)
                if not isinstance(node, dict):
                    raise DiscoveryError(f"Malformed lsblk entry {node!r}",
                                         device=disk.get('path') or disk.get('name'))
                if node.get('type') in self.VOLUME_TYPES:
                    nodes.append(node)
                stack.extend(node.get('children') or [])
        elif disk.get('fstype'):
            # Whole-disk filesystem, no partition table
            nodes.append(disk)

        devices = []
        for node in nodes:
            try:
                descriptor = self._build_descriptor(node, disk, serial, removable)
            except (DiscoveryError, OSError) as e:
                logger.warning(f"Skipping {node.get('path') or node.get('name')}: {e}",
                               extra={'event': 'discovery.device_skipped'})
                continue
            if descriptor is not None:
                devices.append(descriptor)
        return devices

    def _build_descriptor(self, node: Dict[str, Any], disk: Dict[str, Any],
                          serial: str, removable: bool) -> Optional[DeviceDescriptor]:
        path = node.get('path') or f"/dev/{node.get('name', '')}"
        if not serial:
            logger.debug(f"No serial number reported for {path}; not matchable")
            return None

        mount_point = node.get('mountpoint') or None
        total_bytes = _as_int(node.get('size'), 'size', path)
        free_bytes = 0
        if mount_point:
            usage = psutil.disk_usage(mount_point)
            total_bytes = usage.total
            free_bytes = usage.free

        return DeviceDescriptor(
            serial_number=serial,
            label=node.get('label') or '',
            mount_point=mount_point,
            total_bytes=total_bytes,
            free_bytes=free_bytes,
            removable=removable,
            health=self._get_basic_health_status(mount_point),
            device_path=path,
            filesystem=node.get('fstype'),
            model=(disk.get('model') or '').strip() or None,
            bus_type=disk.get('tran'),
        )

    def _get_basic_health_status(self, mount_point: Optional[str]) -> HealthStatus:
        """
        Get basic health status by checking if the mount point is accessible.

        Args:
            mount_point: Mount point path

        Returns:
            HealthStatus enum value
        """
        if not mount_point:
            return HealthStatus.UNKNOWN
        if os.path.exists(mount_point) and os.access(mount_point, os.R_OK):
            return HealthStatus.HEALTHY
        return HealthStatus.DEGRADED


class WindowsDeviceEnumerator(DeviceEnumerator):
    """Enumerate volumes through a PowerShell CIM query."""

    HEALTH_MAP = {
        'healthy': HealthStatus.HEALTHY,
        'warning': HealthStatus.DEGRADED,
        'unhealthy': HealthStatus.FAILED,
    }

    REMOVABLE_DRIVE_TYPE = 2

    def __init__(self, executor: Optional[SystemCommandExecutor] = None):
        self._executor = executor or SystemCommandExecutor()

    def list_devices(self) -> List[DeviceDescriptor]:
        if not self._executor.is_available(CommandType.POWERSHELL):
            logger.info("PowerShell not found; device enumeration unavailable",
                        extra={'event': 'discovery.unavailable'})
            return []

        success, stdout, stderr = self._executor.execute_windows_volume_query()
        if not success:
            logger.warning(f"Volume query failed: {stderr.strip()}",
                           extra={'event': 'discovery.failed'})
            return []

        if not stdout.strip():
            return []
        try:
            rows = json.loads(stdout)
        except json.JSONDecodeError as e:
            logger.error(f"Volume query output is not valid JSON: {e}",
                         extra={'event': 'discovery.failed'})
            return []
        if isinstance(rows, dict):
            rows = [rows]

        devices = []
        for row in rows:
            try:
                descriptor = self._build_descriptor(row)
            except DiscoveryError as e:
                logger.warning(f"Skipping volume {e.device}: {e}",
                               extra={'event': 'discovery.device_skipped'})
                continue
            if descriptor is not None:
                devices.append(descriptor)
        return devices

    def _build_descriptor(self, row: Dict[str, Any]) -> Optional[DeviceDescriptor]:
        if not isinstance(row, dict):
            raise DiscoveryError(f"Unexpected row {row!r}")
        letter = row.get('DeviceID') or ''
        serial = normalize_serial(row.get('SerialNumber'))
        if not serial:
            logger.debug(f"No serial number reported for {letter}; not matchable")
            return None

        interface = (row.get('InterfaceType') or '')
        media_type = (row.get('MediaType') or '').lower()
        drive_type = _as_int(row.get('DriveType'), 'DriveType', letter)
        removable = (drive_type == self.REMOVABLE_DRIVE_TYPE
                     or interface.upper() == 'USB'
                     or 'removable' in media_type
                     or 'external' in media_type)
        health = self.HEALTH_MAP.get(str(row.get('Health') or '').lower(), HealthStatus.UNKNOWN)

        return DeviceDescriptor(
            serial_number=serial,
            label=row.get('VolumeName') or '',
            mount_point=f"{letter}\\" if letter else None,
            total_bytes=_as_int(row.get('Size'), 'Size', letter),
            free_bytes=_as_int(row.get('FreeSpace'), 'FreeSpace', letter),
            removable=removable,
            health=health,
            device_path=letter or None,
            filesystem=row.get('FileSystem'),
            model=row.get('Model'),
            bus_type=interface or None,
        )


class NullDeviceEnumerator(DeviceEnumerator):
    """Platforms without a supported query facility."""

    def list_devices(self) -> List[DeviceDescriptor]:
        return []


class FixtureDeviceEnumerator(DeviceEnumerator):
    """Test-mode enumerator reading descriptors from a JSON file instead of probing hardware."""

    def __init__(self, fixture_path: Path):
        self.fixture_path = Path(fixture_path)

    def list_devices(self) -> List[DeviceDescriptor]:
        if not self.fixture_path.exists():
            return []
        try:
            with open(self.fixture_path, 'r') as f:
                entries = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Cannot read device fixture {self.fixture_path}: {e}",
                         extra={'event': 'discovery.failed'})
            return []

        devices = []
        for entry in entries if isinstance(entries, list) else []:
            try:
                devices.append(DeviceDescriptor.from_dict(entry))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping fixture entry {entry!r}: {e}",
                               extra={'event': 'discovery.device_skipped'})
        return devices


def get_device_enumerator(settings=None,
                          executor: Optional[SystemCommandExecutor] = None,
                          platform: Optional[str] = None) -> DeviceEnumerator:
    """Pick the enumerator for the current platform, or the fixture one in test mode."""
    if settings is not None and settings.test_mode:
        return FixtureDeviceEnumerator(settings.device_fixture_path)

    if executor is None and settings is not None:
        executor = SystemCommandExecutor(timeout=settings.command_timeout)

    platform = platform or sys.platform
    if platform.startswith('linux'):
        return LinuxDeviceEnumerator(executor)
    if platform.startswith('win'):
        return WindowsDeviceEnumerator(executor)
    logger.info(f"Device enumeration not supported on {platform}",
                extra={'event': 'discovery.unavailable'})
    return NullDeviceEnumerator()


def selectable_devices(devices: Iterable[DeviceDescriptor],
                       exclude_serials: Iterable[str] = (),
                       removable_only: bool = True) -> List[DeviceDescriptor]:
    """
    Devices an operator may pick as Master or Backup.

    Args:
        devices: Fresh enumeration result
        exclude_serials: Serials already chosen for the group being built
        removable_only: Only offer removable devices

    Returns:
        Mounted devices with a serial, de-duplicated by serial
    """
    excluded = {normalize_serial(s) for s in exclude_serials}
    seen = set()
    result = []
    for device in devices:
        if not device.serial_number or not device.is_mounted:
            continue
        if removable_only and not device.removable:
            continue
        if device.serial_number in excluded or device.serial_number in seen:
            continue
        seen.add(device.serial_number)
        result.append(device)
    return result
