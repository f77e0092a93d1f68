"""Data models for storage groups and the devices they map to."""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple


class DriveRole(Enum):
    """Drive role inside a storage group."""
    MASTER = "master"
    BACKUP = "backup"


class HealthStatus(Enum):
    """Drive health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"
    UNKNOWN = "unknown"


class IssueSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"


_GB = 1024 ** 3


def normalize_serial(serial: Optional[str]) -> str:
    """Strip the padding OS tools put around serial numbers."""
    if serial is None:
        return ""
    return str(serial).strip()


def is_positive_int_key(key: str) -> bool:
    return isinstance(key, str) and key.isdigit() and int(key) > 0


def numeric_key(key: str) -> int:
    return int(key)


@dataclass
class DeviceDescriptor:
    """A block device or volume as seen by the latest enumeration."""
    serial_number: str
    label: str = ""
    mount_point: Optional[str] = None
    total_bytes: int = 0
    free_bytes: int = 0
    removable: bool = False
    health: HealthStatus = HealthStatus.UNKNOWN
    device_path: Optional[str] = None
    filesystem: Optional[str] = None
    model: Optional[str] = None
    bus_type: Optional[str] = None

    def __post_init__(self):
        self.serial_number = normalize_serial(self.serial_number)

    @property
    def is_mounted(self) -> bool:
        return bool(self.mount_point)

    @property
    def total_gb(self) -> float:
        return round(self.total_bytes / _GB, 2)

    @property
    def free_gb(self) -> float:
        return round(self.free_bytes / _GB, 2)

    def to_dict(self) -> dict:
        return {
            'serial_number': self.serial_number,
            'label': self.label,
            'mount_point': self.mount_point,
            'total_bytes': self.total_bytes,
            'free_bytes': self.free_bytes,
            'removable': self.removable,
            'health': self.health.value,
            'device_path': self.device_path,
            'filesystem': self.filesystem,
            'model': self.model,
            'bus_type': self.bus_type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceDescriptor":
        health = data.get('health') or HealthStatus.UNKNOWN.value
        try:
            health_status = HealthStatus(str(health).lower())
        except ValueError:
            health_status = HealthStatus.UNKNOWN
        return cls(
            serial_number=data.get('serial_number', ''),
            label=data.get('label') or '',
            mount_point=data.get('mount_point') or None,
            total_bytes=int(data.get('total_bytes') or 0),
            free_bytes=int(data.get('free_bytes') or 0),
            removable=bool(data.get('removable', False)),
            health=health_status,
            device_path=data.get('device_path'),
            filesystem=data.get('filesystem'),
            model=data.get('model'),
            bus_type=data.get('bus_type'),
        )


@dataclass
class DriveRuntimeStatus:
    """Status derived on every reconciliation pass; never written to the config file."""
    available: bool = False
    mount_point: Optional[str] = None
    free_bytes: int = 0
    total_bytes: int = 0
    health: HealthStatus = HealthStatus.UNKNOWN
    last_seen: Optional[datetime] = None

    def mark_available(self, device: DeviceDescriptor, seen_at: datetime) -> None:
        self.available = True
        self.mount_point = device.mount_point
        self.free_bytes = device.free_bytes
        self.total_bytes = device.total_bytes
        self.health = device.health
        self.last_seen = seen_at

    def mark_missing(self) -> None:
        self.available = False
        self.mount_point = None
        self.free_bytes = 0
        self.total_bytes = 0
        self.health = HealthStatus.UNKNOWN

    @property
    def usage_percent(self) -> float:
        if self.total_bytes == 0:
            return 0.0
        return ((self.total_bytes - self.free_bytes) / self.total_bytes) * 100


@dataclass
class StorageDrive:
    """A configured drive. Only ``label`` and ``serial_number`` are durable."""
    label: str
    serial_number: str
    runtime: DriveRuntimeStatus = field(default_factory=DriveRuntimeStatus, compare=False)

    def __post_init__(self):
        self.serial_number = normalize_serial(self.serial_number)
        self.label = self.label or ""

    @classmethod
    def from_device(cls, device: DeviceDescriptor, label: Optional[str] = None) -> "StorageDrive":
        drive = cls(label=label if label else device.label, serial_number=device.serial_number)
        drive.runtime.mark_available(device, datetime.now())
        return drive

    def to_document(self) -> Dict[str, str]:
        return {'Label': self.label, 'SerialNumber': self.serial_number}

    def to_dict(self) -> dict:
        return {
            'label': self.label,
            'serial_number': self.serial_number,
            'available': self.runtime.available,
            'mount_point': self.runtime.mount_point,
            'free_bytes': self.runtime.free_bytes,
            'total_bytes': self.runtime.total_bytes,
            'health': self.runtime.health.value,
        }


def role_name(role: DriveRole, backup_id: Optional[str] = None) -> str:
    """Human readable role, e.g. ``Master`` or ``Backup-2``."""
    if role == DriveRole.MASTER:
        return "Master"
    return f"Backup-{backup_id}"


@dataclass
class StorageGroup:
    """One Master drive plus zero or more Backup drives."""
    group_id: str
    display_name: str
    master: Optional[StorageDrive]
    backups: Dict[str, StorageDrive] = field(default_factory=dict)

    def sorted_backup_ids(self) -> List[str]:
        return sorted(self.backups, key=numeric_key)

    def drives(self) -> Iterator[Tuple[DriveRole, Optional[str], StorageDrive]]:
        """Yield ``(role, backup_id, drive)``: Master first, then Backups in ascending id order."""
        if self.master is not None:
            yield DriveRole.MASTER, None, self.master
        for backup_id in self.sorted_backup_ids():
            yield DriveRole.BACKUP, backup_id, self.backups[backup_id]

    def serials(self) -> List[str]:
        return [drive.serial_number for _, _, drive in self.drives()]

    @property
    def is_valid(self) -> bool:
        return self.master is not None and self.master.runtime.available

    def next_backup_id(self) -> str:
        if not self.backups:
            return "1"
        return str(max(numeric_key(k) for k in self.backups) + 1)

    def to_document(self) -> dict:
        doc = {'DisplayName': self.display_name}
        if self.master is not None:
            doc['Master'] = self.master.to_document()
        doc['Backup'] = {
            backup_id: self.backups[backup_id].to_document()
            for backup_id in self.sorted_backup_ids()
        }
        return doc

    def to_dict(self) -> dict:
        return {
            'group_id': self.group_id,
            'display_name': self.display_name,
            'valid': self.is_valid,
            'master': self.master.to_dict() if self.master is not None else None,
            'backups': {
                backup_id: self.backups[backup_id].to_dict()
                for backup_id in self.sorted_backup_ids()
            },
        }


@dataclass
class StorageConfiguration:
    """Group id -> StorageGroup, plus any other top-level sections of the document."""
    groups: Dict[str, StorageGroup] = field(default_factory=dict)
    extra_sections: Dict[str, object] = field(default_factory=dict)

    def sorted_ids(self) -> List[str]:
        return sorted(self.groups, key=numeric_key)

    def sorted_groups(self) -> List[StorageGroup]:
        return [self.groups[group_id] for group_id in self.sorted_ids()]

    def next_group_id(self) -> str:
        if not self.groups:
            return "1"
        return str(max(numeric_key(k) for k in self.groups) + 1)

    @property
    def is_empty(self) -> bool:
        return not self.groups

    def copy(self) -> "StorageConfiguration":
        return copy.deepcopy(self)

    def to_document(self) -> dict:
        return {group.group_id: group.to_document() for group in self.sorted_groups()}

    def __contains__(self, group_id: str) -> bool:
        return group_id in self.groups

    def __len__(self) -> int:
        return len(self.groups)


@dataclass
class ValidationIssue:
    """A configured drive that could not be matched to an attached device."""
    group_id: str
    group_name: str
    role: DriveRole
    serial_number: str
    label: str = ""
    backup_id: Optional[str] = None
    severity: IssueSeverity = IssueSeverity.WARNING

    @property
    def role_name(self) -> str:
        return role_name(self.role, self.backup_id)

    @property
    def message(self) -> str:
        return (f"Group {self.group_id} ({self.group_name}): {self.role_name} drive "
                f"'{self.label}' with serial {self.serial_number} is not available")

    def to_dict(self) -> dict:
        return {
            'group_id': self.group_id,
            'group_name': self.group_name,
            'role': self.role_name,
            'serial_number': self.serial_number,
            'label': self.label,
            'severity': self.severity.value,
            'message': self.message,
        }
