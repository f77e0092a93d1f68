"""Diagnostic cache of the last device scan, nested Master -> Backups.

Nothing in the subsystem makes decisions from the registry; it exists so the
latest matched state can be inspected or exported.
"""

import dataclasses
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Set

from .errors import PersistenceError
from .models import DeviceDescriptor, StorageConfiguration
from .validator import index_devices

logger = logging.getLogger(__name__)

CYCLE_SENTINEL = "<cycle>"


def to_serializable(obj: Any, _active: Optional[Set[int]] = None) -> Any:
    """
    Convert ``obj`` into JSON-compatible data.

    Containers currently being expanded are tracked by identity; reaching one
    again yields ``CYCLE_SENTINEL`` instead of recursing forever.
    """
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Path):
        return str(obj)

    if _active is None:
        _active = set()
    marker = id(obj)
    if marker in _active:
        return CYCLE_SENTINEL
    _active.add(marker)
    try:
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return {f.name: to_serializable(getattr(obj, f.name), _active)
                    for f in dataclasses.fields(obj)}
        if isinstance(obj, dict):
            return {str(k): to_serializable(v, _active) for k, v in obj.items()}
        if isinstance(obj, (list, tuple, set, frozenset)):
            return [to_serializable(v, _active) for v in obj]
        if hasattr(obj, '__dict__'):
            return {k: to_serializable(v, _active)
                    for k, v in vars(obj).items() if not k.startswith('_')}
        return repr(obj)
    finally:
        _active.discard(marker)


@dataclasses.dataclass
class RegistryGroup:
    """A group whose Master is the entry's drive, with its Backups by serial."""
    group_id: str
    display_name: str
    backups: Dict[str, Optional[DeviceDescriptor]] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class RegistryEntry:
    """A Master drive and every group that uses it as Master."""
    serial_number: str
    device: Optional[DeviceDescriptor] = None
    groups: Dict[str, RegistryGroup] = dataclasses.field(default_factory=dict)


class StorageRegistry:
    """Last enumeration keyed by Master serial number."""

    def __init__(self):
        self.entries: Dict[str, RegistryEntry] = {}
        self.devices: Dict[str, DeviceDescriptor] = {}
        self.last_scanned: Optional[datetime] = None

    def rebuild(self, config: StorageConfiguration,
                devices: Iterable[DeviceDescriptor]) -> None:
        index = index_devices(devices)
        entries: Dict[str, RegistryEntry] = {}
        for group in config.sorted_groups():
            if group.master is None:
                continue
            serial = group.master.serial_number
            entry = entries.get(serial)
            if entry is None:
                entry = RegistryEntry(serial_number=serial, device=index.get(serial))
                entries[serial] = entry
            entry.groups[group.group_id] = RegistryGroup(
                group_id=group.group_id,
                display_name=group.display_name,
                backups={group.backups[b].serial_number: index.get(group.backups[b].serial_number)
                         for b in group.sorted_backup_ids()},
            )

        self.entries = entries
        self.devices = index
        self.last_scanned = datetime.now(timezone.utc)
        logger.debug(f"Registry rebuilt with {len(entries)} master entr(ies)")

    def get(self, serial: str) -> Optional[RegistryEntry]:
        return self.entries.get(serial)

    def export(self) -> Dict[str, Any]:
        return {
            'last_scanned': to_serializable(self.last_scanned),
            'entries': to_serializable(self.entries),
            'devices': to_serializable(self.devices),
        }

    def write(self, path) -> None:
        """Write the exported snapshot as JSON with an atomic replace."""
        path = Path(path)
        temp_path = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=str(path.parent), suffix='.json')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self.export(), f, indent=2)
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path and os.path.exists(temp_path):
                os.unlink(temp_path)
            raise PersistenceError(f"Cannot write registry snapshot {path}: {e}",
                                   path=str(path)) from e
