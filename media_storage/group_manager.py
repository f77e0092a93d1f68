"""Add, edit and remove storage groups.

Every mutation runs on a copy of the configuration. The copy is renumbered,
saved, read back and re-validated; only then does it replace the in-memory
configuration. Any failure leaves the in-memory configuration as it was.
"""

import copy
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .config_store import ConfigStore
from .device_enumerator import DeviceEnumerator, get_device_enumerator, selectable_devices
from .duplicates import ConfirmCallback, check_within_group, resolve_cross_group
from .errors import ConfigurationError, GroupNotFoundError, PersistenceError
from .models import (DeviceDescriptor, StorageConfiguration, StorageDrive, StorageGroup,
                     ValidationIssue)
from .registry import StorageRegistry
from .settings import SettingsManager, StorageSettings
from .validator import find_group_for_serial, validate

logger = logging.getLogger(__name__)

DriveInput = Union[StorageDrive, DeviceDescriptor]


def renumber(config: StorageConfiguration) -> Dict[str, str]:
    """
    Re-key groups to contiguous ``1..N`` keeping their numeric order.

    Returns:
        Mapping of old group id -> new group id
    """
    mapping: Dict[str, str] = {}
    groups: Dict[str, StorageGroup] = {}
    for position, group in enumerate(config.sorted_groups(), start=1):
        new_id = str(position)
        mapping[group.group_id] = new_id
        group.group_id = new_id
        groups[new_id] = group
    config.groups = groups
    return mapping


def _require_name(display_name: Optional[str]) -> str:
    if display_name is not None and not isinstance(display_name, str):
        raise ValueError("Display name must be a string")
    name = (display_name or '').strip()
    if not name:
        raise ValueError("Display name must not be empty")
    return name


def _require_drive(drive: DriveInput, role: str) -> StorageDrive:
    if isinstance(drive, DeviceDescriptor):
        drive = StorageDrive.from_device(drive)
    if not isinstance(drive, StorageDrive):
        raise ValueError(f"{role} must be a StorageDrive or DeviceDescriptor")
    if not drive.serial_number:
        raise ValueError(f"{role} drive has no serial number")
    return copy.deepcopy(drive)


def _require_complete(config: StorageConfiguration) -> None:
    masterless = [g.group_id for g in config.sorted_groups() if g.master is None]
    if masterless:
        raise ConfigurationError(
            f"Storage group(s) {', '.join(masterless)} have no Master drive; "
            f"give them a Master or remove them first",
            group_ids=masterless,
        )


class StorageGroupManager:
    """Owns the in-memory storage configuration and every change made to it."""

    def __init__(self,
                 store: ConfigStore,
                 enumerator: DeviceEnumerator,
                 config_path: Union[str, Path],
                 interactive: bool = False,
                 confirm: Optional[ConfirmCallback] = None,
                 registry: Optional[StorageRegistry] = None,
                 registry_path: Optional[Union[str, Path]] = None,
                 removable_only: bool = True):
        self.store = store
        self.enumerator = enumerator
        self.config_path = Path(config_path)
        self.interactive = interactive
        self.confirm = confirm
        self.registry = registry or StorageRegistry()
        self.registry_path = Path(registry_path) if registry_path else None
        self.removable_only = removable_only

        self.config = StorageConfiguration()
        self.issues: List[ValidationIssue] = []
        self.loaded = False
        self._devices: List[DeviceDescriptor] = []

    # -- queries -----------------------------------------------------------

    def load(self) -> List[ValidationIssue]:
        """
        Read the file, enumerate devices and reconcile. Never writes the config file.

        Mutations are refused until a load has parsed the file. A group
        without a Master still counts as loaded, so it can be repaired with
        edit_group or dropped with remove_groups; the ConfigurationError for
        it is raised once the configuration is in place.
        """
        self.loaded = False
        config = self.store.load(self.config_path)
        devices = self.enumerator.list_devices()

        self.config = config
        self.issues = []
        self._devices = devices
        self.loaded = True
        try:
            self.issues = validate(config, devices)
        finally:
            self._update_registry()

        if config.is_empty:
            logger.info("Storage configuration is empty; first-run setup required",
                        extra={'event': 'storage.unconfigured', 'path': str(self.config_path)})
        return self.issues

    def refresh(self) -> List[ValidationIssue]:
        """Re-enumerate devices and re-validate the current configuration."""
        self._devices = self.enumerator.list_devices()
        try:
            self.issues = validate(self.config, self._devices)
        finally:
            self._update_registry()
        return self.issues

    def list_devices(self) -> List[DeviceDescriptor]:
        self._devices = self.enumerator.list_devices()
        return list(self._devices)

    def selectable_devices(self, exclude_serials: Iterable[str] = ()) -> List[DeviceDescriptor]:
        return selectable_devices(self.list_devices(), exclude_serials, self.removable_only)

    def list_groups(self) -> List[StorageGroup]:
        return self.config.sorted_groups()

    def get_group(self, group_id: str) -> StorageGroup:
        group = self.config.groups.get(str(group_id))
        if group is None:
            raise GroupNotFoundError([str(group_id)])
        return group

    def find_group_for_serial(self, serial: str) -> Optional[str]:
        return find_group_for_serial(self.config, serial)

    # -- mutations ---------------------------------------------------------

    def add_group(self, display_name: str, master: DriveInput,
                  backups: Sequence[DriveInput] = ()) -> str:
        """
        Create a new group.

        Returns:
            Id of the new group after renumbering

        Raises:
            ValueError: Empty display name or a drive without serial
            DuplicateSerialError: Serial repeated in the group, or rejected/declined in another group
            ConfigurationError: Another group has no Master
            PersistenceError: Not loaded, or save or reload failed
        """
        self._require_loaded()
        name = _require_name(display_name)
        master_drive = _require_drive(master, 'Master')
        backup_drives = [_require_drive(b, f'Backup #{i}') for i, b in enumerate(backups, start=1)]

        check_within_group(master_drive, backup_drives)
        resolve_cross_group(
            self.config,
            [master_drive.serial_number] + [b.serial_number for b in backup_drives],
            exclude_group_id=None,
            interactive=self.interactive,
            confirm=self.confirm,
        )

        candidate = self.config.copy()
        new_id = candidate.next_group_id()
        candidate.groups[new_id] = StorageGroup(
            group_id=new_id,
            display_name=name,
            master=master_drive,
            backups={str(i): drive for i, drive in enumerate(backup_drives, start=1)},
        )
        _require_complete(candidate)
        mapping = renumber(candidate)
        final_id = mapping[new_id]

        self._commit(candidate)
        logger.info(f"Added storage group {final_id} ({name})",
                    extra={'event': 'storage.group_added', 'group_id': final_id,
                           'serial': master_drive.serial_number})
        return final_id

    def edit_group(self, group_id: str,
                   display_name: Optional[str] = None,
                   master: Optional[DriveInput] = None,
                   backups: Optional[Sequence[DriveInput]] = None,
                   add_backups: Sequence[DriveInput] = (),
                   remove_backup_ids: Iterable[str] = ()) -> str:
        """
        Change the display name, Master and/or Backups of an existing group.

        ``backups`` replaces the whole Backup list; otherwise
        ``remove_backup_ids`` and ``add_backups`` are applied to the current
        list. Backups are renumbered ``1..M`` afterwards.

        Returns:
            Id of the group after renumbering

        Raises:
            GroupNotFoundError: Unknown group id
            ValueError: Invalid name, drive or backup id
            DuplicateSerialError: See add_group
            ConfigurationError: Another group has no Master
            PersistenceError: Not loaded, or save or reload failed
        """
        self._require_loaded()
        group_id = str(group_id)
        current = self.get_group(group_id)

        name = current.display_name if display_name is None else _require_name(display_name)
        master_drive = current.master if master is None else _require_drive(master, 'Master')
        if master_drive is None:
            raise ValueError(f"Storage group {group_id} has no Master drive; one must be given")

        if backups is not None:
            backup_drives = [_require_drive(b, f'Backup #{i}') for i, b in enumerate(backups, start=1)]
        else:
            removed = {str(b) for b in remove_backup_ids}
            unknown = sorted(removed - set(current.backups))
            if unknown:
                raise ValueError(f"Backup id(s) not found in group {group_id}: {', '.join(unknown)}")
            backup_drives = [current.backups[b] for b in current.sorted_backup_ids() if b not in removed]
        backup_drives = backup_drives + [
            _require_drive(b, f'Backup #{i}') for i, b in enumerate(add_backups, start=len(backup_drives) + 1)
        ]

        check_within_group(master_drive, backup_drives)
        existing = set(current.serials())
        introduced = [d.serial_number for d in [master_drive] + backup_drives
                      if d.serial_number not in existing]
        resolve_cross_group(
            self.config,
            introduced,
            exclude_group_id=group_id,
            interactive=self.interactive,
            confirm=self.confirm,
        )

        candidate = self.config.copy()
        candidate.groups[group_id] = StorageGroup(
            group_id=group_id,
            display_name=name,
            master=copy.deepcopy(master_drive),
            backups={str(i): copy.deepcopy(d) for i, d in enumerate(backup_drives, start=1)},
        )
        _require_complete(candidate)
        mapping = renumber(candidate)
        final_id = mapping[group_id]

        self._commit(candidate)
        logger.info(f"Edited storage group {final_id} ({name})",
                    extra={'event': 'storage.group_edited', 'group_id': final_id})
        return final_id

    def remove_groups(self, group_ids: Iterable[str]) -> List[str]:
        """
        Remove groups and renumber the survivors to ``1..N``.

        Either every id exists and all are removed, or nothing changes.

        Raises:
            ValueError: No ids given
            GroupNotFoundError: Any id is unknown
            ConfigurationError: A group that is kept has no Master
            PersistenceError: Not loaded, or save or reload failed
        """
        self._require_loaded()
        requested: List[str] = []
        for group_id in group_ids:
            group_id = str(group_id)
            if group_id not in requested:
                requested.append(group_id)
        if not requested:
            raise ValueError("No storage group ids given")

        missing = [g for g in requested if g not in self.config]
        if missing:
            raise GroupNotFoundError(missing)

        candidate = self.config.copy()
        for group_id in requested:
            del candidate.groups[group_id]
        _require_complete(candidate)
        renumber(candidate)

        self._commit(candidate)
        logger.info(f"Removed storage group(s) {', '.join(requested)}; {len(candidate)} remaining",
                    extra={'event': 'storage.groups_removed',
                           'group_id': ','.join(requested)})
        return requested

    # -- internals ---------------------------------------------------------

    def _require_loaded(self) -> None:
        if not self.loaded:
            raise PersistenceError(f"Storage configuration {self.config_path} is not loaded; "
                                   f"refusing to change it",
                                   path=str(self.config_path))

    def _commit(self, candidate: StorageConfiguration) -> None:
        """Save, read back, verify and re-validate; then swap in the reloaded configuration."""
        self.store.save(self.config_path, candidate)
        try:
            reloaded = self.store.load(self.config_path)
        except ConfigurationError as e:
            raise PersistenceError(f"Reloading {self.config_path} after save failed: {e}",
                                   path=str(self.config_path)) from e

        if reloaded.to_document() != candidate.to_document():
            raise PersistenceError(f"Configuration read back from {self.config_path} "
                                   f"does not match what was written",
                                   path=str(self.config_path))

        devices = self.enumerator.list_devices()
        issues = validate(reloaded, devices)

        self.config = reloaded
        self.issues = issues
        self._devices = devices
        self._update_registry()

    def _update_registry(self) -> None:
        self.registry.rebuild(self.config, self._devices)
        if self.registry_path is None:
            return
        try:
            self.registry.write(self.registry_path)
        except PersistenceError as e:
            logger.error(str(e), extra={'event': 'registry.write_failed',
                                        'path': str(self.registry_path)})


def build_manager(settings: Optional[StorageSettings] = None,
                  interactive: bool = False,
                  confirm: Optional[ConfirmCallback] = None,
                  enumerator: Optional[DeviceEnumerator] = None) -> StorageGroupManager:
    """Wire store, enumerator and registry according to ``settings``."""
    if settings is None:
        settings = SettingsManager().load_settings()
    return StorageGroupManager(
        store=ConfigStore(),
        enumerator=enumerator or get_device_enumerator(settings),
        config_path=settings.effective_config_path,
        interactive=interactive,
        confirm=confirm,
        registry_path=settings.effective_registry_path,
        removable_only=settings.removable_only,
    )
