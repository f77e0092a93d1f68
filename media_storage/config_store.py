"""Loading and saving the storage configuration document.

The ConfigStore is the only component that writes the configuration file.
Only labels and serial numbers are durable; runtime status is never written.

Document layout::

    Storage:
      '1':
        DisplayName: Media
        Master:
          Label: MediaA
          SerialNumber: WD-1234
        Backup:
          '1':
            Label: MediaB
            SerialNumber: WD-5678
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigurationError, PersistenceError
from .models import (StorageConfiguration, StorageDrive, StorageGroup,
                     is_positive_int_key)

logger = logging.getLogger(__name__)

STORAGE_SECTION = 'Storage'

PathLike = Union[str, Path]


def _normalize_key(key: Any, context: str) -> str:
    if isinstance(key, bool):
        raise ConfigurationError(f"Invalid {context} id: {key!r}")
    if isinstance(key, int):
        key = str(key)
    if not isinstance(key, str) or not is_positive_int_key(key.strip()):
        raise ConfigurationError(f"Invalid {context} id: {key!r} (expected a positive integer)")
    return str(int(key.strip()))


def _parse_drive(data: Any, context: str) -> StorageDrive:
    if not isinstance(data, dict):
        raise ConfigurationError(f"{context} must be a mapping with Label and SerialNumber")
    serial = data.get('SerialNumber')
    if serial is None or not str(serial).strip():
        raise ConfigurationError(f"{context} has no SerialNumber")
    label = data.get('Label')
    return StorageDrive(label='' if label is None else str(label), serial_number=str(serial))


def _parse_group(group_id: str, data: Any) -> StorageGroup:
    if not isinstance(data, dict):
        raise ConfigurationError(f"Storage group {group_id} must be a mapping")

    display_name = data.get('DisplayName')
    master_data = data.get('Master')
    master = None
    if master_data is None:
        logger.warning(f"Storage group {group_id} has no Master entry",
                       extra={'event': 'config.master_missing', 'group_id': group_id})
    else:
        master = _parse_drive(master_data, f"Master of group {group_id}")

    backups: Dict[str, StorageDrive] = {}
    backup_data = data.get('Backup') or {}
    if not isinstance(backup_data, dict):
        raise ConfigurationError(f"Backup of group {group_id} must be a mapping")
    for raw_key, drive_data in backup_data.items():
        backup_id = _normalize_key(raw_key, f"backup (group {group_id})")
        if backup_id in backups:
            raise ConfigurationError(f"Duplicate backup id {backup_id} in group {group_id}")
        backups[backup_id] = _parse_drive(drive_data, f"Backup {backup_id} of group {group_id}")

    return StorageGroup(
        group_id=group_id,
        display_name='' if display_name is None else str(display_name),
        master=master,
        backups=backups,
    )


def parse_document(document: Any) -> StorageConfiguration:
    """
    Build a StorageConfiguration from a parsed YAML document.

    Group keys are kept as found; gaps are not collapsed here.

    Raises:
        ConfigurationError: If the structure is invalid
    """
    if document is None:
        return StorageConfiguration()
    if not isinstance(document, dict):
        raise ConfigurationError("Configuration document must be a mapping")

    extra_sections = {k: v for k, v in document.items() if k != STORAGE_SECTION}
    storage = document.get(STORAGE_SECTION) or {}
    if not isinstance(storage, dict):
        raise ConfigurationError(f"'{STORAGE_SECTION}' must be a mapping of group ids")

    groups: Dict[str, StorageGroup] = {}
    for raw_key, group_data in storage.items():
        group_id = _normalize_key(raw_key, 'group')
        if group_id in groups:
            raise ConfigurationError(f"Duplicate storage group id {group_id}")
        groups[group_id] = _parse_group(group_id, group_data)

    return StorageConfiguration(groups=groups, extra_sections=extra_sections)


def build_document(config: StorageConfiguration) -> Dict[str, Any]:
    """Serializable document: groups and backups in ascending numeric order."""
    document: Dict[str, Any] = {STORAGE_SECTION: config.to_document()}
    for key, value in config.extra_sections.items():
        document[key] = value
    return document


class ConfigStore:
    """Reads and writes the storage configuration file."""

    def load(self, path: PathLike) -> StorageConfiguration:
        """
        Load the configuration at ``path``.

        A missing file yields an empty configuration (first-run state).

        Raises:
            PersistenceError: If the file cannot be read or parsed
            ConfigurationError: If the document structure is invalid
        """
        path = Path(path)
        if not path.exists():
            logger.info(f"No storage configuration at {path}; starting empty",
                        extra={'event': 'config.missing', 'path': str(path)})
            return StorageConfiguration()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                document = yaml.safe_load(f)
        except OSError as e:
            raise PersistenceError(f"Cannot read {path}: {e}", path=str(path)) from e
        except yaml.YAMLError as e:
            raise PersistenceError(f"Cannot parse {path}: {e}", path=str(path)) from e

        config = parse_document(document)
        logger.info(f"Loaded {len(config)} storage group(s) from {path}",
                    extra={'event': 'config.loaded', 'path': str(path)})
        return config

    def save(self, path: PathLike, config: StorageConfiguration) -> None:
        """
        Write ``config`` to ``path`` with one atomic replace.

        Raises:
            PersistenceError: If the file cannot be written
        """
        path = Path(path)
        document = build_document(config)
        temp_path: Optional[str] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=str(path.parent), suffix='.yaml')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                yaml.safe_dump(document, f, default_flow_style=False,
                               sort_keys=False, allow_unicode=True)
            os.replace(temp_path, path)
        except (OSError, yaml.YAMLError) as e:
            if temp_path and os.path.exists(temp_path):
                os.unlink(temp_path)
            raise PersistenceError(f"Cannot write {path}: {e}", path=str(path)) from e

        logger.info(f"Saved {len(config)} storage group(s) to {path}",
                    extra={'event': 'config.saved', 'path': str(path)})
