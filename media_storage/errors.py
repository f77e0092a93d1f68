"""Exceptions raised by the storage subsystem."""

from typing import Iterable, Optional


class StorageError(Exception):
    """Base error for storage group operations."""


class DiscoveryError(StorageError):
    """A single device or partition could not be enumerated."""

    def __init__(self, message: str, device: Optional[str] = None):
        super().__init__(message)
        self.device = device


class ConfigurationError(StorageError):
    """The storage configuration is structurally malformed."""

    def __init__(self, message: str, group_ids: Iterable[str] = ()):
        super().__init__(message)
        self.group_ids = list(group_ids)


class DuplicateSerialError(StorageError):
    """A serial number is already used in the same or another group."""

    def __init__(self, message: str, serial: str,
                 conflicting_group_id: Optional[str] = None,
                 within_group: bool = False):
        super().__init__(message)
        self.serial = serial
        self.conflicting_group_id = conflicting_group_id
        self.within_group = within_group


class GroupNotFoundError(StorageError):
    """One or more requested group ids do not exist."""

    def __init__(self, group_ids: Iterable[str]):
        self.group_ids = list(group_ids)
        super().__init__(f"Storage group(s) not found: {', '.join(self.group_ids)}")


class PersistenceError(StorageError):
    """Writing or re-reading the configuration file failed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path
