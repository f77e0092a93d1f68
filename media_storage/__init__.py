"""Master/Backup storage groups matched to physical drives by serial number."""

from .errors import (ConfigurationError, DiscoveryError, DuplicateSerialError,
                     GroupNotFoundError, PersistenceError, StorageError)
from .group_manager import StorageGroupManager, build_manager
from .models import (DeviceDescriptor, DriveRole, StorageConfiguration, StorageDrive,
                     StorageGroup, ValidationIssue)

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "DeviceDescriptor",
    "DiscoveryError",
    "DriveRole",
    "DuplicateSerialError",
    "GroupNotFoundError",
    "PersistenceError",
    "StorageConfiguration",
    "StorageDrive",
    "StorageError",
    "StorageGroup",
    "StorageGroupManager",
    "ValidationIssue",
    "build_manager",
]
