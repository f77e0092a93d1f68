"""Shared fixtures for storage group tests."""
import os
import sys

import pytest
import yaml

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from media_storage.config_store import ConfigStore
from media_storage.device_enumerator import DeviceEnumerator
from media_storage.group_manager import StorageGroupManager
from media_storage.models import DeviceDescriptor, HealthStatus


class StaticEnumerator(DeviceEnumerator):
    """Enumerator returning a fixed, mutable list of devices."""

    def __init__(self, devices=None):
        self.devices = list(devices or [])
        self.calls = 0

    def list_devices(self):
        self.calls += 1
        return list(self.devices)


def make_device(serial, label=None, mount_point=None, removable=True, **kwargs):
    return DeviceDescriptor(
        serial_number=serial,
        label=label if label is not None else f"Vol-{serial}",
        mount_point=mount_point if mount_point is not None else f"/media/{serial}",
        total_bytes=kwargs.pop('total_bytes', 500 * 1024 ** 3),
        free_bytes=kwargs.pop('free_bytes', 200 * 1024 ** 3),
        removable=removable,
        health=kwargs.pop('health', HealthStatus.HEALTHY),
        **kwargs,
    )


def group_doc(name, master_serial, *backup_serials):
    return {
        'DisplayName': name,
        'Master': {'Label': f"{name}-M", 'SerialNumber': master_serial},
        'Backup': {
            str(i): {'Label': f"{name}-B{i}", 'SerialNumber': serial}
            for i, serial in enumerate(backup_serials, start=1)
        },
    }


def write_config(path, groups, **extra_sections):
    document = {'Storage': groups}
    document.update(extra_sections)
    with open(path, 'w') as f:
        yaml.safe_dump(document, f, default_flow_style=False, sort_keys=False)
    return path


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / 'storage.yaml'


@pytest.fixture
def three_groups(config_path):
    """Groups 1..3 named G1..G3, each with one Backup."""
    return write_config(config_path, {
        '1': group_doc('G1', 'M-100', 'B-100'),
        '2': group_doc('G2', 'M-200', 'B-200'),
        '3': group_doc('G3', 'M-300', 'B-300'),
    })


@pytest.fixture
def all_devices():
    serials = ['M-100', 'B-100', 'M-200', 'B-200', 'M-300', 'B-300', 'NEW-1', 'NEW-2']
    return [make_device(serial) for serial in serials]


@pytest.fixture
def make_manager(config_path, tmp_path):
    """Build a loaded manager over ``config_path`` with a static device list."""

    def _make(devices=(), interactive=False, confirm=None, registry_path=None, load=True):
        manager = StorageGroupManager(
            store=ConfigStore(),
            enumerator=StaticEnumerator(devices),
            config_path=config_path,
            interactive=interactive,
            confirm=confirm,
            registry_path=registry_path,
        )
        if load:
            manager.load()
        return manager

    return _make
