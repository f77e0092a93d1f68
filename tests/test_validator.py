"""Tests for matching configured groups to attached devices."""
import pytest

from media_storage.config_store import parse_document
from media_storage.errors import ConfigurationError
from media_storage.models import (DeviceDescriptor, DriveRole, HealthStatus, IssueSeverity,
                                  StorageConfiguration, StorageGroup)
from media_storage.validator import find_group_for_serial, index_devices, invalid_groups, validate

from conftest import group_doc, make_device


@pytest.fixture
def config():
    return parse_document({'Storage': {
        '1': group_doc('Movies', 'M-100', 'B-100', 'B-101'),
        '2': group_doc('Music', 'M-200'),
    }})


class TestValidate:
    def test_all_drives_present(self, config):
        devices = [make_device(s) for s in ('M-100', 'B-100', 'B-101', 'M-200')]

        issues = validate(config, devices)

        assert issues == []
        master = config.groups['1'].master
        assert master.runtime.available
        assert master.runtime.mount_point == '/media/M-100'
        assert master.runtime.health == HealthStatus.HEALTHY
        assert invalid_groups(config) == []

    def test_missing_master_reports_exactly_one_issue(self, config):
        devices = [make_device(s) for s in ('B-100', 'B-101', 'M-200')]

        issues = validate(config, devices)

        assert len(issues) == 1
        issue = issues[0]
        assert issue.group_id == '1'
        assert issue.role == DriveRole.MASTER
        assert issue.serial_number == 'M-100'
        assert issue.severity == IssueSeverity.ERROR
        assert '1' in config
        assert not config.groups['1'].is_valid
        assert [g.group_id for g in invalid_groups(config)] == ['1']

    def test_missing_backup_is_a_warning(self, config):
        devices = [make_device(s) for s in ('M-100', 'B-100', 'M-200')]

        issues = validate(config, devices)

        assert len(issues) == 1
        assert issues[0].role_name == 'Backup-2'
        assert issues[0].severity == IssueSeverity.WARNING
        assert config.groups['1'].is_valid

    def test_no_devices_reports_every_drive_and_keeps_groups(self, config):
        issues = validate(config, [])

        assert [(i.group_id, i.role_name) for i in issues] == [
            ('1', 'Master'), ('1', 'Backup-1'), ('1', 'Backup-2'), ('2', 'Master'),
        ]
        assert config.sorted_ids() == ['1', '2']

    def test_previously_available_drive_is_cleared(self, config):
        validate(config, [make_device('M-200')])
        assert config.groups['2'].master.runtime.available

        validate(config, [])

        runtime = config.groups['2'].master.runtime
        assert not runtime.available
        assert runtime.mount_point is None

    def test_padded_device_serial_matches(self, config):
        devices = [DeviceDescriptor(serial_number='  M-200 ', mount_point='/mnt/m')]
        validate(config, devices)
        assert config.groups['2'].master.runtime.available

    def test_group_without_master_is_malformed(self):
        config = StorageConfiguration(groups={'1': StorageGroup('1', 'Broken', master=None)})
        with pytest.raises(ConfigurationError):
            validate(config, [])

    def test_other_groups_are_matched_before_masterless_error(self, config):
        config.groups['1'].master = None
        with pytest.raises(ConfigurationError) as exc_info:
            validate(config, [make_device('M-200')])
        assert exc_info.value.group_ids == ['1']
        assert config.groups['2'].master.runtime.available

    def test_empty_configuration(self):
        assert validate(StorageConfiguration(), [make_device('X')]) == []


class TestIndexDevices:
    def test_mounted_partition_wins(self):
        unmounted = DeviceDescriptor(serial_number='S1', device_path='/dev/sdb1')
        mounted = DeviceDescriptor(serial_number='S1', device_path='/dev/sdb2', mount_point='/mnt/b')
        assert index_devices([unmounted, mounted])['S1'] is mounted

    def test_first_mounted_is_kept(self):
        first = DeviceDescriptor(serial_number='S1', mount_point='/mnt/a')
        second = DeviceDescriptor(serial_number='S1', mount_point='/mnt/b')
        assert index_devices([first, second])['S1'] is first

    def test_devices_without_serial_are_ignored(self):
        assert index_devices([DeviceDescriptor(serial_number='')]) == {}


class TestFindGroupForSerial:
    def test_finds_master_and_backup(self, config):
        assert find_group_for_serial(config, 'M-200') == '2'
        assert find_group_for_serial(config, 'B-101') == '1'

    def test_first_group_in_numeric_order(self):
        config = parse_document({'Storage': {
            '10': group_doc('Later', 'SHARED'),
            '2': group_doc('Earlier', 'X', 'SHARED'),
        }})
        assert find_group_for_serial(config, 'SHARED') == '2'

    def test_not_found(self, config):
        assert find_group_for_serial(config, 'NOPE') is None
        assert find_group_for_serial(config, '') is None
        assert find_group_for_serial(config, 'm-200') is None
