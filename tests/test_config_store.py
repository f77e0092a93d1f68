"""Tests for loading and saving the storage configuration file."""
import os
from unittest.mock import patch

import pytest
import yaml

from media_storage.config_store import ConfigStore, parse_document
from media_storage.errors import ConfigurationError, PersistenceError

from conftest import group_doc, write_config


class TestLoad:
    def test_missing_file_is_empty_configuration(self, config_path):
        config = ConfigStore().load(config_path)
        assert config.is_empty
        assert not config_path.exists()

    def test_null_storage_section(self, config_path):
        config_path.write_text("Storage:\n")
        assert ConfigStore().load(config_path).is_empty

    def test_empty_file(self, config_path):
        config_path.write_text("")
        assert ConfigStore().load(config_path).is_empty

    def test_gaps_are_not_collapsed_on_load(self, config_path):
        write_config(config_path, {'1': group_doc('A', 'S1'), '3': group_doc('C', 'S3')})
        config = ConfigStore().load(config_path)
        assert config.sorted_ids() == ['1', '3']

    def test_integer_keys_are_normalized(self, config_path):
        config_path.write_text(
            "Storage:\n"
            "  1:\n"
            "    DisplayName: Media\n"
            "    Master: {Label: A, SerialNumber: S1}\n"
            "    Backup:\n"
            "      1: {Label: B, SerialNumber: S2}\n"
        )
        config = ConfigStore().load(config_path)
        assert list(config.groups) == ['1']
        assert list(config.groups['1'].backups) == ['1']

    def test_serial_padding_is_stripped(self, config_path):
        config_path.write_text(
            "Storage:\n"
            "  '1':\n"
            "    DisplayName: Media\n"
            "    Master: {Label: A, SerialNumber: '  S1  '}\n"
        )
        config = ConfigStore().load(config_path)
        assert config.groups['1'].master.serial_number == 'S1'
        assert config.groups['1'].backups == {}

    def test_missing_master_is_loaded_as_none(self, config_path):
        config_path.write_text("Storage:\n  '1':\n    DisplayName: Broken\n")
        config = ConfigStore().load(config_path)
        assert config.groups['1'].master is None

    def test_unparseable_yaml(self, config_path):
        config_path.write_text("Storage: [unclosed\n")
        with pytest.raises(PersistenceError) as exc_info:
            ConfigStore().load(config_path)
        assert exc_info.value.path == str(config_path)

    @pytest.mark.parametrize("text", [
        "- just\n- a list\n",
        "Storage: [1, 2]\n",
        "Storage:\n  abc:\n    DisplayName: X\n",
        "Storage:\n  '0':\n    DisplayName: X\n",
        "Storage:\n  '-1':\n    DisplayName: X\n",
        "Storage:\n  '1': not-a-mapping\n",
        "Storage:\n  '1':\n    DisplayName: X\n    Master: {Label: A}\n",
        "Storage:\n  '1':\n    DisplayName: X\n    Master: {Label: A, SerialNumber: S}\n    Backup: [a]\n",
        "Storage:\n  1:\n    DisplayName: X\n    Master: {Label: A, SerialNumber: S}\n"
        "  '1':\n    DisplayName: Y\n    Master: {Label: B, SerialNumber: T}\n",
    ])
    def test_malformed_structure(self, config_path, text):
        config_path.write_text(text)
        with pytest.raises(ConfigurationError):
            ConfigStore().load(config_path)


class TestSave:
    def test_groups_and_backups_written_in_numeric_order(self, config_path, tmp_path):
        write_config(config_path, {
            '10': group_doc('J', 'S10'),
            '2': {
                'DisplayName': 'B',
                'Master': {'Label': 'M', 'SerialNumber': 'S2'},
                'Backup': {'11': {'Label': 'x', 'SerialNumber': 'X11'},
                           '3': {'Label': 'y', 'SerialNumber': 'X3'}},
            },
        })
        store = ConfigStore()
        store.save(config_path, store.load(config_path))

        with open(config_path) as f:
            document = yaml.safe_load(f)
        assert list(document['Storage']) == ['2', '10']
        assert list(document['Storage']['2']['Backup']) == ['3', '11']

    def test_other_sections_are_preserved(self, config_path):
        write_config(config_path, {'1': group_doc('A', 'S1')},
                     Tools={'Editor': 'vim'}, Projects=['one', 'two'])
        store = ConfigStore()
        config = store.load(config_path)
        del config.groups['1']
        store.save(config_path, config)

        with open(config_path) as f:
            document = yaml.safe_load(f)
        assert document['Storage'] == {}
        assert document['Tools'] == {'Editor': 'vim'}
        assert document['Projects'] == ['one', 'two']

    def test_runtime_status_is_never_written(self, config_path):
        write_config(config_path, {'1': group_doc('A', 'S1')})
        store = ConfigStore()
        config = store.load(config_path)
        config.groups['1'].master.runtime.available = True
        config.groups['1'].master.runtime.mount_point = '/mnt/a'
        store.save(config_path, config)

        text = config_path.read_text()
        assert 'available' not in text
        assert '/mnt/a' not in text

    def test_load_save_load_is_idempotent(self, config_path):
        write_config(config_path, {
            '1': group_doc('Movies', 'M-1', 'B-1', 'B-2'),
            '4': group_doc('Music', 'M-4'),
        }, Tools={'Editor': 'vim'})
        store = ConfigStore()

        first = store.load(config_path)
        store.save(config_path, first)
        first_text = config_path.read_text()
        second = store.load(config_path)
        store.save(config_path, second)

        assert config_path.read_text() == first_text
        assert second.to_document() == first.to_document()
        assert second.extra_sections == first.extra_sections

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / 'nested' / 'dir' / 'storage.yaml'
        ConfigStore().save(path, parse_document({'Storage': {'1': group_doc('A', 'S1')}}))
        assert path.exists()

    def test_failed_replace_leaves_original_and_no_temp_files(self, config_path):
        write_config(config_path, {'1': group_doc('A', 'S1')})
        original = config_path.read_text()
        store = ConfigStore()
        config = store.load(config_path)
        del config.groups['1']

        with patch('media_storage.config_store.os.replace', side_effect=OSError("disk full")):
            with pytest.raises(PersistenceError):
                store.save(config_path, config)

        assert config_path.read_text() == original
        assert os.listdir(config_path.parent) == [config_path.name]
