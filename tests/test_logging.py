"""Tests for JSON log formatting."""
import io
import json
import logging

import pytest

from app.logging import JsonFormatter, configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(**extra):
    record = logging.LogRecord('media_storage.validator', logging.WARNING, __file__, 1,
                               'drive missing', None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def test_structured_fields(self):
        payload = json.loads(JsonFormatter().format(_record(
            event='storage.drive_missing', group_id='1', serial='WD-1', role='Master')))

        assert payload['level'] == 'WARNING'
        assert payload['logger'] == 'media_storage.validator'
        assert payload['message'] == 'drive missing'
        assert payload['event'] == 'storage.drive_missing'
        assert payload['group_id'] == '1'
        assert payload['serial'] == 'WD-1'
        assert payload['role'] == 'Master'

    def test_absent_fields_are_omitted(self):
        payload = json.loads(JsonFormatter().format(_record()))
        assert 'event' not in payload
        assert 'request_id' not in payload

    def test_explicit_request_id(self):
        payload = json.loads(JsonFormatter().format(_record(request_id='abc')))
        assert payload['request_id'] == 'abc'


class TestConfigureLogging:
    def test_writes_json_lines(self, restore_root_logger):
        stream = io.StringIO()
        configure_logging('debug', stream)

        logging.getLogger('media_storage.test').debug(
            "saved", extra={'event': 'config.saved', 'path': '/tmp/storage.yaml'})

        payload = json.loads(stream.getvalue().strip())
        assert payload['event'] == 'config.saved'
        assert payload['path'] == '/tmp/storage.yaml'
        assert restore_root_logger.level == logging.DEBUG
