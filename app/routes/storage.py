"""Storage group API endpoints."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from flask import Blueprint, current_app, jsonify, request

from media_storage.errors import (ConfigurationError, DuplicateSerialError,
                                  GroupNotFoundError, PersistenceError, StorageError)
from media_storage.group_manager import StorageGroupManager
from media_storage.models import StorageDrive
from media_storage.validator import index_devices, invalid_groups

logger = logging.getLogger(__name__)

storage_api = Blueprint('storage_api', __name__)


def _manager() -> StorageGroupManager:
    manager = current_app.extensions['storage_manager']
    if not manager.loaded:
        # Skipped or failed at startup; retried until the file parses
        try:
            manager.load()
        except ConfigurationError as e:
            if not manager.loaded:
                raise
            logger.error(f"Storage configuration has errors: {e}",
                         extra={'event': 'storage.load_failed'})
    return manager


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")
    return payload


def _drive_from_payload(data: Any, role: str, devices: Dict[str, Any]) -> StorageDrive:
    """
    Build a drive from ``{"serial_number": ..., "label": ...}``.

    When no label is given the label of the attached device is used.
    """
    if not isinstance(data, dict):
        raise ValueError(f"{role} must be an object with a serial_number")
    serial = str(data.get('serial_number') or '').strip()
    if not serial:
        raise ValueError(f"{role} has no serial_number")
    label = data.get('label')
    if not label and serial in devices:
        return StorageDrive.from_device(devices[serial])
    return StorageDrive(label=label or '', serial_number=serial)


def _drive_list(data: Any, role: str, devices: Dict[str, Any]) -> List[StorageDrive]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError(f"{role} must be a list")
    return [_drive_from_payload(item, f"{role} #{i}", devices) for i, item in enumerate(data, start=1)]


def _optional_drive_list(payload: Dict[str, Any], key: str,
                         devices: Dict[str, Any]) -> Optional[List[StorageDrive]]:
    if key not in payload or payload[key] is None:
        return None
    return _drive_list(payload[key], key, devices)


@storage_api.errorhandler(ValueError)
def _bad_request(error):
    return jsonify({"error": str(error)}), 400


@storage_api.errorhandler(GroupNotFoundError)
def _not_found(error):
    return jsonify({"error": str(error), "group_ids": error.group_ids}), 404


@storage_api.errorhandler(DuplicateSerialError)
def _conflict(error):
    return jsonify({
        "error": str(error),
        "serial": error.serial,
        "conflicting_group_id": error.conflicting_group_id,
        "within_group": error.within_group,
    }), 409


@storage_api.errorhandler(PersistenceError)
@storage_api.errorhandler(ConfigurationError)
def _server_error(error):
    logger.error(f"Storage operation failed: {error}",
                 extra={'event': 'api.storage_error', 'path': getattr(error, 'path', None)})
    return jsonify({"error": str(error)}), 500


@storage_api.errorhandler(StorageError)
def _storage_error(error):
    return jsonify({"error": str(error)}), 500


@storage_api.route('/api/storage/devices', methods=['GET'])
def list_devices():
    devices = _manager().list_devices()
    return jsonify({"devices": [d.to_dict() for d in devices]})


@storage_api.route('/api/storage/devices/selectable', methods=['GET'])
def list_selectable_devices():
    """Devices that can be picked for a new group; ``exclude`` may repeat."""
    exclude = request.args.getlist('exclude')
    devices = _manager().selectable_devices(exclude)
    return jsonify({"devices": [d.to_dict() for d in devices]})


@storage_api.route('/api/storage/groups', methods=['GET'])
def list_groups():
    manager = _manager()
    return jsonify({
        "groups": [g.to_dict() for g in manager.list_groups()],
        "issues": [i.to_dict() for i in manager.issues],
    })


@storage_api.route('/api/storage/groups/<group_id>', methods=['GET'])
def get_group(group_id):
    return jsonify(_manager().get_group(group_id).to_dict())


@storage_api.route('/api/storage/validate', methods=['GET'])
def validate_storage():
    manager = _manager()
    issues = manager.refresh()
    return jsonify({
        "issues": [i.to_dict() for i in issues],
        "invalid_groups": [g.group_id for g in invalid_groups(manager.config)],
    })


@storage_api.route('/api/storage/serials/<serial>', methods=['GET'])
def find_serial(serial):
    group_id = _manager().find_group_for_serial(serial)
    return jsonify({"serial": serial, "found": group_id is not None, "group_id": group_id})


@storage_api.route('/api/storage/registry', methods=['GET'])
def get_registry():
    return jsonify(_manager().registry.export())


@storage_api.route('/api/storage/groups', methods=['POST'])
def add_group():
    manager = _manager()
    payload = _json_body()
    devices = index_devices(manager.list_devices())

    group_id = manager.add_group(
        payload.get('display_name'),
        _drive_from_payload(payload.get('master'), 'master', devices),
        _drive_list(payload.get('backups'), 'backups', devices),
    )
    return jsonify({"group_id": group_id, "group": manager.get_group(group_id).to_dict()}), 201


@storage_api.route('/api/storage/groups/<group_id>', methods=['PUT'])
def edit_group(group_id):
    """
    Update a group. Accepted keys: ``display_name``, ``master``, ``backups``
    (replaces all), ``add_backups`` and ``remove_backup_ids``.
    """
    manager = _manager()
    payload = _json_body()
    devices = index_devices(manager.list_devices())

    master = payload.get('master')
    new_id = manager.edit_group(
        group_id,
        display_name=payload.get('display_name'),
        master=_drive_from_payload(master, 'master', devices) if master is not None else None,
        backups=_optional_drive_list(payload, 'backups', devices),
        add_backups=_drive_list(payload.get('add_backups'), 'add_backups', devices),
        remove_backup_ids=[str(b) for b in payload.get('remove_backup_ids') or []],
    )
    return jsonify({"group_id": new_id, "group": manager.get_group(new_id).to_dict()})


@storage_api.route('/api/storage/groups', methods=['DELETE'])
def remove_groups():
    manager = _manager()
    payload = _json_body()
    group_ids = payload.get('group_ids')
    if not isinstance(group_ids, list):
        raise ValueError("group_ids must be a list")

    removed = manager.remove_groups([str(g) for g in group_ids])
    return jsonify({
        "removed": removed,
        "groups": [g.to_dict() for g in manager.list_groups()],
    })
