from __future__ import annotations

from typing import Mapping

from flask import Flask

from media_storage.errors import StorageError
from media_storage.group_manager import build_manager
from media_storage.settings import SettingsManager

from .config import Config
from .logging import init_logging
from .routes.storage import storage_api


def create_app(config_object: object | Mapping[str, object] | None = None) -> Flask:
    app = Flask(__name__)

    app.config.from_object(Config)
    if config_object:
        if isinstance(config_object, Mapping):
            app.config.from_mapping(config_object)
        else:
            app.config.from_object(config_object)

    settings = SettingsManager(app.config.get('STORAGE_SETTINGS_FILE')).load_settings()
    init_logging(app, settings.log_level)

    _initialise_extensions(app, settings)
    _register_blueprints(app)

    return app


def _initialise_extensions(app: Flask, settings) -> None:
    # A prebuilt manager can be injected through the STORAGE_MANAGER config key.
    manager = app.config.get('STORAGE_MANAGER')
    if manager is None:
        manager = build_manager(settings, interactive=False)
    app.extensions.setdefault('storage_manager', manager)

    if app.config.get('STORAGE_LOAD_ON_STARTUP', True):
        try:
            issues = manager.load()
        except StorageError as e:
            state = "has errors" if manager.loaded else "could not be loaded; changes are refused"
            app.logger.error(f"Storage configuration {state}: {e}",
                             extra={'event': 'storage.load_failed'})
        else:
            app.logger.info(f"Storage loaded with {len(issues)} issue(s)",
                            extra={'event': 'storage.loaded'})


def _register_blueprints(app: Flask) -> None:
    app.register_blueprint(storage_api)
