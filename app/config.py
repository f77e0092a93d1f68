from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


class Config:
    # Optional JSON file layered under the MEDIA_STORAGE_* environment variables
    STORAGE_SETTINGS_FILE = os.getenv('MEDIA_STORAGE_SETTINGS_FILE')

    # Load the configuration and scan devices when the app starts
    STORAGE_LOAD_ON_STARTUP = _env_bool('MEDIA_STORAGE_LOAD_ON_STARTUP', True)
