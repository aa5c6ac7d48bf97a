#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
Persistent settings for the FFAT uploader

Stored with QSettings so tool paths and upload defaults survive between runs.
"""

import logging
from typing import Optional

from PySide6.QtCore import QSettings

logger = logging.getLogger(__name__)

ORGANIZATION = 'FFATUploader'
APPLICATION = 'Settings'

# key -> (default, type)
DEFAULTS = {
    'mkfatfs_path': ('', str),
    'esptool_path': ('', str),
    'python3_path': ('', str),
    'arduino_data_dir': ('', str),
    'default_port': ('', str),
    'sector_size': (4096, int),
    'upload_speed': (0, int),
}


class UploaderSettings:
    """Typed access to the uploader's QSettings store"""

    def __init__(self, ini_path: Optional[str] = None):
        """
        Args:
            ini_path: Use this INI file instead of the per-user settings store.
        """
        if ini_path is not None:
            self.settings = QSettings(ini_path, QSettings.Format.IniFormat)
        else:
            self.settings = QSettings(ORGANIZATION, APPLICATION)

    def get(self, key: str):
        if key not in DEFAULTS:
            raise KeyError(f"Unknown setting: {key}")
        default, value_type = DEFAULTS[key]
        return self.settings.value(key, default, type=value_type)

    def set(self, key: str, value):
        """Store a value, converting it to the setting's type first"""
        if key not in DEFAULTS:
            raise KeyError(f"Unknown setting: {key}")
        _, value_type = DEFAULTS[key]
        try:
            converted = value_type(value)
        except ValueError as e:
            raise ValueError(f"Invalid value for {key}: {value!r}") from e
        if key == 'sector_size' and converted <= 0:
            raise ValueError(f"Invalid value for {key}: {value!r}")
        self.settings.setValue(key, converted)
        self.settings.sync()
        logger.debug(f"Setting {key} = {converted!r}")

    def reset(self, key: str):
        if key not in DEFAULTS:
            raise KeyError(f"Unknown setting: {key}")
        self.settings.remove(key)
        self.settings.sync()

    def items(self):
        """Return (key, value) pairs for every known setting"""
        return [(key, self.get(key)) for key in DEFAULTS]

    @property
    def sector_size(self) -> int:
        return self.get('sector_size')

    @property
    def upload_speed(self) -> Optional[int]:
        speed = self.get('upload_speed')
        return speed if speed > 0 else None

    def tool_overrides(self) -> dict:
        """Tool paths configured by the user, keyed by tool name"""
        overrides = {}
        for tool in ('mkfatfs', 'esptool', 'python3'):
            path = self.get(f'{tool}_path')
            if path:
                overrides[tool] = path
        return overrides
