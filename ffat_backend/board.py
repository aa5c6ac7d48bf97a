#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
Board metadata supplied by the Arduino host

Wraps the build properties of the selected board (as printed by
`arduino-cli compile --show-properties`) and answers the questions the
build pipeline has: which partition table to use, which chip to flash and
how to reach it.
"""

import os
import logging
from typing import Dict, Optional

from .errors import BoardConfigError, ImageIOError

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_SPEED = 115200
LOCAL_PARTITIONS_FILE = 'partitions.csv'


def parse_build_properties(text: str) -> Dict[str, str]:
    """Parse key=value property lines, ignoring blanks and comments"""
    properties = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        properties[key.strip()] = value.strip()
    return properties


def load_build_properties(path: str) -> Dict[str, str]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return parse_build_properties(f.read())
    except (OSError, UnicodeDecodeError) as e:
        raise ImageIOError(f"Cannot read build properties {path}: {e}") from e


class BoardContext:
    """Selected board, sketch and port as reported by the host environment"""

    def __init__(self, fqbn: str, build_properties: Dict[str, str], sketch_path: str,
                 partition_scheme: Optional[str] = None, upload_speed: Optional[int] = None,
                 port: Optional[str] = None, port_protocol: str = 'serial',
                 network_port: Optional[int] = None):
        self.fqbn = fqbn
        self.build_properties = build_properties
        self.sketch_path = sketch_path
        self.partition_scheme = partition_scheme
        self.upload_speed = upload_speed
        self.port = port
        self.port_protocol = port_protocol
        self.network_port = network_port

    @property
    def architecture(self) -> str:
        parts = self.fqbn.split(':')
        return parts[1] if len(parts) > 1 else ''

    @property
    def mcu(self) -> str:
        return self.build_properties.get('build.mcu', 'esp32')

    @property
    def flash_mode(self) -> str:
        return self.build_properties.get('build.flash_mode', 'keep')

    @property
    def flash_freq(self) -> str:
        return self.build_properties.get('build.flash_freq', 'keep')

    @property
    def data_folder(self) -> str:
        return os.path.join(self.sketch_path, 'data')

    def is_esp32(self) -> bool:
        return self.architecture == 'esp32'

    def require_esp32(self):
        if not self.is_esp32():
            raise BoardConfigError("FFAT is only supported on ESP32 boards")

    def is_network_upload(self) -> bool:
        return self.port_protocol == 'network'

    def selected_scheme(self) -> Optional[str]:
        """Partition CSV name for the selected or default partition scheme"""
        if self.partition_scheme:
            key = f"menu.PartitionScheme.{self.partition_scheme}.build.partitions"
            scheme = self.build_properties.get(key)
            if scheme:
                return scheme
            logger.warning(f"Partition scheme '{self.partition_scheme}' not defined for this board, "
                           f"falling back to the default")
        return self.build_properties.get('build.partitions')

    def resolve_partition_file(self) -> str:
        """
        Find the partition table CSV for this build.

        A partitions.csv in the sketch folder takes precedence over the
        board's selected (or default) partition scheme.

        Returns:
            Path to an existing partition table file.

        Raises:
            BoardConfigError: If no scheme is defined or the file is missing.
        """
        local_file = os.path.join(self.sketch_path, LOCAL_PARTITIONS_FILE)
        if os.path.exists(local_file):
            logger.info("Using partition: partitions.csv in sketch folder")
            return local_file

        scheme = self.selected_scheme()
        if not scheme:
            raise BoardConfigError("Partitions not defined for this ESP32 board")
        logger.info(f"Using partition: {scheme}")

        platform_path = self.build_properties.get('runtime.platform.path')
        if not platform_path:
            raise BoardConfigError("runtime.platform.path missing from board properties")

        partition_file = os.path.join(platform_path, 'tools', 'partitions', scheme + '.csv')
        if not os.path.exists(partition_file):
            raise BoardConfigError(f"Partition file not found: {partition_file}")
        return partition_file

    def resolve_upload_speed(self) -> int:
        if self.upload_speed:
            return self.upload_speed
        speed = self.build_properties.get('upload.speed')
        if speed:
            try:
                return int(speed)
            except ValueError:
                logger.warning(f"Ignoring invalid upload.speed '{speed}'")
        return DEFAULT_UPLOAD_SPEED

    def require_port(self) -> str:
        """Port (serial device or network host) for an upload"""
        if not self.port:
            raise BoardConfigError("No upload port specified")
        if self.is_network_upload() and not self.network_port:
            raise BoardConfigError("Network upload but network port not specified")
        return self.port
