#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
External tool lookup and execution

The FAT image itself is produced by mkfatfs and flashed with esptool (serial)
or espota (network). This module finds those tools, builds their command
lines and runs them, streaming their output to a logger.
"""

import os
import sys
import shutil
import logging
import subprocess
from typing import Dict, Iterable, List, Optional

from .errors import ExternalToolError

logger = logging.getLogger(__name__)

MKFATFS_PROPERTIES = ('runtime.tools.mkfatfs', 'runtime.tools.mkfatfs.path')
ESPTOOL_PROPERTIES = ('runtime.tools.esptool_py.path',)
PYTHON3_PROPERTIES = ('runtime.tools.python3.path',)


def default_arduino_data_dir(platform: str = sys.platform) -> str:
    """Arduino15 directory of the current user"""
    if platform == 'win32':
        return os.path.join(os.environ.get('LOCALAPPDATA', ''), 'Arduino15')
    if platform == 'darwin':
        return os.path.join(os.path.expanduser('~'), 'Library', 'Arduino15')
    return os.path.join(os.path.expanduser('~'), '.arduino15')


def exe_name(name: str, platform: str = sys.platform) -> str:
    return name + '.exe' if platform == 'win32' else name


def find_executable_dir(root: str, executable: str) -> Optional[str]:
    """Return the first directory under root (depth first) holding executable"""
    if os.path.exists(os.path.join(root, executable)):
        return root
    try:
        children = sorted(os.scandir(root), key=lambda e: e.name)
    except OSError as e:
        logger.debug(f"Skipping unreadable directory {root}: {e}")
        return None
    for child in children:
        if child.is_dir():
            found = find_executable_dir(child.path, executable)
            if found:
                return found
    return None


class ToolResolver:
    """Resolves external tool paths for the current board"""

    def __init__(self, build_properties: Dict[str, str], overrides: Optional[Dict[str, str]] = None,
                 arduino_data_dir: Optional[str] = None, platform: str = sys.platform):
        """
        Args:
            build_properties: Board build properties.
            overrides: Explicit tool paths keyed by tool name (from settings).
            arduino_data_dir: Arduino15 directory searched as a fallback.
            platform: sys.platform style identifier.
        """
        self.build_properties = build_properties
        self.overrides = overrides or {}
        self.arduino_data_dir = arduino_data_dir or default_arduino_data_dir(platform)
        self.platform = platform

    def property_dir(self, prefixes: Iterable[str]) -> Optional[str]:
        """First build property value whose key starts with one of the prefixes"""
        for prefix in prefixes:
            for key, value in self.build_properties.items():
                if key.startswith(prefix) and value:
                    return value
        return None

    def resolve(self, name: str, prefixes: Iterable[str] = (), search: bool = False) -> str:
        """
        Resolve an executable by name.

        Order: configured override, build properties, a recursive search of
        the Arduino15 esp32 tools directory (when search is set), then the
        bare name for a PATH lookup.

        Returns:
            Path (or bare name) of the executable.
        """
        executable = exe_name(name, self.platform)

        override = self.overrides.get(name)
        if override:
            logger.debug(f"{name}: using configured path {override}")
            return override

        tool_dir = self.property_dir(prefixes)
        if tool_dir:
            return os.path.join(tool_dir, executable)

        if search:
            search_root = os.path.join(self.arduino_data_dir, 'packages', 'esp32', 'tools', name)
            if os.path.isdir(search_root):
                tool_dir = find_executable_dir(search_root, executable)
                if tool_dir:
                    return os.path.join(tool_dir, executable)

        on_path = shutil.which(executable)
        if on_path:
            logger.info(f"{name}: using {on_path} from PATH")
            return on_path
        logger.warning(f"{name} tool not found in build properties, Arduino packages or PATH, "
                       f"trying bare name")
        return executable

    def mkfatfs(self) -> str:
        return self.resolve('mkfatfs', MKFATFS_PROPERTIES, search=True)

    def python3(self) -> str:
        override = self.overrides.get('python3')
        if override:
            return override
        tool_dir = self.property_dir(PYTHON3_PROPERTIES)
        executable = exe_name('python3', self.platform)
        return os.path.join(tool_dir, executable) if tool_dir else executable

    def esptool(self) -> List[str]:
        """Command prefix that runs esptool"""
        override = self.overrides.get('esptool')
        if override:
            base = override
        else:
            tool_dir = self.property_dir(ESPTOOL_PROPERTIES)
            base = os.path.join(tool_dir, 'esptool') if tool_dir else 'esptool'

        if base.endswith('.py'):
            return [self.python3(), base]
        if self.platform == 'win32':
            return [base if base.endswith('.exe') else base + '.exe']
        if self.platform != 'darwin' and os.path.exists(base + '.py'):
            # Linux packages ship either esptool.py or a compiled binary
            return [self.python3(), base + '.py']
        return [base]

    def espota(self) -> List[str]:
        """Command prefix that runs espota"""
        platform_path = self.build_properties.get('runtime.platform.path')
        espota = os.path.join('tools', 'espota')
        if platform_path:
            espota = os.path.join(platform_path, espota)
        if self.platform == 'win32':
            return [espota + '.exe']
        # Not shipped as a binary, needs python3
        return ['python3', espota + '.py']


def mkfatfs_command(mkfatfs: str, data_dir: str, size: int, image_file: str) -> List[str]:
    """mkfatfs command line; size is the usable wear-leveling size"""
    return [mkfatfs, '-c', data_dir, '-s', str(size), image_file]


def esptool_command(esptool: List[str], chip: str, port: str, baud: int, flash_mode: str,
                    flash_freq: str, offset: int, image_file: str) -> List[str]:
    return esptool + [
        '--chip', chip,
        '--port', port,
        '--baud', str(baud),
        '--before', 'default-reset',
        '--after', 'hard-reset',
        'write-flash', '-z',
        '--flash-mode', flash_mode,
        '--flash-freq', flash_freq,
        '--flash-size', 'detect',
        str(offset), image_file,
    ]


def espota_command(espota: List[str], host: str, port: int, image_file: str) -> List[str]:
    return espota + ['-r', '-i', host, '-p', str(port), '-f', image_file, '-s']


def run_tool(command: List[str], log: Optional[logging.Logger] = None) -> int:
    """
    Run an external tool and stream its output to a logger.

    Args:
        command: Executable and arguments.
        log: Logger receiving the tool output (module logger if None).

    Returns:
        The tool's exit code.

    Raises:
        ExternalToolError: If the tool cannot be started.
    """
    log = log or logger
    tool = os.path.basename(command[0])
    log.info(f"Command Line: {' '.join(command)}")
    try:
        proc = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                                text=True, errors='replace')
    except OSError as e:
        log.critical(f"Failed to start {tool}: {e}")
        raise ExternalToolError(tool, message=f"Cannot run {command[0]}: {e}") from e

    with proc:
        for line in proc.stdout:
            log.info(line.rstrip())
    return proc.returncode
