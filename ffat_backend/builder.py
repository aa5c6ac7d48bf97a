#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
FFAT build and upload pipeline

Partition table -> FAT partition -> wear-leveling layout -> mkfatfs raw image
-> wear-leveling wrapped image -> optional flash via esptool/espota.

Progress is reported through an injected logger; every failure is raised as
an FFATError subclass and ends the run.
"""

import os
import logging
import secrets
import tempfile
from dataclasses import dataclass
from typing import Callable, List, Optional

from .board import BoardContext
from .errors import BoardConfigError, ExternalToolError, ImageIOError
from .partitions import PartitionLayout, find_fat_partition, read_partition_table
from .tools import ToolResolver, mkfatfs_command, esptool_command, espota_command, run_tool
from .wear_leveling import (WLLayout, calculate_wl_layout, assemble_wl_image,
                            read_image_file, write_image_file)
from .wl_utils import WL_DEFAULT_SECTOR_SIZE

BUILD_OUTPUT_NAME = 'mkfatfs.bin'

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Result of a completed build or upload run (failures raise instead)"""
    message: str = ""
    image_path: Optional[str] = None
    partition: Optional[PartitionLayout] = None
    layout: Optional[WLLayout] = None
    uploaded: bool = False


def folder_size(path: str) -> int:
    """
    Total size in bytes of all files below path.

    Raises:
        ImageIOError: If an entry cannot be read (e.g. a dangling symlink).
    """
    total = 0
    try:
        for root, _, files in os.walk(path):
            for name in files:
                total += os.path.getsize(os.path.join(root, name))
    except OSError as e:
        logger.critical(f"Failed to read data folder {path}: {e}")
        raise ImageIOError(f"Cannot read data folder {path}: {e}") from e
    return total


def upload_image_path(tmp_dir: Optional[str] = None) -> str:
    """Random temporary file name for an image that is only needed for upload"""
    return os.path.join(tmp_dir or tempfile.gettempdir(), f"ffat-{secrets.token_hex(8)}.ffat.bin")


class FFATBuilder:
    """Builds (and optionally uploads) the FFAT image for a sketch's data folder"""

    def __init__(self, board: BoardContext, resolver: Optional[ToolResolver] = None,
                 sector_size: int = WL_DEFAULT_SECTOR_SIZE,
                 logger: Optional[logging.Logger] = None,
                 runner: Callable[[List[str], logging.Logger], int] = run_tool):
        """
        Args:
            board: Board, sketch and port information from the host.
            resolver: Tool resolver (built from the board properties if None).
            sector_size: Flash sector size used for the wear-leveling layout.
            logger: Logger receiving progress and tool output.
            runner: Callable running a command and returning its exit code.
        """
        self.board = board
        self.resolver = resolver or ToolResolver(board.build_properties)
        self.sector_size = sector_size
        self.logger = logger or logging.getLogger(__name__)
        self.runner = runner

    def locate_partition(self) -> PartitionLayout:
        partition_file = self.board.resolve_partition_file()
        self.logger.info(f"  Partitions: {partition_file}")
        partition = find_fat_partition(read_partition_table(partition_file))
        self.logger.info(f"       Start: 0x{partition.start:x}")
        self.logger.info(f"         End: 0x{partition.end:x}")
        self.logger.info(f"        Size: {partition.size // 1024} KB")
        return partition

    def build_image(self, data_dir: str, partition: PartitionLayout, layout: WLLayout, image_path: str):
        """
        Run mkfatfs for the usable size and write the wrapped image to image_path.

        The raw image lives in a temporary directory; image_path is only
        created once the wrapped image is complete.
        """
        mkfatfs = self.resolver.mkfatfs()
        self.logger.info(f" mkfatfs Tool: {mkfatfs}")

        with tempfile.TemporaryDirectory(prefix='ffat-') as work_dir:
            raw_path = os.path.join(work_dir, 'fat.raw.bin')
            self.logger.info("Building FFAT filesystem")
            exit_code = self.runner(mkfatfs_command(mkfatfs, data_dir, layout.flash_size, raw_path),
                                    self.logger)
            if exit_code:
                self.logger.error(f"mkfatfs failed, error code: {exit_code}")
                raise ExternalToolError('mkfatfs', exit_code)

            raw_image = read_image_file(raw_path)
            image = assemble_wl_image(raw_image, partition.size, self.sector_size)

        write_image_file(image_path, image)
        self.logger.info(f"Wrote {len(image)} bytes to {image_path}")

    def upload_command(self, partition: PartitionLayout, image_path: str) -> List[str]:
        port = self.board.require_port()
        if self.board.is_network_upload():
            self.logger.info(f"Network Info: {port}:{self.board.network_port}")
            return espota_command(self.resolver.espota(), port, self.board.network_port, image_path)

        self.logger.info(f" Serial Port: {port}")
        return esptool_command(
            self.resolver.esptool(),
            chip=self.board.mcu,
            port=port,
            baud=self.board.resolve_upload_speed(),
            flash_mode=self.board.flash_mode,
            flash_freq=self.board.flash_freq,
            offset=partition.start,
            image_file=image_path,
        )

    def build(self, upload: bool = False, output_path: Optional[str] = None) -> BuildResult:
        """
        Run the pipeline.

        Args:
            upload: Flash the image after building it.
            output_path: Where to keep the built image. Defaults to
                mkfatfs.bin in the sketch folder for builds and a random
                temporary file (removed afterwards) for uploads.

        Returns:
            BuildResult describing the run.

        Raises:
            FFATError: On the first failure of any stage.
        """
        self.logger.info(f"FFAT Filesystem {'Uploader' if upload else 'Builder'}")
        self.logger.info(f" Sketch Path: {self.board.sketch_path}")

        data_dir = self.board.data_folder
        self.logger.info(f"   Data Path: {data_dir}")
        if not os.path.isdir(data_dir):
            raise BoardConfigError(f"No data folder found at {data_dir}")

        self.board.require_esp32()
        self.logger.info(f"      Device: ESP32 series, model {self.board.mcu}")

        partition = self.locate_partition()
        layout = calculate_wl_layout(partition.size, self.sector_size)
        layout.ensure_capacity(folder_size(data_dir))
        self.logger.info(f"   FAT Size: {layout.flash_size} bytes "
                         f"(wear leveling uses {layout.overhead} bytes)")

        keep_image = not upload or output_path is not None
        if upload:
            # Port problems should surface before the image is built
            self.board.require_port()
        if output_path is None:
            output_path = (upload_image_path() if upload
                           else os.path.join(self.board.sketch_path, BUILD_OUTPUT_NAME))
        self.logger.info(f"Output File: {output_path}")

        self.build_image(data_dir, partition, layout, output_path)
        result = BuildResult(image_path=output_path, partition=partition, layout=layout)

        if not upload:
            result.message = "FFAT build completed!"
            self.logger.info("Completed build.")
            return result

        try:
            command = self.upload_command(partition, output_path)
            self.logger.info("Uploading FFAT filesystem")
            exit_code = self.runner(command, self.logger)
            if exit_code:
                self.logger.error(f"Upload failed, error code: {exit_code}")
                flasher = 'espota' if self.board.is_network_upload() else 'esptool'
                raise ExternalToolError(flasher, exit_code,
                                        f"Upload failed, error code: {exit_code}")
        finally:
            if not keep_image and os.path.exists(output_path):
                os.remove(output_path)

        if not keep_image:
            result.image_path = None
        result.uploaded = True
        result.message = "FFAT upload completed!"
        self.logger.info("Completed upload.")
        return result
