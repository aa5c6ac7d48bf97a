#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
ESP-IDF Wear-Leveling Layer

Computes the wear-leveling layout at the tail of a FAT partition and wraps a
raw FAT image with the metadata the WL runtime expects at mount time:

    [dummy sector] [FAT data] ... [state 1] [state 2] [config]

Sector 0 of the partition is the dummy sector used by the position-0 remap
and stays erased. State regions hold a 64-byte header followed by the
per-sector position table, which is left erased (0xFF) exactly as the runtime
leaves it after its own initialization.
"""

import os
import logging
import tempfile
from dataclasses import dataclass

from .errors import ImageSizeMismatchError, InsufficientSpaceError, ImageIOError
from .wl_utils import (
    pack_wl_config, pack_wl_state, config_device_id, round_up,
    WL_CFG_SIZE, WL_STATE_HEADER_SIZE, WL_STATE_RECORD_SIZE,
    WL_DEFAULT_SECTOR_SIZE, ERASED_BYTE
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WLLayout:
    """Wear-leveling geometry of one partition"""
    partition_size: int
    sector_size: int
    cfg_size: int
    state_size: int
    flash_size: int
    max_pos: int
    addr_cfg: int
    addr_state1: int
    addr_state2: int

    @property
    def data_offset(self) -> int:
        """Offset of the FAT data inside the partition (after the dummy sector)"""
        return self.sector_size

    @property
    def overhead(self) -> int:
        """Bytes of the partition not available to the FAT image"""
        return self.partition_size - self.flash_size

    def ensure_capacity(self, required_bytes: int = 0):
        """
        Check that the usable area can hold the requested amount of data.

        Args:
            required_bytes: Minimum number of bytes the FAT image must provide.

        Raises:
            InsufficientSpaceError: If the partition is too small for the WL
                metadata, or the usable size is below required_bytes.
        """
        if self.flash_size <= 0:
            logger.critical(f"Partition of {self.partition_size} bytes is too small for wear leveling")
            raise InsufficientSpaceError(
                f"Partition of {self.partition_size} bytes is too small for the wear-leveling metadata "
                f"({self.overhead} bytes needed)")
        if required_bytes > self.flash_size:
            logger.critical(f"Data needs {required_bytes} bytes, only {self.flash_size} available")
            raise InsufficientSpaceError(
                f"Data folder needs {required_bytes} bytes but the FAT partition only provides "
                f"{self.flash_size} usable bytes")


def calculate_wl_layout(partition_size: int, sector_size: int = WL_DEFAULT_SECTOR_SIZE) -> WLLayout:
    """
    Derive the wear-leveling layout of a partition.

    Config record and both state regions are placed at the tail of the
    partition, each rounded up to whole sectors. The usable FAT size is the
    space below the first state region minus one sector for the dummy sector.
    A partition too small for the metadata yields flash_size <= 0; callers
    check that with WLLayout.ensure_capacity().

    Args:
        partition_size: Total size of the FAT partition in bytes.
        sector_size: Flash sector size.

    Returns:
        The computed WLLayout.
    """
    if sector_size <= 0:
        raise ValueError(f"Invalid sector size: {sector_size}")
    if partition_size <= 0:
        raise ValueError(f"Invalid partition size: {partition_size}")

    cfg_size = round_up(WL_CFG_SIZE, sector_size)

    num_sectors = partition_size // sector_size
    state_size = round_up(WL_STATE_HEADER_SIZE + num_sectors * WL_STATE_RECORD_SIZE, sector_size)

    addr_cfg = partition_size - cfg_size
    addr_state2 = addr_cfg - state_size
    addr_state1 = addr_state2 - state_size

    flash_size = ((addr_state1 // sector_size) - 1) * sector_size
    max_pos = (flash_size // sector_size) + 1

    layout = WLLayout(
        partition_size=partition_size,
        sector_size=sector_size,
        cfg_size=cfg_size,
        state_size=state_size,
        flash_size=flash_size,
        max_pos=max_pos,
        addr_cfg=addr_cfg,
        addr_state1=addr_state1,
        addr_state2=addr_state2,
    )
    logger.debug(f"WL layout: {layout}")
    return layout


def assemble_wl_image(raw_image: bytes, partition_size: int,
                      sector_size: int = WL_DEFAULT_SECTOR_SIZE) -> bytes:
    """
    Wrap a raw FAT image with the wear-leveling metadata.

    Args:
        raw_image: FAT image, exactly WLLayout.flash_size bytes long.
        partition_size: Total size of the FAT partition.
        sector_size: Flash sector size.

    Returns:
        The partition image, partition_size bytes long.

    Raises:
        InsufficientSpaceError: If the partition cannot hold the metadata.
        ImageSizeMismatchError: If raw_image has the wrong length.
    """
    layout = calculate_wl_layout(partition_size, sector_size)
    layout.ensure_capacity()

    if len(raw_image) != layout.flash_size:
        logger.critical(f"Raw image size {len(raw_image)} != expected {layout.flash_size}")
        raise ImageSizeMismatchError(layout.flash_size, len(raw_image))

    image = bytearray([ERASED_BYTE]) * partition_size
    image[layout.data_offset:layout.data_offset + layout.flash_size] = raw_image

    config = pack_wl_config(partition_size, sector_size)
    state = pack_wl_state(layout.max_pos, config_device_id(config), sector_size)

    image[layout.addr_cfg:layout.addr_cfg + len(config)] = config
    image[layout.addr_state1:layout.addr_state1 + len(state)] = state
    image[layout.addr_state2:layout.addr_state2 + len(state)] = state

    return bytes(image)


def write_image_file(path: str, data: bytes):
    """
    Write an image so that path either holds the complete data or is untouched.

    The data goes to a temporary file in the destination directory first and
    is moved over path only after it has been written and synced.

    Raises:
        ImageIOError: If the image cannot be written.
    """
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = None, None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix='.ffat-', suffix='.tmp', dir=directory)
        with os.fdopen(fd, 'wb') as f:
            fd = None
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        tmp_path = None
    except OSError as e:
        logger.critical(f"Failed to write image {path}: {e}")
        raise ImageIOError(f"Cannot write image {path}: {e}") from e
    finally:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None and os.path.exists(tmp_path):
            os.remove(tmp_path)


def read_image_file(path: str) -> bytes:
    """Read an image file, wrapping OS errors in ImageIOError"""
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        logger.critical(f"Failed to read image {path}: {e}")
        raise ImageIOError(f"Cannot read image {path}: {e}") from e
