#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
ESP32 Partition Table Parsing

Reads the CSV partition table used by the Arduino ESP32 core and locates the
FAT partition. Rows without an explicit offset are placed right after the
previous row, starting from the conventional first-partition offset.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, List

from .errors import PartitionParseError, PartitionNotFoundError, ImageIOError

logger = logging.getLogger(__name__)

# Partition table sits at 0x8000 and occupies 0xC00 bytes
FIRST_PARTITION_OFFSET = 0x8000 + 0xC00

FAT_SUBTYPE = 'FAT'
MIN_PARTITION_FIELDS = 5


@dataclass(frozen=True)
class PartitionEntry:
    """One row of the partition table with its offset resolved"""
    name: str
    type: str
    subtype: str
    offset: int
    size: int
    line_number: int = 0

    @property
    def end(self) -> int:
        return self.offset + self.size

    def is_fat(self) -> bool:
        return self.subtype.strip().upper() == FAT_SUBTYPE


@dataclass(frozen=True)
class PartitionLayout:
    """Resolved byte range of the FAT partition"""
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


def parse_size_literal(token: str) -> int:
    """
    Convert a partition table size/offset token to an integer.

    Accepts hexadecimal ("0x9000"), kilobytes ("16K"), megabytes ("4M") and
    plain decimal. An empty token is 0.

    Args:
        token: The raw field text.

    Returns:
        The parsed value in bytes.

    Raises:
        PartitionParseError: If the token has no valid numeric part, or mixes
            a hex prefix with a K/M unit suffix.
    """
    text = token.strip()
    up = text.upper()
    if up == "":
        return 0

    try:
        if '0X' in up:
            if 'K' in up or 'M' in up:
                raise PartitionParseError(f"Ambiguous size literal '{text}' (hex value with unit suffix)")
            return int(text, 16)
        elif 'K' in up:
            return 1024 * int(up[:up.index('K')])
        elif 'M' in up:
            return 1024 * 1024 * int(up[:up.index('M')])
        else:
            return int(text, 10)
    except ValueError as e:
        raise PartitionParseError(f"Invalid size literal '{text}'") from e


def iter_partition_entries(text: str) -> Iterator[PartitionEntry]:
    """
    Iterate over the partition rows of a CSV partition table.

    Comments ('#' to end of line) are stripped and lines with fewer than five
    fields are skipped. An offset of 0 (or empty) is replaced by the running
    cursor; the cursor then moves to offset + size for every row.

    Args:
        text: The partition table contents.

    Yields:
        PartitionEntry objects in file order with resolved offsets.

    Raises:
        PartitionParseError: If an offset or size field is malformed.
    """
    cursor = FIRST_PARTITION_OFFSET

    for line_number, line in enumerate(text.split('\n'), start=1):
        if '#' in line:
            line = line[:line.index('#')]

        fields = line.split(',')
        if len(fields) < MIN_PARTITION_FIELDS:
            continue

        try:
            offset = parse_size_literal(fields[3])
            size = parse_size_literal(fields[4])
        except PartitionParseError as e:
            raise PartitionParseError(str(e), line_number) from e

        if offset == 0:
            offset = cursor
        cursor = offset + size

        yield PartitionEntry(
            name=fields[0].strip(),
            type=fields[1].strip(),
            subtype=fields[2].strip(),
            offset=offset,
            size=size,
            line_number=line_number,
        )


def parse_partition_table(text: str) -> List[PartitionEntry]:
    """Parse the whole partition table into a list of resolved rows"""
    return list(iter_partition_entries(text))


def find_fat_partition(text: str) -> PartitionLayout:
    """
    Locate the FAT partition in a CSV partition table.

    When several rows have the FAT subtype the last one wins, matching what
    the Arduino tooling has always done.

    Args:
        text: The partition table contents.

    Returns:
        PartitionLayout of the FAT partition.

    Raises:
        PartitionNotFoundError: If no row has the FAT subtype.
        PartitionParseError: If a row is malformed or the FAT row is empty.
    """
    match = None
    fat_rows = 0

    for entry in iter_partition_entries(text):
        if entry.is_fat():
            fat_rows += 1
            match = entry

    if match is None:
        logger.error("FAT partition entry not found in partition table")
        raise PartitionNotFoundError("FAT partition entry not found in partition table")

    if fat_rows > 1:
        logger.warning(f"{fat_rows} FAT partitions found, using the last one '{match.name}' "
                       f"at 0x{match.offset:x}")

    if match.size <= 0:
        raise PartitionParseError(f"FAT partition '{match.name}' has no size", match.line_number)

    logger.debug(f"FAT partition '{match.name}': 0x{match.offset:x}-0x{match.end:x}")
    return PartitionLayout(start=match.offset, end=match.end)


def read_partition_table(path: str) -> str:
    """
    Read a partition table file as UTF-8 text.

    Raises:
        ImageIOError: If the file cannot be read.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.critical(f"Failed to read partition table {path}: {e}")
        raise ImageIOError(f"Cannot read partition table {path}: {e}") from e
