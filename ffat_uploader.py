#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
FFAT Uploader
Builds wear-leveling FAT (FFAT) images from a sketch's data folder and
uploads them to ESP32 boards
"""

import sys
import logging
import argparse
from typing import List, Optional

from ffat_backend.board import BoardContext, load_build_properties
from ffat_backend.builder import FFATBuilder
from ffat_backend.errors import (
    FFATError, PartitionParseError, PartitionNotFoundError, InsufficientSpaceError,
    ImageSizeMismatchError, ExternalToolError, ImageIOError, BoardConfigError
)
from ffat_backend.partitions import find_fat_partition, read_partition_table, parse_size_literal
from ffat_backend.settings import UploaderSettings, DEFAULTS
from ffat_backend.tools import ToolResolver
from ffat_backend.wear_leveling import (calculate_wl_layout, assemble_wl_image,
                                        read_image_file, write_image_file)

__version__ = '1.0.0'

LOG_FILE = 'ffatuploader.log'

# Exit status and operator hint for each failure kind
ERROR_REPORTS = [
    (PartitionNotFoundError, 3,
     "Make sure your partition scheme includes a FAT partition (subtype 'fat'). "
     "Common partition schemes with FAT: 'Default with ffat', 'Minimal SPIFFS with ffat', etc."),
    (PartitionParseError, 4, "Check the offset and size columns of the partition table."),
    (InsufficientSpaceError, 5, "Select a partition scheme with a larger FAT partition or remove files."),
    (ImageSizeMismatchError, 6, "The raw FAT image must be built for the usable wear-leveling size."),
    (ExternalToolError, 7, "Check the tool path settings and the tool output above."),
    (ImageIOError, 8, "Check file permissions and free disk space."),
    (BoardConfigError, 9, "Check the board, partition scheme and port selection."),
]


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure application-wide logging"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(filename)s:%(lineno)d - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(LOG_FILE, mode='w'),
            logging.StreamHandler()
        ]
    )
    return logging.getLogger("FFATUploader")


def report_error(logger: logging.Logger, error: FFATError) -> int:
    """Log a specific message for the error and return its exit status"""
    for error_type, status, hint in ERROR_REPORTS:
        if isinstance(error, error_type):
            logger.error(f"ERROR: {error}")
            logger.warning(hint)
            return status
    logger.error(f"ERROR: {error}")
    return 1


def make_board(args, settings: UploaderSettings) -> BoardContext:
    properties = load_build_properties(args.properties) if args.properties else {}
    return BoardContext(
        fqbn=args.fqbn,
        build_properties=properties,
        sketch_path=args.sketch,
        partition_scheme=args.partition_scheme,
        upload_speed=args.upload_speed or settings.upload_speed,
        port=args.port or settings.get('default_port') or None,
        port_protocol='network' if args.network_port else 'serial',
        network_port=args.network_port,
    )


def cmd_build(args, settings: UploaderSettings, logger: logging.Logger, upload: bool) -> int:
    board = make_board(args, settings)
    overrides = settings.tool_overrides()
    if args.mkfatfs:
        overrides['mkfatfs'] = args.mkfatfs
    resolver = ToolResolver(board.build_properties, overrides,
                            arduino_data_dir=settings.get('arduino_data_dir') or None)
    builder = FFATBuilder(board, resolver, sector_size=args.sector_size or settings.sector_size,
                          logger=logger)
    result = builder.build(upload=upload, output_path=args.output)
    logger.info(result.message)
    return 0


def cmd_layout(args, settings: UploaderSettings, logger: logging.Logger) -> int:
    partition = find_fat_partition(read_partition_table(args.partitions))
    layout = calculate_wl_layout(partition.size, args.sector_size or settings.sector_size)
    layout.ensure_capacity()
    print(f"FAT partition: 0x{partition.start:x}-0x{partition.end:x} ({partition.size} bytes)")
    print(f"Sector size:   {layout.sector_size}")
    print(f"FAT size:      {layout.flash_size} bytes ({layout.flash_size // layout.sector_size} sectors)")
    print(f"State 1:       0x{layout.addr_state1:x} ({layout.state_size} bytes)")
    print(f"State 2:       0x{layout.addr_state2:x} ({layout.state_size} bytes)")
    print(f"Config:        0x{layout.addr_cfg:x} ({layout.cfg_size} bytes)")
    print(f"Max pos:       {layout.max_pos}")
    return 0


def cmd_wrap(args, settings: UploaderSettings, logger: logging.Logger) -> int:
    if args.partitions:
        partition_size = find_fat_partition(read_partition_table(args.partitions)).size
    else:
        partition_size = parse_size_literal(args.partition_size)
    sector_size = args.sector_size or settings.sector_size
    image = assemble_wl_image(read_image_file(args.raw_image), partition_size, sector_size)
    write_image_file(args.output, image)
    logger.info(f"Wrote {len(image)} bytes to {args.output}")
    return 0


def cmd_config(args, settings: UploaderSettings, logger: logging.Logger) -> int:
    if args.reset:
        settings.reset(args.reset)
        return 0
    if args.key is None:
        for key, value in settings.items():
            print(f"{key}={value}")
        return 0
    if args.value is None:
        print(settings.get(args.key))
        return 0
    settings.set(args.key, args.value)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ffat_uploader',
        description="Build and upload wear-leveling FAT filesystem images for ESP32 boards.",
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    subparsers = parser.add_subparsers(dest='command', required=True)

    def add_board_args(sub):
        sub.add_argument('--sketch', required=True, help="Sketch folder (must contain data/)")
        sub.add_argument('--fqbn', required=True, help="Fully qualified board name, e.g. esp32:esp32:esp32")
        sub.add_argument('--properties', help="Board build properties file (key=value lines)")
        sub.add_argument('--partition-scheme', help="Selected PartitionScheme menu value")
        sub.add_argument('--port', help="Serial port, or host name for network upload")
        sub.add_argument('--network-port', type=int, help="OTA port; selects network upload")
        sub.add_argument('--upload-speed', type=int, help="Serial upload baud rate")
        sub.add_argument('--sector-size', type=int, help="Flash sector size (default 4096)")
        sub.add_argument('--mkfatfs', help="Path to the mkfatfs executable")
        sub.add_argument('--output', help="Where to write the image")

    add_board_args(subparsers.add_parser('build', help="Build the FFAT image"))
    add_board_args(subparsers.add_parser('upload', help="Build and flash the FFAT image"))

    layout = subparsers.add_parser('layout', help="Show the FAT partition and wear-leveling layout")
    layout.add_argument('partitions', help="Partition table CSV")
    layout.add_argument('--sector-size', type=int)

    wrap = subparsers.add_parser('wrap', help="Wrap an existing raw FAT image with wear leveling")
    wrap.add_argument('raw_image')
    wrap.add_argument('output')
    size_group = wrap.add_mutually_exclusive_group(required=True)
    size_group.add_argument('--partitions', help="Take the partition size from this CSV")
    size_group.add_argument('--partition-size', help="Partition size (e.g. 0x170000, 1472K)")
    wrap.add_argument('--sector-size', type=int)

    config = subparsers.add_parser('config', help="Show or change stored settings")
    config.add_argument('key', nargs='?', choices=sorted(DEFAULTS))
    config.add_argument('value', nargs='?')
    config.add_argument('--reset', choices=sorted(DEFAULTS), help="Restore a setting's default")

    return parser


def main(argv: Optional[List[str]] = None, settings: Optional[UploaderSettings] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = setup_logging(args.verbose)
    settings = settings or UploaderSettings()

    try:
        if args.command in ('build', 'upload'):
            return cmd_build(args, settings, logger, upload=args.command == 'upload')
        if args.command == 'layout':
            return cmd_layout(args, settings, logger)
        if args.command == 'wrap':
            return cmd_wrap(args, settings, logger)
        return cmd_config(args, settings, logger)
    except FFATError as e:
        return report_error(logger, e)
    except ValueError as e:
        logger.error(f"ERROR: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
