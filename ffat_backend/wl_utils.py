import struct
from typing import Union

# Wear-leveling record layout (ESP-IDF WL version 2)
WL_CFG_SIZE = 36
WL_CFG_CRC_OFFSET = 32
WL_STATE_HEADER_SIZE = 64
WL_STATE_CRC_OFFSET = 60
WL_STATE_RESERVED_SIZE = 28
WL_STATE_RECORD_SIZE = 4  # one uint32 per sector in the position table

WL_DEFAULT_SECTOR_SIZE = 4096
WL_UPDATE_RATE = 16
WL_WRITE_SIZE = 16
WL_VERSION = 2
WL_TEMP_BUFF_SIZE = 32
WL_MAX_COUNT = 16

WL_CRC32_POLY = 0xEDB88320
WL_CRC32_SEED = 0xFFFFFFFF

ERASED_BYTE = 0xFF

_CFG_FIELDS = struct.Struct('<8I')
_STATE_FIELDS = struct.Struct('<8I')
_CRC_FIELD = struct.Struct('<I')


def wl_crc32(data: Union[bytes, bytearray, memoryview], seed: int = WL_CRC32_SEED) -> int:
    """Calculate the CRC-32 used by the wear-leveling runtime

    Reflected CRC-32 (polynomial 0xEDB88320) seeded with 0xFFFFFFFF.
    The accumulator is returned as-is: there is no final inversion, so the
    result is the bitwise complement of zlib.crc32() for the same input.

    Args:
        data: Bytes to checksum
        seed: Initial accumulator value

    Returns:
        32-bit checksum
    """
    crc = seed & 0xFFFFFFFF
    for byte in bytes(data):
        crc ^= byte
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ WL_CRC32_POLY
            else:
                crc >>= 1
    return crc


def pack_wl_config(partition_size: int, sector_size: int = WL_DEFAULT_SECTOR_SIZE) -> bytes:
    """Build the 36-byte WL config record

    Fields (all uint32 little-endian): start_addr, full_mem_size, page_size,
    sector_size, updaterate, wr_size, version, temp_buff_size, crc32.
    """
    body = _CFG_FIELDS.pack(
        0,                  # start_addr
        partition_size,     # full_mem_size
        sector_size,        # page_size
        sector_size,        # sector_size
        WL_UPDATE_RATE,
        WL_WRITE_SIZE,
        WL_VERSION,
        WL_TEMP_BUFF_SIZE,
    )
    return body + _CRC_FIELD.pack(wl_crc32(body))


def pack_wl_state(max_pos: int, device_id: int, sector_size: int = WL_DEFAULT_SECTOR_SIZE) -> bytes:
    """Build the 64-byte WL state header for a freshly initialized volume

    Fields: pos, max_pos, move_count, access_count, max_count, block_size,
    version, device_id, 28 reserved bytes, crc32 over the first 60 bytes.
    """
    body = _STATE_FIELDS.pack(
        0,              # pos
        max_pos,
        0,              # move_count
        0,              # access_count
        WL_MAX_COUNT,
        sector_size,    # block_size
        WL_VERSION,
        device_id,
    ) + bytes(WL_STATE_RESERVED_SIZE)
    return body + _CRC_FIELD.pack(wl_crc32(body))


def config_device_id(config_record: bytes) -> int:
    """Device id stored in the state header: CRC of the config record body"""
    return wl_crc32(config_record[:WL_CFG_CRC_OFFSET])


def round_up(value: int, multiple: int) -> int:
    """Round value up to the next multiple"""
    return -(-value // multiple) * multiple
