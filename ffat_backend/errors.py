#!/usr/bin/env python3

# Copyright (c) 2026 Stephen P Smith
# MIT License

"""
FFAT error types

Every failure of a build or upload run is reported through one of these
classes. None of them is retried; the pipeline stops at the first one.
"""

from typing import Optional


class FFATError(Exception):
    """Base class for all FFAT build/upload errors"""
    pass


class PartitionParseError(FFATError):
    """A size literal or partition table row could not be parsed"""

    def __init__(self, message: str, line_number: Optional[int] = None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


class PartitionNotFoundError(FFATError):
    """The partition table has no FAT subtype row"""
    pass


class InsufficientSpaceError(FFATError):
    """The FAT partition cannot hold the wear-leveling metadata or the data"""
    pass


class ImageSizeMismatchError(FFATError):
    """The raw FAT image does not match the usable wear-leveling size"""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Raw FAT image is {actual} bytes, expected exactly {expected} bytes")
        self.expected = expected
        self.actual = actual


class ExternalToolError(FFATError):
    """An external tool could not be started or exited with a non-zero code"""

    def __init__(self, tool: str, exit_code: Optional[int] = None, message: Optional[str] = None):
        if message is None:
            message = f"{tool} failed, error code: {exit_code}"
        super().__init__(message)
        self.tool = tool
        self.exit_code = exit_code


class ImageIOError(FFATError):
    """Reading or writing a partition table or image file failed"""
    pass


class BoardConfigError(FFATError):
    """Board metadata is missing, incomplete or not an ESP32 board"""
    pass
