"""
Lossless compression of setting plaintext.

zlib streams carry their own header, so the level chosen at compression time
never needs to be known to decompress.
"""

import base64
import binascii
import logging
import zlib
from enum import IntEnum
from typing import Union

from mailvault.exceptions import CompressionError

logger = logging.getLogger(__name__)


class CompressionLevel(IntEnum):
    """Compression effort, valued as the zlib level it maps to."""
    NO_COMPRESSION = 0
    FASTEST = 1
    OPTIMAL = 6
    SMALLEST_SIZE = 9

    @classmethod
    def from_name(cls, name: str) -> "CompressionLevel":
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(f"Unknown compression level: {name}") from None


def compress(data: Union[bytes, bytearray], level: CompressionLevel = CompressionLevel.OPTIMAL) -> bytes:
    """Compress bytes into a self-describing zlib stream."""
    return zlib.compress(data, int(level))


def decompress(data: Union[bytes, bytearray]) -> bytes:
    """
    Decompress a zlib stream.

    Raises:
        CompressionError: If the stream is malformed or truncated
    """
    try:
        return zlib.decompress(data)
    except zlib.error as e:
        raise CompressionError(f"Malformed compressed data: {e}") from e


def compress_string(text: str, level: CompressionLevel = CompressionLevel.OPTIMAL) -> str:
    """Compress UTF-8 text, returning the stream as base64 text."""
    return base64.b64encode(compress(text.encode("utf-8"), level)).decode("ascii")


def decompress_string(text: str) -> str:
    """Reverse compress_string."""
    try:
        raw = base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise CompressionError(f"Compressed text is not valid base64: {e}") from e
    try:
        return decompress(raw).decode("utf-8")
    except UnicodeDecodeError as e:
        raise CompressionError(f"Decompressed data is not UTF-8: {e}") from e
