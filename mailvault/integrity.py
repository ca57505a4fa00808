"""
CRC-32 checksums over plaintext.

The checksum is taken before compression and encryption and recomputed over
the recovered plaintext on every decrypt. It detects corruption; forgery is
caught by the cipher's authentication tag.
"""

import logging
import zlib

from mailvault.exceptions import IntegrityError

logger = logging.getLogger(__name__)


def compute_checksum(data) -> int:
    """Return the CRC-32 of data as an unsigned 32-bit integer."""
    return zlib.crc32(data) & 0xFFFFFFFF


def verify(expected: int, data) -> bool:
    """Check data against a previously computed checksum."""
    return compute_checksum(data) == (expected & 0xFFFFFFFF)


def ensure_valid(expected: int, data) -> None:
    """
    Raise IntegrityError unless data matches the expected checksum.

    Args:
        expected: Checksum recorded at encryption time
        data: Recovered plaintext
    """
    actual = compute_checksum(data)
    if actual != expected:
        logger.warning(f"Checksum mismatch: expected {expected:08x}, got {actual:08x}")
        raise IntegrityError(f"Checksum mismatch: expected {expected:08x}, got {actual:08x}")
