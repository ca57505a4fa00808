"""
Protected in-memory buffers for secrets.

Python cannot pin memory or stop the interpreter from copying immutable
objects, so these buffers only guarantee what can be guaranteed: the secret
lives in a single mutable bytearray, it is overwritten with zeros as soon as
the buffer is released, and every released buffer refuses further use.
"""

import ctypes
import hmac
import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Union

from mailvault.exceptions import SecureBufferReleasedError

logger = logging.getLogger(__name__)


def scrub(data: Optional[bytearray]) -> None:
    """Overwrite a bytearray with zeros in place."""
    if not data:
        return
    length = len(data)
    try:
        ctypes.memset((ctypes.c_char * length).from_buffer(data), 0, length)
    except (TypeError, BufferError):
        # Exported memoryviews pin the buffer against from_buffer; fall back to Python writes
        for i in range(length):
            data[i] = 0


class SecureBuffer:
    """
    Bytes held in a zero-on-release bytearray.

    Use as a context manager so the bytes are scrubbed on every exit path:

        with SecureBuffer(data) as buf:
            with buf.reveal() as view:
                ...
    """

    __slots__ = ("_data", "_released")

    def __init__(self, data: Union[bytes, bytearray, memoryview] = b""):
        self._data = bytearray(data)
        self._released = False
        # Scrub the caller's copy when it is mutable
        if isinstance(data, bytearray):
            scrub(data)

    def _check(self) -> None:
        if self._released:
            raise SecureBufferReleasedError(f"{type(self).__name__} has been released")

    @contextmanager
    def reveal(self) -> Iterator[memoryview]:
        """Expose the secret as a read-only view for the duration of the block."""
        self._check()
        view = memoryview(self._data).toreadonly()
        try:
            yield view
        finally:
            view.release()

    def to_bytearray(self) -> bytearray:
        """Return a mutable copy. The caller owns it and must scrub it."""
        self._check()
        return bytearray(self._data)

    def copy(self) -> "SecureBuffer":
        self._check()
        return type(self)(bytes(self._data))

    def equals(self, other: "SecureBuffer") -> bool:
        """Constant-time comparison."""
        self._check()
        other._check()
        return hmac.compare_digest(self._data, other._data)

    def clear(self) -> None:
        """Scrub and release the buffer. Safe to call more than once."""
        if self._released:
            return
        scrub(self._data)
        self._data = bytearray()
        self._released = True

    @property
    def released(self) -> bool:
        return self._released

    def __len__(self) -> int:
        self._check()
        return len(self._data)

    def __enter__(self):
        self._check()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.clear()
        return False

    def __del__(self):
        try:
            self.clear()
        except Exception:
            # Interpreter shutdown can tear down ctypes first
            pass

    def __eq__(self, other):
        if not isinstance(other, SecureBuffer):
            return NotImplemented
        return self.equals(other)

    __hash__ = None

    def __repr__(self) -> str:
        state = "released" if self._released else f"len={len(self._data)}"
        return f"<{type(self).__name__} {state}>"


class VaultKey(SecureBuffer):
    """The vault passphrase, UTF-8 encoded. Never serialized."""

    __slots__ = ()

    @classmethod
    def from_passphrase(cls, passphrase: str) -> "VaultKey":
        if not passphrase:
            raise ValueError("Passphrase must not be empty")
        encoded = bytearray(passphrase.encode("utf-8"))
        return cls(encoded)


class SecureString(SecureBuffer):
    """A protected text secret, UTF-8 encoded."""

    __slots__ = ()

    @classmethod
    def from_str(cls, text: str) -> "SecureString":
        return cls(bytearray(text.encode("utf-8")))

    def reveal_text(self) -> str:
        """
        Decode the secret into an ordinary str.

        The returned str cannot be scrubbed. Only call this at the last
        moment, e.g. when handing a password to a protocol library.
        """
        self._check()
        return self._data.decode("utf-8")
