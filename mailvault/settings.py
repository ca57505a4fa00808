"""
Encrypted settings: named values stored in the vault.

Both variants share one pipeline. On the way in the plaintext is
checksummed, compressed and encrypted under a fresh salt and IV; on the way
out it is decrypted, decompressed and checked against the checksum before any
value is handed back. Settings are immutable: changing a value means creating
a new setting.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type, TypeVar

from mailvault import config
from mailvault import compression, integrity
from mailvault.codec import decode_value, encode_value, type_name
from mailvault.compression import CompressionLevel
from mailvault.crypto import CryptoManager, KdfParameters
from mailvault.exceptions import IntegrityError, TypeMismatchError, VaultFormatError
from mailvault.secure_memory import SecureString, VaultKey, scrub

logger = logging.getLogger(__name__)

T = TypeVar("T")

SECURE_STRING_TYPE = type_name(SecureString)

_PERSISTED_FIELDS = ("keyName", "cipherBytes", "iv", "salt", "crc32", "valueType", "compressed")


def _b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64d(text: str, field: str) -> bytes:
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, AttributeError) as e:
        raise VaultFormatError(f"Field {field!r} is not valid base64") from e


def _header(key_name: str, value_type: str, crc32: int, compressed: bool) -> bytes:
    """Header fields bound to the ciphertext as GCM associated data."""
    return json.dumps([key_name, value_type, crc32, compressed],
                      separators=(",", ":"), ensure_ascii=False).encode("utf-8")


@dataclass(frozen=True)
class EncryptedSetting:
    """
    One named, independently encrypted value.

    kdf holds the key derivation parameters the setting was encrypted with.
    It is not part of the record's persisted form: a vault file stores it
    once for all of its settings and passes it back to from_dict().
    """
    key_name: str
    cipher_bytes: bytes
    iv: bytes
    salt: bytes
    crc32: int
    value_type: str
    compressed: bool
    kdf: KdfParameters = field(default_factory=KdfParameters.default)

    @classmethod
    def _seal(cls, vault_key: VaultKey, key_name: str, plaintext: bytearray, value_type: str,
              compress: bool, level: Optional[CompressionLevel], crypto: Optional[CryptoManager]):
        crypto = crypto or CryptoManager()
        crc32 = integrity.compute_checksum(plaintext)
        if compress:
            level = level if level is not None else CompressionLevel.from_name(config.DEFAULT_COMPRESSION_LEVEL)
            payload = compression.compress(plaintext, level)
        else:
            payload = plaintext
        salt = crypto.generate_salt()
        iv, cipher_bytes = crypto.encrypt(vault_key, salt, payload, _header(key_name, value_type, crc32, compress))
        logger.debug(f"Encrypted setting {key_name!r} ({value_type})")
        return cls(
            key_name=key_name,
            cipher_bytes=cipher_bytes,
            iv=iv,
            salt=salt,
            crc32=crc32,
            value_type=value_type,
            compressed=compress,
            kdf=crypto.kdf,
        )

    def _open(self, vault_key: VaultKey) -> bytearray:
        """Decrypt, decompress and verify. The caller must scrub the result."""
        raw = CryptoManager(self.kdf).decrypt(
            vault_key, self.salt, self.iv, self.cipher_bytes,
            _header(self.key_name, self.value_type, self.crc32, self.compressed),
        )
        if self.compressed:
            try:
                plaintext = bytearray(compression.decompress(raw))
            finally:
                scrub(raw)
        else:
            plaintext = raw
        try:
            integrity.ensure_valid(self.crc32, plaintext)
        except IntegrityError:
            logger.error(f"Setting {self.key_name!r} failed its integrity check")
            scrub(plaintext)
            raise
        return plaintext

    def verify(self, vault_key: VaultKey) -> None:
        """Check the tag and checksum without decoding the value."""
        scrub(self._open(vault_key))

    def _check_type(self, expected: str) -> None:
        if self.value_type != expected:
            raise TypeMismatchError(expected, self.value_type)

    def with_key_name(self, key_name: str, vault_key: VaultKey) -> "EncryptedSetting":
        """
        Return a copy stored under another name.

        The name is bound to the ciphertext, so the value is decrypted and
        sealed again under a fresh salt and IV.
        """
        plaintext = self._open(vault_key)
        try:
            return type(self)._seal(vault_key, key_name, plaintext, self.value_type,
                                    self.compressed, None, CryptoManager(self.kdf))
        finally:
            scrub(plaintext)

    def to_dict(self) -> Dict[str, Any]:
        """Persisted form. Holds no key material and no cleartext."""
        return {
            "keyName": self.key_name,
            "cipherBytes": _b64e(self.cipher_bytes),
            "iv": _b64e(self.iv),
            "salt": _b64e(self.salt),
            "crc32": self.crc32,
            "valueType": self.value_type,
            "compressed": self.compressed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], kdf: Optional[KdfParameters] = None) -> "EncryptedSetting":
        """
        Rebuild a setting from its persisted form, choosing the variant by valueType.

        Args:
            data: Output of to_dict
            kdf: Parameters the setting was encrypted with; the configured
                defaults when omitted
        """
        if not isinstance(data, dict):
            raise VaultFormatError("Setting record must be an object")
        missing = [name for name in _PERSISTED_FIELDS if name not in data]
        if missing:
            raise VaultFormatError(f"Setting record is missing fields: {', '.join(missing)}")

        crc32 = data["crc32"]
        if not isinstance(crc32, int) or isinstance(crc32, bool) or not 0 <= crc32 <= 0xFFFFFFFF:
            raise VaultFormatError("Field 'crc32' must be an unsigned 32-bit integer")
        if not isinstance(data["compressed"], bool):
            raise VaultFormatError("Field 'compressed' must be a boolean")
        if not isinstance(data["valueType"], str) or not isinstance(data["keyName"], str):
            raise VaultFormatError("Fields 'keyName' and 'valueType' must be strings")

        target = cls
        if cls is EncryptedSetting:
            if data["valueType"] == SECURE_STRING_TYPE:
                target = EncryptedSecureStringSetting
            else:
                target = EncryptedObjectSetting
        return target(
            key_name=data["keyName"],
            cipher_bytes=_b64d(data["cipherBytes"], "cipherBytes"),
            iv=_b64d(data["iv"], "iv"),
            salt=_b64d(data["salt"], "salt"),
            crc32=crc32,
            value_type=data["valueType"],
            compressed=data["compressed"],
            kdf=kdf or KdfParameters.default(),
        )

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(key_name={self.key_name!r}, value_type={self.value_type!r}, "
                f"crc32={self.crc32:08x}, compressed={self.compressed}, size={len(self.cipher_bytes)})")


class EncryptedObjectSetting(EncryptedSetting):
    """A setting wrapping an arbitrary value in its canonical text form."""

    @classmethod
    def create(cls, vault_key: VaultKey, value: Any, key_name: str = "", value_type: Optional[type] = None,
               compress: bool = True, level: Optional[CompressionLevel] = None,
               crypto: Optional[CryptoManager] = None) -> "EncryptedObjectSetting":
        """
        Encrypt a value.

        Args:
            vault_key: The vault passphrase
            value: Value to store; see codec.encode_value for what can be stored
            key_name: Name the setting is stored under
            value_type: Type recorded for the value; defaults to type(value)
            compress: Whether to compress before encrypting
            level: Compression level; defaults to config.DEFAULT_COMPRESSION_LEVEL
            crypto: Crypto manager carrying the KDF parameters; the configured
                defaults when omitted. The setting keeps these parameters.

        Returns:
            The encrypted setting
        """
        value_type = value_type or type(value)
        if not isinstance(value, value_type):
            raise TypeMismatchError(type_name(value_type), type_name(type(value)))

        plaintext = bytearray(encode_value(value).encode("utf-8"))
        try:
            return cls._seal(vault_key, key_name, plaintext, type_name(value_type), compress, level, crypto)
        finally:
            scrub(plaintext)

    def decrypt(self, vault_key: VaultKey, value_type: Type[T]) -> T:
        """
        Decrypt the stored value.

        Raises:
            AuthenticationFailedError: Wrong key or altered ciphertext or header
            IntegrityError: Checksum mismatch
            CompressionError: Malformed compressed payload
            TypeMismatchError: value_type differs from the recorded type
        """
        plaintext = self._open(vault_key)
        try:
            self._check_type(type_name(value_type))
            return decode_value(plaintext.decode("utf-8"), value_type)
        finally:
            scrub(plaintext)


class EncryptedSecureStringSetting(EncryptedSetting):
    """A setting whose plaintext only ever lives in a SecureString."""

    @classmethod
    def create(cls, key_name: str, vault_key: VaultKey, secure_value: SecureString,
               compress: bool = True, level: Optional[CompressionLevel] = None,
               crypto: Optional[CryptoManager] = None) -> "EncryptedSecureStringSetting":
        plaintext = secure_value.to_bytearray()
        try:
            return cls._seal(vault_key, key_name, plaintext, SECURE_STRING_TYPE, compress, level, crypto)
        finally:
            scrub(plaintext)

    def decrypt(self, vault_key: VaultKey) -> SecureString:
        """Decrypt into a SecureString. The caller must clear it, ideally via `with`."""
        plaintext = self._open(vault_key)
        try:
            self._check_type(SECURE_STRING_TYPE)
            return SecureString(plaintext)
        finally:
            scrub(plaintext)
