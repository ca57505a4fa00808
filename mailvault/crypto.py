"""
Cryptographic operations for the settings vault.

Every encryption derives its own key from the vault key and a fresh salt,
and uses a fresh IV, so no (key, salt, IV) triple is ever reused.
"""

import os
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from mailvault import config
from mailvault.exceptions import AuthenticationFailedError, CryptoError, VaultKeyNotSetError
from mailvault.secure_memory import VaultKey, scrub

logger = logging.getLogger(__name__)

KDF_ARGON2ID = "argon2id"
KDF_PBKDF2 = "pbkdf2"


@dataclass(frozen=True)
class KdfParameters:
    """Key derivation settings. Stored in the vault file; never secret."""
    algorithm: str = KDF_ARGON2ID
    time_cost: int = config.ARGON2_TIME_COST
    memory_cost: int = config.ARGON2_MEMORY_COST
    parallelism: int = config.ARGON2_PARALLELISM
    iterations: int = config.PBKDF2_ITERATIONS

    def __post_init__(self):
        if self.algorithm not in (KDF_ARGON2ID, KDF_PBKDF2):
            raise ValueError(f"Unsupported key derivation function: {self.algorithm}")

    @classmethod
    def default(cls) -> "KdfParameters":
        """Parameters for new vaults, read from config at call time."""
        return cls(
            algorithm=config.KDF_ALGORITHM,
            time_cost=config.ARGON2_TIME_COST,
            memory_cost=config.ARGON2_MEMORY_COST,
            parallelism=config.ARGON2_PARALLELISM,
            iterations=config.PBKDF2_ITERATIONS,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KdfParameters":
        return cls(**data)


class CryptoManager:
    """Handles all cryptographic operations for the vault."""

    def __init__(self, kdf: Optional[KdfParameters] = None):
        """
        Initialize the crypto manager.

        Args:
            kdf: Key derivation settings; defaults to the configured ones
        """
        self.kdf = kdf or KdfParameters.default()

    def generate_salt(self) -> bytes:
        """Generate a cryptographically secure random salt."""
        return os.urandom(config.SALT_SIZE)

    def generate_iv(self) -> bytes:
        """Generate a fresh GCM nonce."""
        return os.urandom(config.IV_SIZE)

    def derive_key(self, vault_key: VaultKey, salt: bytes) -> bytearray:
        """
        Derive an AES key from the vault key and a salt.

        Args:
            vault_key: The vault passphrase
            salt: Salt stored alongside the ciphertext

        Returns:
            KEY_SIZE-byte key. The caller must scrub it.
        """
        if vault_key is None or vault_key.released:
            raise VaultKeyNotSetError()

        with vault_key.reveal() as secret:
            if self.kdf.algorithm == KDF_ARGON2ID:
                # argon2-cffi copies the secret into a C buffer, so it needs real bytes
                try:
                    key = hash_secret_raw(
                        secret=bytes(secret),
                        salt=salt,
                        time_cost=self.kdf.time_cost,
                        memory_cost=self.kdf.memory_cost,
                        parallelism=self.kdf.parallelism,
                        hash_len=config.KEY_SIZE,
                        type=Type.ID
                    )
                except HashingError as e:
                    raise CryptoError(f"Key derivation failed: {e}") from e
            else:
                kdf = PBKDF2HMAC(
                    algorithm=hashes.SHA256(),
                    length=config.KEY_SIZE,
                    salt=salt,
                    iterations=self.kdf.iterations,
                )
                key = kdf.derive(secret)
        return bytearray(key)

    def encrypt(self, vault_key: VaultKey, salt: bytes, plaintext, associated_data: bytes = b"") -> Tuple[bytes, bytes]:
        """
        Encrypt data using AES-256-GCM under a key derived from (vault_key, salt).

        Args:
            vault_key: The vault passphrase
            salt: Freshly generated salt for this call
            plaintext: Data to encrypt
            associated_data: Header bytes authenticated but not encrypted

        Returns:
            Tuple of (iv, ciphertext); the tag is appended to the ciphertext
        """
        key = None
        try:
            key = self.derive_key(vault_key, salt)
            iv = self.generate_iv()
            encryptor = Cipher(algorithms.AES(key), modes.GCM(iv)).encryptor()
            if associated_data:
                encryptor.authenticate_additional_data(associated_data)
            ciphertext = encryptor.update(plaintext) + encryptor.finalize()
            return iv, ciphertext + encryptor.tag
        except VaultKeyNotSetError:
            raise
        except (ValueError, TypeError) as e:
            logger.error(f"Encryption failed: {e}")
            raise CryptoError(f"Encryption failed: {e}") from e
        finally:
            scrub(key)

    def decrypt(self, vault_key: VaultKey, salt: bytes, iv: bytes, ciphertext: bytes,
                associated_data: bytes = b"") -> bytearray:
        """
        Decrypt data using AES-256-GCM.

        Args:
            vault_key: The vault passphrase
            salt: Salt stored with the ciphertext
            iv: IV stored with the ciphertext
            ciphertext: Encrypted data with the tag appended
            associated_data: Header bytes bound at encryption time

        Returns:
            Decrypted plaintext. The caller must scrub it.

        Raises:
            AuthenticationFailedError: If the tag does not verify
            CryptoError: If the inputs are unusable
        """
        if len(ciphertext) < config.TAG_SIZE:
            raise CryptoError("Ciphertext is shorter than its authentication tag")

        body, tag = ciphertext[:-config.TAG_SIZE], ciphertext[-config.TAG_SIZE:]
        key = None
        buffer = bytearray(len(body) + 15)
        try:
            key = self.derive_key(vault_key, salt)
            decryptor = Cipher(algorithms.AES(key), modes.GCM(iv, tag)).decryptor()
            if associated_data:
                decryptor.authenticate_additional_data(associated_data)
            written = decryptor.update_into(body, buffer)
            decryptor.finalize()
            return buffer[:written]
        except InvalidTag as e:
            logger.warning("Decryption failed: authentication tag mismatch")
            raise AuthenticationFailedError("Authentication tag mismatch: wrong key or altered data") from e
        except VaultKeyNotSetError:
            raise
        except (ValueError, TypeError) as e:
            logger.error(f"Decryption failed: {e}")
            raise CryptoError(f"Decryption failed: {e}") from e
        finally:
            scrub(key)
            scrub(buffer)
