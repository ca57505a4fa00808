"""
MailVault Settings Vault
Copyright (c) 2025

THREAT MODEL:
The vault keeps mail-account credentials and application preferences
encrypted at rest behind a single passphrase. The passphrase is held only in
memory for the session and is never written to disk. Every stored value is
encrypted with its own salt and IV and carries a checksum that is verified on
every read. Anyone with write access to the vault file can destroy it, but
cannot alter a value without the change being detected.
"""

from mailvault.exceptions import (
    AccountExistsError,
    AccountNotFoundError,
    AuthenticationFailedError,
    CompressionError,
    CryptoError,
    IntegrityError,
    TypeMismatchError,
    VaultError,
    VaultFormatError,
    VaultKeyNotSetError,
    VaultNotLoadedError,
)
from mailvault.secure_memory import SecureBuffer, SecureString, VaultKey
from mailvault.settings import (
    EncryptedObjectSetting,
    EncryptedSecureStringSetting,
    EncryptedSetting,
)
from mailvault.accounts import MailAccountRecord, MailAccounts, UnlockedMailAccount
from mailvault.vault import SettingsVault
from mailvault.registry import AccountConnectionRegistry

__all__ = [
    "AccountConnectionRegistry",
    "AccountExistsError",
    "AccountNotFoundError",
    "AuthenticationFailedError",
    "CompressionError",
    "CryptoError",
    "EncryptedObjectSetting",
    "EncryptedSecureStringSetting",
    "EncryptedSetting",
    "IntegrityError",
    "MailAccountRecord",
    "MailAccounts",
    "SecureBuffer",
    "SecureString",
    "SettingsVault",
    "TypeMismatchError",
    "UnlockedMailAccount",
    "VaultError",
    "VaultFormatError",
    "VaultKey",
    "VaultKeyNotSetError",
    "VaultNotLoadedError",
]
