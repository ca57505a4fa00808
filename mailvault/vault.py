"""
The settings vault: a mapping of names to encrypted settings.

A vault is an explicit handle returned by SettingsVault.create() or
SettingsVault.open(); there is no process-wide current vault. The passphrase
lives in the handle for the session only and is never written to disk.
"""

import os
import json
import tempfile
import threading
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from mailvault import config
from mailvault.accounts import MailAccountRecord, MailAccounts, UnlockedMailAccount
from mailvault.codec import type_name
from mailvault.crypto import CryptoManager, KdfParameters
from mailvault.exceptions import (
    AccountExistsError,
    AccountNotFoundError,
    TypeMismatchError,
    VaultFormatError,
    VaultKeyNotSetError,
    VaultNotLoadedError,
)
from mailvault.secure_memory import SecureString, VaultKey
from mailvault.settings import EncryptedObjectSetting, EncryptedSetting
from mailvault.utils import set_owner_only_permissions

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _as_vault_key(passphrase: Union[str, VaultKey]) -> VaultKey:
    """The vault always owns its key, so a VaultKey argument is copied."""
    if isinstance(passphrase, VaultKey):
        return passphrase.copy()
    return VaultKey.from_passphrase(passphrase)


class SettingsVault:
    """Manages the encrypted settings and the mail-account collection."""

    def __init__(self, vault_key: Optional[VaultKey] = None, path: Optional[str] = None,
                 kdf: Optional[KdfParameters] = None):
        """
        Initialize an empty vault. Use create() or open() instead.

        Args:
            vault_key: Key the vault takes ownership of
            path: File the vault is saved to and loaded from
            kdf: Key derivation settings for new settings
        """
        self.path = path
        self.crypto = CryptoManager(kdf)
        self.has_changed = False
        self._closed = False
        self._lock = threading.RLock()
        self._vault_key = vault_key
        self._settings: Dict[str, EncryptedSetting] = {}

    @classmethod
    def create(cls, passphrase: Union[str, VaultKey], path: Optional[str] = None,
               kdf: Optional[KdfParameters] = None) -> "SettingsVault":
        """
        Create a new vault holding an empty account collection.

        Nothing is written until save() is called.
        """
        vault = cls(vault_key=_as_vault_key(passphrase), path=path, kdf=kdf)
        vault.set(config.MAIL_ACCOUNTS_KEY, EncryptedObjectSetting.create(
            vault_key=vault.vault_key,
            value=MailAccounts(),
            key_name=config.MAIL_ACCOUNTS_KEY,
            crypto=vault.crypto,
        ))
        logger.info(f"Created new vault{f' for {path}' if path else ''} ({vault.crypto.kdf.algorithm})")
        return vault

    @classmethod
    def open(cls, path: str, passphrase: Union[str, VaultKey], verify: bool = True) -> "SettingsVault":
        """
        Load a vault file and keep the passphrase for the session.

        Args:
            path: Vault file
            passphrase: The vault passphrase
            verify: Decrypt the account collection once so a wrong passphrase fails here

        Raises:
            VaultFormatError: If the file is malformed
            AuthenticationFailedError: If verify is set and the passphrase is wrong
        """
        vault = cls(vault_key=_as_vault_key(passphrase), path=path)
        try:
            vault.load(path)
            if verify and config.MAIL_ACCOUNTS_KEY in vault:
                vault.mail_accounts()
        except Exception:
            vault.close()
            raise
        logger.info(f"Opened vault {path} with {len(vault)} settings")
        return vault

    @property
    def vault_key(self) -> Optional[VaultKey]:
        return self._vault_key

    def is_unlocked(self) -> bool:
        """Check if the vault holds a usable key."""
        return self._vault_key is not None and not self._vault_key.released

    def _require_key(self, vault_key: Optional[VaultKey] = None) -> VaultKey:
        key = vault_key if vault_key is not None else self._vault_key
        if key is None or key.released:
            raise VaultKeyNotSetError()
        return key

    def _check_open(self) -> None:
        if self._closed:
            raise VaultNotLoadedError("Vault has been closed")

    # Mapping access

    def get(self, name: str, default: Optional[EncryptedSetting] = None) -> Optional[EncryptedSetting]:
        with self._lock:
            return self._settings.get(name, default)

    def set(self, name: str, setting: EncryptedSetting) -> None:
        """
        Store a setting under name, replacing any previous one.

        A setting created under another name is sealed again under name.

        Raises:
            ValueError: If the setting was encrypted with other key derivation
                parameters than the vault's; the vault file records only one set
            VaultNotLoadedError: If the vault has been closed
        """
        if not isinstance(setting, EncryptedSetting):
            raise TypeError(f"Expected an EncryptedSetting, got {type(setting).__name__}")
        with self._lock:
            self._check_open()
            if setting.kdf != self.crypto.kdf:
                raise ValueError(f"Setting {name!r} uses other key derivation parameters than the vault")
            if setting.key_name != name:
                setting = setting.with_key_name(name, self._require_key())
            self._settings[name] = setting
            self.has_changed = True

    def remove(self, name: str) -> bool:
        """Delete a setting. Returns whether it existed."""
        with self._lock:
            self._check_open()
            if self._settings.pop(name, None) is None:
                return False
            self.has_changed = True
            return True

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._settings)

    def __getitem__(self, name: str) -> EncryptedSetting:
        with self._lock:
            return self._settings[name]

    def __setitem__(self, name: str, setting: EncryptedSetting) -> None:
        self.set(name, setting)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._settings

    def __len__(self) -> int:
        with self._lock:
            return len(self._settings)

    def verify(self, name: str) -> None:
        """
        Check that the setting stored under name decrypts and matches its checksum.

        Raises:
            KeyError: If there is no such setting
            AuthenticationFailedError, IntegrityError, CompressionError: On a bad setting
        """
        with self._lock:
            key = self._require_key()
            self._settings[name].verify(key)

    # Preferences

    def get_value(self, name: str, value_type: Type[T], default: Optional[T] = None) -> Optional[T]:
        """Decrypt the preference stored under name, or return default if there is none."""
        with self._lock:
            key = self._require_key()
            setting = self._settings.get(name)
            if setting is None:
                return default
            if not isinstance(setting, EncryptedObjectSetting):
                raise TypeError(f"Setting {name!r} is not an object setting")
            return setting.decrypt(key, value_type)

    def set_value(self, name: str, value: Any, value_type: Optional[type] = None) -> None:
        """Encrypt a preference and store it under name."""
        if name == config.MAIL_ACCOUNTS_KEY:
            raise ValueError(f"{name!r} is reserved for the account collection")
        with self._lock:
            key = self._require_key()
            self.set(name, EncryptedObjectSetting.create(
                vault_key=key,
                value=value,
                key_name=name,
                value_type=value_type,
                crypto=self.crypto,
            ))

    # Accounts

    def mail_accounts(self, vault_key: Optional[VaultKey] = None) -> List[MailAccountRecord]:
        """
        Decrypt the account collection.

        Raises:
            VaultKeyNotSetError: If no key is available
            VaultNotLoadedError: If the vault holds no settings at all
        """
        with self._lock:
            key = self._require_key(vault_key)
            if not self._settings:
                raise VaultNotLoadedError()
            setting = self._settings.get(config.MAIL_ACCOUNTS_KEY)
            if setting is None:
                return []
            if not isinstance(setting, EncryptedObjectSetting):
                raise TypeMismatchError(type_name(MailAccounts), setting.value_type)
            return list(setting.decrypt(key, MailAccounts))

    def find_account(self, account_id: str) -> Optional[MailAccountRecord]:
        for account in self.mail_accounts():
            if account.id == account_id:
                return account
        return None

    def new_account(self, display_name: str, email_address: str, imap_host: str, password: SecureString,
                    **kwargs: Any) -> MailAccountRecord:
        """Build a record whose password is encrypted under this vault's key. Does not add it."""
        return MailAccountRecord.create(
            self._require_key(), display_name, email_address, imap_host, password,
            crypto=self.crypto, **kwargs
        )

    def unlock_account(self, record: MailAccountRecord) -> UnlockedMailAccount:
        """Decrypt a record's password. The caller must close the result."""
        return record.unlock(self._require_key())

    def _replace_accounts(self, vault_key: VaultKey, accounts: List[MailAccountRecord]) -> None:
        # Always rebuilt and re-encrypted whole; settings are never edited in place
        self.set(config.MAIL_ACCOUNTS_KEY, EncryptedObjectSetting.create(
            vault_key=vault_key,
            value=MailAccounts(accounts),
            key_name=config.MAIL_ACCOUNTS_KEY,
            crypto=self.crypto,
        ))

    def add_account(self, record: MailAccountRecord) -> None:
        """
        Append an account to the collection.

        Raises:
            AccountExistsError: If an account with record.id is already stored
        """
        with self._lock:
            key = self._require_key()
            accounts = self.mail_accounts(key)
            if any(account.id == record.id for account in accounts):
                raise AccountExistsError(record)
            self._replace_accounts(key, accounts + [record])
            logger.info(f"Added account {record.id}")

    def update_account(self, record: MailAccountRecord) -> None:
        """
        Replace the stored account that has record.id, keeping its position.

        Raises:
            AccountNotFoundError: If no account with record.id is stored
        """
        with self._lock:
            key = self._require_key()
            accounts = self.mail_accounts(key)
            if not any(account.id == record.id for account in accounts):
                raise AccountNotFoundError(record)
            self._replace_accounts(key, [record if account.id == record.id else account for account in accounts])
            logger.info(f"Updated account {record.id}")

    def remove_account(self, record: MailAccountRecord) -> None:
        """
        Remove an account from the collection.

        Raises:
            AccountNotFoundError: If no account with record.id is stored
        """
        with self._lock:
            key = self._require_key()
            accounts = self.mail_accounts(key)
            remaining = [account for account in accounts if account.id != record.id]
            if len(remaining) == len(accounts):
                raise AccountNotFoundError(record)
            self._replace_accounts(key, remaining)
            logger.info(f"Removed account {record.id}")

    # Persistence

    def to_dict(self) -> Dict[str, Any]:
        """Persisted form of the whole vault. Holds no key material."""
        with self._lock:
            return {
                "format": config.VAULT_FORMAT_NAME,
                "version": config.VAULT_FORMAT_VERSION,
                "kdf": self.crypto.kdf.to_dict(),
                "settings": {name: setting.to_dict() for name, setting in self._settings.items()},
            }

    def save(self, path: Optional[str] = None, overwrite: bool = False) -> bool:
        """
        Write the vault to disk.

        Args:
            path: Target file; defaults to the path the vault was opened from
            overwrite: Replace the file if it already exists

        Returns:
            True if written, False if the file exists and overwrite is not set

        Raises:
            VaultNotLoadedError: If the vault has been closed
        """
        path = path or self.path
        if not path:
            raise ValueError("No path given for the vault file")

        with self._lock:
            self._check_open()
            if os.path.exists(path) and not overwrite:
                logger.warning(f"Refusing to overwrite existing vault file {path}")
                return False

            data = json.dumps(self.to_dict(), indent=2).encode("utf-8")
            self._write_file(path, data)
            self.path = path
            self.has_changed = False
            logger.info(f"Saved vault with {len(self._settings)} settings to {path}")
            return True

    def _write_file(self, path: str, data: bytes) -> None:
        """Write to a temporary file next to path, then atomically replace path."""
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=directory,
            prefix=f".{os.path.basename(path)}.",
            suffix=config.TEMP_FILE_SUFFIX,
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            os.replace(temp_path, path)

            if not set_owner_only_permissions(path):
                logger.warning(f"Failed to set secure file permissions for vault: {path}.")
        except Exception as e:
            logger.error(f"Error saving vault file {path}: {e}", exc_info=True)
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

    def load(self, path: Optional[str] = None) -> None:
        """
        Replace the in-memory settings with the contents of a vault file.

        The file is parsed completely before anything is replaced, so a
        malformed file leaves the vault as it was.

        Raises:
            VaultFormatError: If the file is not a valid vault
            VaultNotLoadedError: If the vault has been closed
        """
        path = path or self.path
        if not path:
            raise ValueError("No path given for the vault file")

        with self._lock:
            self._check_open()
            with open(path, "rb") as f:
                raw = f.read()
            settings, kdf = self._parse(raw, path)
            self._settings = settings
            self.crypto = CryptoManager(kdf)
            self.path = path
            self.has_changed = False
            logger.debug(f"Loaded {len(settings)} settings from {path}")

    @staticmethod
    def _parse(raw: bytes, path: str):
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Load: {path} is not a JSON document: {e}")
            raise VaultFormatError(f"{path} is not a vault file") from e

        if not isinstance(document, dict) or document.get("format") != config.VAULT_FORMAT_NAME:
            raise VaultFormatError(f"{path} is not a vault file")
        version = document.get("version")
        if version != config.VAULT_FORMAT_VERSION:
            logger.warning(f"Load: Version mismatch. Expected {config.VAULT_FORMAT_VERSION}, got {version}")
            raise VaultFormatError(f"Unsupported vault version: {version}")

        try:
            kdf = KdfParameters.from_dict(document["kdf"])
        except (KeyError, TypeError, ValueError) as e:
            raise VaultFormatError(f"Invalid key derivation parameters in {path}") from e

        records = document.get("settings")
        if not isinstance(records, dict):
            raise VaultFormatError(f"{path} has no settings mapping")

        settings: Dict[str, EncryptedSetting] = {}
        for name, record in records.items():
            setting = EncryptedSetting.from_dict(record, kdf)
            if setting.key_name != name:
                raise VaultFormatError(f"Setting stored under {name!r} is named {setting.key_name!r}")
            settings[name] = setting
        return settings, kdf

    def copy(self) -> "SettingsVault":
        """Independent handle over the same settings with its own copy of the key."""
        with self._lock:
            self._check_open()
            clone = SettingsVault(
                vault_key=self._vault_key.copy() if self.is_unlocked() else None,
                path=self.path,
                kdf=self.crypto.kdf,
            )
            clone._settings = dict(self._settings)
            clone.has_changed = self.has_changed
            return clone

    def close(self) -> None:
        """Scrub the key and drop all settings from memory. The handle cannot be reused."""
        with self._lock:
            self._closed = True
            if self._vault_key is not None:
                self._vault_key.clear()
            self._vault_key = None
            self._settings = {}
            logger.debug("Vault closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        state = "unlocked" if self.is_unlocked() else "locked"
        return f"<SettingsVault {self.path or '(unsaved)'} {state} settings={len(self._settings)}>"
