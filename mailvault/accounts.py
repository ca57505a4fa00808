"""
Mail account records stored inside the vault.

The whole account collection is one encrypted setting under the reserved
MailAccounts key. Each record additionally keeps its password as its own
encrypted secure-string setting, so listing accounts never exposes a
password.
"""

import uuid
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional

from mailvault import config
from mailvault.crypto import CryptoManager, KdfParameters
from mailvault.exceptions import IntegrityError
from mailvault.secure_memory import SecureString, VaultKey
from mailvault.settings import EncryptedSecureStringSetting

logger = logging.getLogger(__name__)


def _password_key(account_id: str) -> str:
    return f"{account_id}.password"


@dataclass(frozen=True)
class MailAccountRecord:
    """Connection parameters for one mail account."""
    id: str
    display_name: str
    email_address: str
    username: str
    imap_host: str
    password: EncryptedSecureStringSetting = field(repr=False)
    imap_port: int = config.IMAP_DEFAULT_PORT
    imap_use_ssl: bool = True
    smtp_host: str = ""
    smtp_port: int = config.SMTP_DEFAULT_PORT
    smtp_use_tls: bool = True

    @classmethod
    def create(cls, vault_key: VaultKey, display_name: str, email_address: str, imap_host: str,
               password: SecureString, username: Optional[str] = None, account_id: Optional[str] = None,
               crypto: Optional[CryptoManager] = None, **connection: Any) -> "MailAccountRecord":
        """
        Build a record, encrypting the password under the vault key.

        Args:
            vault_key: The vault passphrase
            display_name: Name shown for the account
            email_address: Address of the mailbox
            imap_host: IMAP server host name
            password: Account password; left untouched, the caller still owns it
            username: Login name; defaults to the email address
            account_id: Fixed id; a random UUID when omitted
            crypto: Crypto manager carrying the vault's KDF parameters
            **connection: imap_port, imap_use_ssl, smtp_host, smtp_port, smtp_use_tls

        Returns:
            The new record
        """
        account_id = account_id or str(uuid.uuid4())
        encrypted_password = EncryptedSecureStringSetting.create(
            key_name=_password_key(account_id),
            vault_key=vault_key,
            secure_value=password,
            crypto=crypto,
        )
        return cls(
            id=account_id,
            display_name=display_name,
            email_address=email_address,
            username=username or email_address,
            imap_host=imap_host,
            password=encrypted_password,
            **connection,
        )

    def unlock(self, vault_key: VaultKey) -> "UnlockedMailAccount":
        """
        Decrypt the password. The returned account must be closed by the caller.

        Raises:
            IntegrityError: If the password setting belongs to another account
        """
        if self.password.key_name != _password_key(self.id):
            raise IntegrityError(f"Password of account {self.id} is stored as {self.password.key_name!r}")
        return UnlockedMailAccount(record=self, password=self.password.decrypt(vault_key))

    def with_password(self, vault_key: VaultKey, password: SecureString,
                      crypto: Optional[CryptoManager] = None) -> "MailAccountRecord":
        """Return a copy of the record with a new password."""
        encrypted_password = EncryptedSecureStringSetting.create(
            key_name=_password_key(self.id),
            vault_key=vault_key,
            secure_value=password,
            crypto=crypto,
        )
        return replace(self, password=encrypted_password)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email_address": self.email_address,
            "username": self.username,
            "imap_host": self.imap_host,
            "imap_port": self.imap_port,
            "imap_use_ssl": self.imap_use_ssl,
            "smtp_host": self.smtp_host,
            "smtp_port": self.smtp_port,
            "smtp_use_tls": self.smtp_use_tls,
            "password": self.password.to_dict(),
            "password_kdf": self.password.kdf.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MailAccountRecord":
        data = dict(data)
        kdf = data.pop("password_kdf", None)
        password = EncryptedSecureStringSetting.from_dict(
            data.pop("password"), KdfParameters.from_dict(kdf) if kdf is not None else None
        )
        return cls(password=password, **data)


class MailAccounts:
    """Ordered collection of account records, stored as one setting."""

    def __init__(self, accounts: Iterable[MailAccountRecord] = ()):
        self.accounts: List[MailAccountRecord] = list(accounts)

    def __iter__(self):
        return iter(self.accounts)

    def __len__(self) -> int:
        return len(self.accounts)

    def __contains__(self, account_id: object) -> bool:
        return any(account.id == account_id for account in self.accounts)

    def to_dict(self) -> Dict[str, Any]:
        return {"accounts": [account.to_dict() for account in self.accounts]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MailAccounts":
        return cls(MailAccountRecord.from_dict(item) for item in data.get("accounts", []))


class UnlockedMailAccount:
    """
    An account record together with its decrypted password.

    Handed to the mail-protocol collaborator only; close it (or use it as a
    context manager) as soon as the session is open.
    """

    def __init__(self, record: MailAccountRecord, password: SecureString):
        self.record = record
        self.password = password

    @property
    def id(self) -> str:
        return self.record.id

    def close(self) -> None:
        self.password.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return f"<UnlockedMailAccount {self.record.id} {self.record.email_address}>"
