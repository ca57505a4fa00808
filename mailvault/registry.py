"""
Live mail sessions opened from vault account records.
"""

import threading
import logging
from typing import Callable, Dict, Optional

from mailvault.accounts import MailAccountRecord, UnlockedMailAccount
from mailvault.mail_client import MailService, connect_imap
from mailvault.vault import SettingsVault

logger = logging.getLogger(__name__)

Connector = Callable[[UnlockedMailAccount], MailService]


class AccountConnectionRegistry:
    """Tracks one session per account id."""

    def __init__(self, vault: SettingsVault, connector: Optional[Connector] = None):
        """
        Args:
            vault: Open vault whose key unlocks the account records
            connector: Turns an unlocked account into a session; IMAP by default
        """
        self.vault = vault
        self.connector = connector or connect_imap
        self._lock = threading.Lock()
        self._sessions: Dict[str, MailService] = {}

    def connect(self, record: MailAccountRecord) -> MailService:
        """
        Return the session for record, opening one if needed.

        The decrypted password is scrubbed as soon as the connector returns
        or fails. The connector runs without the registry lock held.
        """
        with self._lock:
            session = self._sessions.get(record.id)
        if session is not None:
            return session

        with self.vault.unlock_account(record) as unlocked:
            session = self.connector(unlocked)

        with self._lock:
            existing = self._sessions.get(record.id)
            if existing is not None:
                # Lost a race with another connect() for the same account
                session.close()
                return existing
            self._sessions[record.id] = session
        logger.info(f"Connected account {record.id}")
        return session

    def is_connected(self, record: MailAccountRecord) -> bool:
        with self._lock:
            return record.id in self._sessions

    def disconnect(self, account_id: str, quit: bool) -> bool:
        """
        Remove an account's session from the registry.

        Args:
            account_id: Id of the account
            quit: Log out and dispose of the session; otherwise only detach it,
                leaving the session itself open for whoever still holds it

        Returns:
            Whether a session was registered for the account
        """
        with self._lock:
            session = self._sessions.pop(account_id, None)
        if session is None:
            return False
        if quit:
            try:
                session.disconnect(quit=True)
            finally:
                session.close()
            logger.info(f"Disconnected account {account_id}")
        else:
            logger.info(f"Detached session for account {account_id}")
        return True

    def close(self) -> None:
        """Log out of every registered session."""
        with self._lock:
            account_ids = list(self._sessions)
        for account_id in account_ids:
            self.disconnect(account_id, quit=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
