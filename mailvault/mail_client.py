"""
Default mail-protocol collaborator: IMAP sessions through IMAPClient.

The registry only relies on the MailService protocol below; everything
protocol-specific stays in this module.
"""

import logging
from typing import Optional, Protocol

from imapclient import IMAPClient

from mailvault import config
from mailvault.accounts import UnlockedMailAccount

logger = logging.getLogger(__name__)


class MailService(Protocol):
    """A live session handle for one account."""

    def disconnect(self, quit: bool = True) -> None:
        ...

    def close(self) -> None:
        ...


class ImapMailService:
    """IMAP session for one account."""

    def __init__(self, client: IMAPClient, account_id: str):
        self.client: Optional[IMAPClient] = client
        self.account_id = account_id

    @property
    def connected(self) -> bool:
        return self.client is not None

    def disconnect(self, quit: bool = True) -> None:
        """
        End the session.

        Args:
            quit: Send LOGOUT before closing; otherwise just drop the connection
        """
        if not self.client:
            return
        try:
            if quit:
                self.client.logout()
                logger.info(f"Logged out of account {self.account_id}")
            else:
                self.client.shutdown()
                logger.info(f"Closed connection for account {self.account_id}")
        finally:
            self.client = None

    def close(self) -> None:
        """Dispose of the session, logging out if it is still connected."""
        self.disconnect(quit=True)


def connect_imap(account: UnlockedMailAccount,
                 timeout: float = config.MAIL_CONNECT_TIMEOUT_SECONDS) -> ImapMailService:
    """
    Open an IMAP session for an unlocked account.

    Args:
        account: Account with its decrypted password
        timeout: Network timeout in seconds

    Returns:
        Logged-in session
    """
    record = account.record
    logger.info(f"Connecting to IMAP server {record.imap_host}:{record.imap_port} (timeout: {timeout}s)")
    client = IMAPClient(
        host=record.imap_host,
        port=record.imap_port,
        ssl=record.imap_use_ssl,
        timeout=timeout
    )
    try:
        client.login(record.username, account.password.reveal_text())
    except Exception as e:
        logger.error(f"Login failed for {record.username}: {e}")
        client.shutdown()
        raise
    logger.info(f"Successfully logged in as {record.username}")
    return ImapMailService(client, record.id)
