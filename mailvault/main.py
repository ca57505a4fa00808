"""
Command-line entry point for the MailVault settings vault.

Creates vaults and manages the mail accounts stored in them. Passphrases and
passwords are read with getpass and never echoed or logged.
"""

import sys
import argparse
import getpass
import logging
from typing import List, Optional

from mailvault import config
from mailvault import vault_manager
from mailvault.exceptions import VaultError
from mailvault.secure_memory import SecureString, VaultKey
from mailvault.vault import SettingsVault

logger = logging.getLogger(__name__)


class MailVaultApp:
    """Main application class for the vault CLI."""

    def __init__(self, args: argparse.Namespace):
        """Initialize the application."""
        self.args = args
        self.vault_path = args.vault or vault_manager.last_used_vault() or vault_manager.default_vault_path()
        self.vault: Optional[SettingsVault] = None

    def _read_passphrase(self, confirm: bool = False) -> VaultKey:
        passphrase = getpass.getpass("Vault passphrase: ")
        if confirm:
            if len(passphrase) < config.PASSPHRASE_MIN_LENGTH:
                raise ValueError(f"Passphrase must be at least {config.PASSPHRASE_MIN_LENGTH} characters")
            if getpass.getpass("Repeat passphrase: ") != passphrase:
                raise ValueError("Passphrases do not match")
        return VaultKey.from_passphrase(passphrase)

    def _open_vault(self) -> SettingsVault:
        with self._read_passphrase() as vault_key:
            self.vault = SettingsVault.open(self.vault_path, vault_key)
        vault_manager.save_recent_vault_path(self.vault_path)
        return self.vault

    def init(self) -> int:
        with self._read_passphrase(confirm=True) as vault_key:
            self.vault = SettingsVault.create(vault_key, path=self.vault_path)
        if not self.vault.save(overwrite=self.args.force):
            print(f"{self.vault_path} already exists; use --force to replace it", file=sys.stderr)
            return 1
        vault_manager.save_recent_vault_path(self.vault_path)
        print(f"Created vault {self.vault_path}")
        return 0

    def list_accounts(self) -> int:
        vault = self._open_vault()
        accounts = vault.mail_accounts()
        if not accounts:
            print("No accounts")
        for account in accounts:
            print(f"{account.id}  {account.display_name} <{account.email_address}>  "
                  f"imap={account.imap_host}:{account.imap_port}")
        return 0

    def add_account(self) -> int:
        vault = self._open_vault()
        with SecureString.from_str(getpass.getpass(f"Password for {self.args.email}: ")) as password:
            record = vault.new_account(
                display_name=self.args.name or self.args.email,
                email_address=self.args.email,
                imap_host=self.args.imap_host,
                password=password,
                username=self.args.username,
                imap_port=self.args.imap_port,
                imap_use_ssl=not self.args.no_ssl,
                smtp_host=self.args.smtp_host or "",
                smtp_port=self.args.smtp_port,
            )
        vault.add_account(record)
        vault.save(overwrite=True)
        print(f"Added account {record.id}")
        return 0

    def remove_account(self) -> int:
        vault = self._open_vault()
        record = vault.find_account(self.args.account_id)
        if record is None:
            print(f"No account with id {self.args.account_id}", file=sys.stderr)
            return 1
        vault.remove_account(record)
        vault.save(overwrite=True)
        print(f"Removed account {record.id}")
        return 0

    def check(self) -> int:
        """Decrypt every setting and account password once, which verifies every tag and checksum."""
        vault = self._open_vault()
        for name in vault.keys():
            vault.verify(name)
            print(f"ok  {name}")
        for account in vault.mail_accounts():
            vault.unlock_account(account).close()
            print(f"ok  {account.id} password")
        return 0

    def run(self) -> int:
        """Run the selected command."""
        commands = {
            "init": self.init,
            "list": self.list_accounts,
            "add": self.add_account,
            "remove": self.remove_account,
            "check": self.check,
        }
        return commands[self.args.command]()

    def cleanup(self):
        """Clean up resources."""
        if self.vault is not None:
            self.vault.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mailvault", description=config.APP_TITLE_PREFIX)
    parser.add_argument("--vault", help="Vault file (default: last used, else ~/.mailvault/vault.json)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Create a new vault")
    init.add_argument("--force", action="store_true", help="Replace an existing vault file")

    accounts = sub.add_parser("accounts", help="Manage mail accounts")
    account_commands = accounts.add_subparsers(dest="command", required=True)
    account_commands.add_parser("list", help="List accounts")

    add = account_commands.add_parser("add", help="Add an account")
    add.add_argument("--email", required=True)
    add.add_argument("--imap-host", required=True)
    add.add_argument("--imap-port", type=int, default=config.IMAP_DEFAULT_PORT)
    add.add_argument("--no-ssl", action="store_true", help="Connect to IMAP without implicit TLS")
    add.add_argument("--name", help="Display name (default: the email address)")
    add.add_argument("--username", help="Login name (default: the email address)")
    add.add_argument("--smtp-host")
    add.add_argument("--smtp-port", type=int, default=config.SMTP_DEFAULT_PORT)

    remove = account_commands.add_parser("remove", help="Remove an account")
    remove.add_argument("account_id")

    sub.add_parser("check", help="Verify every setting in the vault decrypts cleanly")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format=config.LOG_FORMAT)

    app = MailVaultApp(args)
    try:
        return app.run()
    except (VaultError, ValueError, OSError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        app.cleanup()


if __name__ == "__main__":
    sys.exit(main())
