"""
Exception types raised by the settings vault.

Every error is surfaced to the caller. Missing keys and unloaded vaults are
programming errors; checksum, tag and type failures are evidence of
corruption or tampering.
"""


class VaultError(Exception):
    """Base class for all vault errors."""


class VaultNotLoadedError(VaultError):
    """The vault holds no settings, or has been closed."""

    def __init__(self, message: str = "Vault is not loaded"):
        super().__init__(message)


class VaultKeyNotSetError(VaultError):
    """No vault key is available for an operation that needs one."""

    def __init__(self, message: str = "Vault key is not set"):
        super().__init__(message)


class VaultFormatError(VaultError):
    """The persisted vault file is malformed or of an unknown format."""


class AccountExistsError(VaultError):
    """An account with the same id is already stored in the vault."""

    def __init__(self, account):
        self.account = account
        super().__init__(f"Account {account.id} already exists")


class AccountNotFoundError(VaultError):
    """No account with the given id is stored in the vault."""

    def __init__(self, account):
        self.account = account
        super().__init__(f"Account {account.id} not found")


class CryptoError(VaultError):
    """Key derivation, encryption or decryption failed."""


class IntegrityError(VaultError):
    """Decrypted data does not match its recorded checksum."""


class AuthenticationFailedError(CryptoError, IntegrityError):
    """
    The authentication tag did not verify.

    Either the vault key is wrong or the ciphertext, IV, salt or bound header
    fields were altered. The two cases cannot be told apart.
    """


class TypeMismatchError(VaultError):
    """The type requested at decryption differs from the recorded type."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Setting holds {actual}, not {expected}")


class CompressionError(VaultError):
    """Compressed input is malformed."""


class SecureBufferReleasedError(VaultError):
    """A protected buffer was used after it was scrubbed."""
