"""
Configuration constants for the MailVault settings vault.
"""

import os

# Application Metadata
APP_VERSION = "1.0"  # Use: Current version of the application. Type: str. Range: Semantic versioning string (e.g., "1.0.0")
APP_NAME = "MailVault"  # Use: Name of the application, used in CLI help and log messages. Type: str. Range: Any valid string.
APP_TITLE_PREFIX = f"{APP_NAME} v{APP_VERSION}"  # Use: Name and version combined, printed by the CLI. Type: str (f-string). Range: Derived from APP_NAME and APP_VERSION.

# Security Settings
SALT_SIZE = 16  # Use: Size of the per-encryption salt in bytes fed to the key derivation function. Type: int. Range: At least 16 bytes (128 bits).
KEY_SIZE = 32  # Use: Size of the derived encryption key in bytes. Corresponds to AES-256. Type: int. Range: 16 (AES-128), 24 (AES-192), or 32 (AES-256) bytes.
IV_SIZE = 12  # Use: Size of the IV (GCM nonce) in bytes, generated fresh for every encryption. Type: int. Range: 12 bytes (96 bits) is the recommended size for GCM.
TAG_SIZE = 16  # Use: Size of the GCM authentication tag appended to every ciphertext. Type: int. Range: 16 bytes (128 bits).
KDF_ALGORITHM = "argon2id"  # Use: Key derivation function for new vaults. Existing vaults record their own. Type: str. Range: "argon2id" or "pbkdf2".
ARGON2_TIME_COST = 2  # Use: Argon2id time cost parameter. Controls the number of iterations. Type: int. Range: Typically 1 to 10.
ARGON2_MEMORY_COST = 65536  # Use: Argon2id memory cost parameter in KiB. Type: int. Range: At least 8 * ARGON2_PARALLELISM; 65536 (64 MB) recommended.
ARGON2_PARALLELISM = 4  # Use: Argon2id parallelism parameter (lanes). Type: int. Range: Typically 1 to 8.
PBKDF2_ITERATIONS = 310000  # Use: Number of iterations for PBKDF2-HMAC-SHA256 when KDF_ALGORITHM is "pbkdf2". Type: int. Range: At least 100,000.
PASSPHRASE_MIN_LENGTH = 12  # Use: Minimum length the CLI accepts for a new vault passphrase. Type: int. Range: Positive integer.

# Compression Settings
DEFAULT_COMPRESSION_LEVEL = "OPTIMAL"  # Use: Name of the CompressionLevel used when encrypting settings. Type: str. Range: "NO_COMPRESSION", "FASTEST", "OPTIMAL", "SMALLEST_SIZE".

# Vault Format Settings
VAULT_FORMAT_NAME = "mailvault"  # Use: Marker stored in every vault file to recognise the format. Type: str. Range: "mailvault"
VAULT_FORMAT_VERSION = 1  # Use: Version of the persisted vault layout. Type: int. Range: Positive integer.
MAIL_ACCOUNTS_KEY = "MailAccounts"  # Use: Reserved setting name holding the encrypted mail-account collection. Type: str. Range: Any string not used for preferences.

# Mail Settings
IMAP_DEFAULT_PORT = 993  # Use: Default IMAP port for new accounts (implicit TLS). Type: int. Range: 1 to 65535.
SMTP_DEFAULT_PORT = 587  # Use: Default SMTP submission port for new accounts (STARTTLS). Type: int. Range: 1 to 65535.
MAIL_CONNECT_TIMEOUT_SECONDS = 30  # Use: Network timeout for opening a mail session. Type: int. Range: Positive integer.

# Vault Management Settings
MAX_RECENT_VAULTS = 10  # Use: Maximum number of recently opened vault paths to remember. Type: int. Range: Positive integer.

# File and Directory Names
CONFIG_DIR_NAME = ".mailvault"  # Use: Name of the hidden directory within the user's home directory where MailVault stores its files. Type: str. Range: Any valid directory name.
CONFIG_DIR = os.environ.get("MAILVAULT_HOME", os.path.join(os.path.expanduser("~"), CONFIG_DIR_NAME))  # Use: Directory holding the default vault and the recent-vault list. Overridden by MAILVAULT_HOME. Type: str. Range: Any writable directory path.
DEFAULT_VAULT_FILE = "vault.json"  # Use: Default filename for the encrypted settings vault. Type: str. Range: Any valid filename.
RECENT_VAULTS_FILE = "recent_vaults.txt"  # Use: Filename for storing the list of recently opened vault paths. Type: str. Range: Any valid filename.
TEMP_FILE_SUFFIX = ".tmp"  # Use: Suffix of the temporary file a vault is written to before it replaces the real file. Type: str. Range: Any filename suffix.

# Logging Settings
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'  # Use: Format passed to logging.basicConfig by the CLI. Type: str. Range: Any logging format string.
