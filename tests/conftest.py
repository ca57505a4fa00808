"""
Shared fixtures for the vault tests.

Key derivation is tuned down to the cheapest Argon2id parameters so the
suite runs quickly; the code paths are the same as with the defaults.
"""
import pytest

from mailvault import config
from mailvault.crypto import CryptoManager, KdfParameters
from mailvault.secure_memory import SecureString, VaultKey
from mailvault.vault import SettingsVault


@pytest.fixture(autouse=True)
def fast_kdf(monkeypatch, tmp_path):
    """Cheap KDF parameters and an isolated config directory for every test."""
    monkeypatch.setattr(config, "ARGON2_TIME_COST", 1)
    monkeypatch.setattr(config, "ARGON2_MEMORY_COST", 64)
    monkeypatch.setattr(config, "ARGON2_PARALLELISM", 1)
    monkeypatch.setattr(config, "PBKDF2_ITERATIONS", 1000)
    monkeypatch.setattr(config, "CONFIG_DIR", str(tmp_path / "config"))
    return KdfParameters.default()


@pytest.fixture
def passphrase():
    return "correct horse battery staple"


@pytest.fixture
def vault_key(passphrase):
    with VaultKey.from_passphrase(passphrase) as key:
        yield key


@pytest.fixture
def crypto(fast_kdf):
    return CryptoManager(fast_kdf)


@pytest.fixture
def vault(passphrase, fast_kdf):
    with SettingsVault.create(passphrase, kdf=fast_kdf) as v:
        yield v


@pytest.fixture
def make_account(vault):
    """Factory for account records encrypted under the vault fixture's key."""
    def _make(name="work", **kwargs):
        with SecureString.from_str(f"{name}-password") as password:
            return vault.new_account(
                display_name=name.title(),
                email_address=f"{name}@example.com",
                imap_host=f"imap.{name}.example.com",
                password=password,
                **kwargs
            )
    return _make
