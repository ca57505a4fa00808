"""
Unit tests for the settings vault and its account collection.
"""
import json
import os
import stat
import sys
import threading
from dataclasses import replace

import pytest

from mailvault import config
from mailvault.accounts import MailAccountRecord
from mailvault.crypto import KDF_PBKDF2, KdfParameters
from mailvault.exceptions import (
    AccountExistsError,
    AccountNotFoundError,
    AuthenticationFailedError,
    IntegrityError,
    VaultFormatError,
    VaultKeyNotSetError,
    VaultNotLoadedError,
)
from mailvault.secure_memory import SecureString, VaultKey
from mailvault.settings import EncryptedObjectSetting, EncryptedSecureStringSetting
from mailvault.vault import SettingsVault


@pytest.fixture
def vault_path(tmp_path):
    return str(tmp_path / "vault.json")


class TestCreate:
    """Test new vaults."""

    def test_starts_with_empty_account_collection(self, vault):
        assert config.MAIL_ACCOUNTS_KEY in vault
        assert vault.mail_accounts() == []
        assert vault.has_changed
        assert vault.is_unlocked()

    def test_kdf_parameters_follow_config(self, vault, fast_kdf):
        assert vault.crypto.kdf == fast_kdf

    def test_takes_its_own_copy_of_the_key(self, fast_kdf, passphrase):
        with VaultKey.from_passphrase(passphrase) as key:
            vault = SettingsVault.create(key, kdf=fast_kdf)
        with vault:
            assert vault.is_unlocked()
            assert vault.mail_accounts() == []

    def test_repr_hides_key(self, vault, passphrase):
        assert passphrase not in repr(vault)
        assert "unlocked" in repr(vault)


class TestAccounts:
    """Test the account collection."""

    def test_add_account(self, vault, make_account):
        record = make_account("work")
        vault.add_account(record)
        assert vault.mail_accounts() == [record]
        assert vault.find_account(record.id) == record

    def test_add_keeps_order(self, vault, make_account):
        records = [make_account(name) for name in ("work", "home", "club")]
        for record in records:
            vault.add_account(record)
        assert [a.id for a in vault.mail_accounts()] == [r.id for r in records]

    def test_duplicate_id_rejected(self, vault, make_account):
        record = make_account("work", account_id="fixed-id")
        vault.add_account(record)
        with pytest.raises(AccountExistsError) as exc_info:
            vault.add_account(make_account("other", account_id="fixed-id"))
        assert exc_info.value.account.id == "fixed-id"
        assert vault.mail_accounts() == [record]

    def test_remove_account(self, vault, make_account):
        work, home = make_account("work"), make_account("home")
        vault.add_account(work)
        vault.add_account(home)
        vault.remove_account(work)
        assert vault.mail_accounts() == [home]

    def test_remove_absent_account(self, vault, make_account):
        vault.add_account(make_account("work"))
        with pytest.raises(AccountNotFoundError):
            vault.remove_account(make_account("home"))
        assert len(vault.mail_accounts()) == 1

    def test_update_account(self, vault, make_account):
        record = make_account("work")
        vault.add_account(record)
        vault.add_account(make_account("home"))
        updated = replace(record, display_name="Office", imap_port=143, imap_use_ssl=False)
        vault.update_account(updated)
        accounts = vault.mail_accounts()
        assert accounts[0] == updated
        assert len(accounts) == 2

    def test_update_absent_account(self, vault, make_account):
        with pytest.raises(AccountNotFoundError):
            vault.update_account(make_account("work"))

    def test_collection_is_reencrypted(self, vault, make_account):
        before = vault[config.MAIL_ACCOUNTS_KEY]
        vault.add_account(make_account("work"))
        after = vault[config.MAIL_ACCOUNTS_KEY]
        assert after.salt != before.salt
        assert after.cipher_bytes != before.cipher_bytes

    def test_username_defaults_to_email(self, make_account):
        record = make_account("work")
        assert record.username == "work@example.com"
        assert record.password.key_name == f"{record.id}.password"

    def test_unlock_account(self, vault, make_account):
        vault.add_account(make_account("work"))
        record = vault.mail_accounts()[0]
        with vault.unlock_account(record) as unlocked:
            assert unlocked.id == record.id
            assert unlocked.password.reveal_text() == "work-password"
        assert unlocked.password.released

    def test_change_password(self, vault, make_account):
        record = make_account("work")
        vault.add_account(record)
        with SecureString.from_str("new-password") as password:
            vault.update_account(record.with_password(vault.vault_key, password, vault.crypto))
        with vault.unlock_account(vault.find_account(record.id)) as unlocked:
            assert unlocked.password.reveal_text() == "new-password"

    def test_listing_does_not_decrypt_passwords(self, vault, make_account):
        vault.add_account(make_account("work"))
        record = vault.mail_accounts()[0]
        assert isinstance(record.password, EncryptedSecureStringSetting)
        assert "work-password" not in repr(record)

    def test_concurrent_adds(self, vault, make_account):
        records = [make_account(f"user{i}") for i in range(8)]
        errors = []

        def add(record):
            try:
                vault.add_account(record)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=add, args=(record,)) for record in records]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert {a.id for a in vault.mail_accounts()} == {r.id for r in records}


class TestPreconditions:
    """Test operations on vaults without a key or without settings."""

    def test_no_key(self):
        vault = SettingsVault()
        with pytest.raises(VaultKeyNotSetError):
            vault.mail_accounts()
        with pytest.raises(VaultKeyNotSetError):
            vault.set_value("theme", "dark")

    def test_no_settings(self, passphrase):
        with SettingsVault(vault_key=VaultKey.from_passphrase(passphrase)) as vault:
            with pytest.raises(VaultNotLoadedError):
                vault.mail_accounts()

    def test_key_checked_before_settings(self):
        with pytest.raises(VaultKeyNotSetError):
            SettingsVault().mail_accounts()

    def test_missing_collection_is_empty(self, vault):
        vault.set_value("theme", "dark")
        vault.remove(config.MAIL_ACCOUNTS_KEY)
        assert vault.mail_accounts() == []

    def test_closed_vault(self, vault, make_account):
        vault.add_account(make_account("work"))
        vault.close()
        assert not vault.is_unlocked()
        assert len(vault) == 0
        with pytest.raises(VaultKeyNotSetError):
            vault.mail_accounts()

    def test_explicit_key(self, vault, make_account, passphrase):
        vault.add_account(make_account("work"))
        with VaultKey.from_passphrase(passphrase) as key:
            assert len(vault.mail_accounts(key)) == 1
        with VaultKey.from_passphrase("not the passphrase") as wrong_key:
            with pytest.raises(AuthenticationFailedError):
                vault.mail_accounts(wrong_key)


class TestSettings:
    """Test generic setting access and preferences."""

    def test_preference_round_trip(self, vault):
        vault.set_value("theme", "dark")
        vault.set_value("limits", {"fetch": 50, "folders": ["INBOX", "Sent"]})
        assert vault.get_value("theme", str) == "dark"
        assert vault.get_value("limits", dict) == {"fetch": 50, "folders": ["INBOX", "Sent"]}

    def test_missing_preference_default(self, vault):
        assert vault.get_value("missing", str) is None
        assert vault.get_value("missing", int, default=3) == 3

    def test_reserved_name(self, vault):
        with pytest.raises(ValueError):
            vault.set_value(config.MAIL_ACCOUNTS_KEY, [])

    def test_secure_string_is_not_a_preference(self, vault):
        with SecureString.from_str("token") as token:
            vault.set("token", EncryptedSecureStringSetting.create("token", vault.vault_key, token,
                                                                   crypto=vault.crypto))
        with pytest.raises(TypeError):
            vault.get_value("token", str)

    def test_set_renames_setting(self, vault):
        setting = EncryptedObjectSetting.create(vault.vault_key, 1, key_name="old", crypto=vault.crypto)
        vault["new"] = setting
        assert vault["new"].key_name == "new"
        assert vault.get_value("new", int) == 1

    def test_set_rejects_other_types(self, vault):
        with pytest.raises(TypeError):
            vault.set("theme", "dark")

    def test_remove(self, vault):
        vault.set_value("theme", "dark")
        assert vault.remove("theme")
        assert not vault.remove("theme")
        assert "theme" not in vault

    def test_keys(self, vault):
        vault.set_value("theme", "dark")
        assert sorted(vault.keys()) == sorted([config.MAIL_ACCOUNTS_KEY, "theme"])
        assert len(vault) == 2

    def test_verify(self, vault):
        vault.set_value("theme", "dark")
        vault.verify("theme")
        tampered = vault["theme"]
        flipped = bytearray(tampered.cipher_bytes)
        flipped[0] ^= 0x80
        vault["theme"] = replace(tampered, cipher_bytes=bytes(flipped))
        with pytest.raises(IntegrityError):
            vault.verify("theme")

    def test_copy_is_independent(self, vault):
        vault.set_value("theme", "dark")
        clone = vault.copy()
        clone.set_value("theme", "light")
        clone.close()
        assert vault.is_unlocked()
        assert vault.get_value("theme", str) == "dark"


class TestPersistence:
    """Test saving and loading vault files."""

    def test_save_and_open(self, vault, make_account, vault_path, passphrase):
        record = make_account("work")
        vault.add_account(record)
        vault.set_value("theme", "dark")
        assert vault.save(vault_path)
        assert not vault.has_changed

        with SettingsVault.open(vault_path, passphrase) as reopened:
            assert reopened.mail_accounts() == [record]
            assert reopened.get_value("theme", str) == "dark"
            assert reopened.crypto.kdf == vault.crypto.kdf
            assert not reopened.has_changed
            with reopened.unlock_account(reopened.mail_accounts()[0]) as unlocked:
                assert unlocked.password.reveal_text() == "work-password"

    def test_file_layout(self, vault, make_account, vault_path, passphrase):
        vault.add_account(make_account("work"))
        vault.save(vault_path)
        with open(vault_path, encoding="utf-8") as f:
            text = f.read()
        document = json.loads(text)
        assert document["format"] == config.VAULT_FORMAT_NAME
        assert document["version"] == config.VAULT_FORMAT_VERSION
        assert document["settings"][config.MAIL_ACCOUNTS_KEY]["keyName"] == config.MAIL_ACCOUNTS_KEY
        assert passphrase not in text
        assert "work-password" not in text
        assert "work@example.com" not in text

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_owner_only_permissions(self, vault, vault_path):
        vault.save(vault_path)
        assert stat.S_IMODE(os.stat(vault_path).st_mode) == 0o600

    def test_refuses_to_overwrite(self, vault, vault_path):
        with open(vault_path, "w", encoding="utf-8") as f:
            f.write("existing")
        assert not vault.save(vault_path)
        with open(vault_path, encoding="utf-8") as f:
            assert f.read() == "existing"
        assert vault.has_changed

    def test_overwrite(self, vault, vault_path, passphrase):
        vault.save(vault_path)
        vault.set_value("theme", "dark")
        assert vault.save(overwrite=True)
        with SettingsVault.open(vault_path, passphrase) as reopened:
            assert reopened.get_value("theme", str) == "dark"

    def test_save_without_path(self, vault):
        with pytest.raises(ValueError):
            vault.save()

    def test_failed_save_keeps_old_file(self, vault, vault_path, monkeypatch):
        vault.save(vault_path)
        with open(vault_path, "rb") as f:
            original = f.read()

        def fail_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("mailvault.vault.os.replace", fail_replace)
        vault.set_value("theme", "dark")
        with pytest.raises(OSError):
            vault.save(overwrite=True)

        with open(vault_path, "rb") as f:
            assert f.read() == original
        assert os.listdir(os.path.dirname(vault_path)) == ["vault.json"]
        assert vault.has_changed

    def test_open_wrong_passphrase(self, vault, vault_path):
        vault.save(vault_path)
        with pytest.raises(AuthenticationFailedError):
            SettingsVault.open(vault_path, "not the passphrase")

    def test_open_without_verify(self, vault, vault_path):
        vault.save(vault_path)
        with SettingsVault.open(vault_path, "not the passphrase", verify=False) as reopened:
            assert len(reopened) == 1
            with pytest.raises(AuthenticationFailedError):
                reopened.mail_accounts()

    def test_open_missing_file(self, tmp_path, passphrase):
        with pytest.raises(FileNotFoundError):
            SettingsVault.open(str(tmp_path / "missing.json"), passphrase)

    def test_malformed_file_keeps_memory(self, vault, tmp_path):
        vault.set_value("theme", "dark")
        bad_path = tmp_path / "bad.json"
        bad_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(VaultFormatError):
            vault.load(str(bad_path))
        assert vault.get_value("theme", str) == "dark"
        assert vault.path is None

    @pytest.mark.parametrize("mutate", [
        lambda d: d.update(format="other"),
        lambda d: d.update(version=99),
        lambda d: d.pop("kdf"),
        lambda d: d.update(kdf={"algorithm": "md5"}),
        lambda d: d.update(settings=[]),
        lambda d: d["settings"]["MailAccounts"].pop("iv"),
        lambda d: d["settings"]["MailAccounts"].update(keyName="Renamed"),
    ], ids=["format", "version", "no-kdf", "bad-kdf", "settings-list", "missing-field", "name-mismatch"])
    def test_malformed_documents(self, vault, vault_path, passphrase, mutate):
        document = vault.to_dict()
        mutate(document)
        with open(vault_path, "w", encoding="utf-8") as f:
            json.dump(document, f)
        with pytest.raises(VaultFormatError):
            SettingsVault.open(vault_path, passphrase)

    def test_record_round_trip(self, make_account):
        record = make_account("work", imap_port=143, smtp_host="smtp.example.com")
        assert MailAccountRecord.from_dict(json.loads(json.dumps(record.to_dict()))) == record


class TestKeyDerivationParameters:
    """Settings must stay readable under the parameters they were encrypted with."""

    @pytest.fixture
    def pbkdf2_vault(self, passphrase):
        with SettingsVault.create(passphrase, kdf=KdfParameters(algorithm=KDF_PBKDF2, iterations=1000)) as v:
            yield v

    def test_foreign_parameters_rejected(self, pbkdf2_vault):
        setting = EncryptedObjectSetting.create(pbkdf2_vault.vault_key, {"ValueA": "hello", "ValueB": 42})
        with pytest.raises(ValueError):
            pbkdf2_vault.set("pref", setting)
        assert "pref" not in pbkdf2_vault

    def test_vault_parameters_accepted(self, pbkdf2_vault):
        setting = EncryptedObjectSetting.create(pbkdf2_vault.vault_key, {"ValueA": "hello", "ValueB": 42},
                                                crypto=pbkdf2_vault.crypto)
        pbkdf2_vault.set("pref", setting)
        assert pbkdf2_vault.get_value("pref", dict) == {"ValueA": "hello", "ValueB": 42}

    def test_readable_after_config_change(self, vault, make_account, vault_path, passphrase, monkeypatch):
        vault.add_account(make_account("work"))
        vault.set_value("theme", "dark")
        vault.save(vault_path)

        monkeypatch.setattr(config, "ARGON2_TIME_COST", 2)
        monkeypatch.setattr(config, "KDF_ALGORITHM", KDF_PBKDF2)
        with SettingsVault.open(vault_path, passphrase) as reopened:
            assert reopened.get_value("theme", str) == "dark"
            with reopened.unlock_account(reopened.mail_accounts()[0]) as unlocked:
                assert unlocked.password.reveal_text() == "work-password"

    def test_account_password_keeps_its_parameters(self, pbkdf2_vault, vault_path, passphrase, monkeypatch):
        with SecureString.from_str("secret") as password:
            record = MailAccountRecord.create(pbkdf2_vault.vault_key, "Work", "work@example.com",
                                              "imap.example.com", password)
        pbkdf2_vault.add_account(record)
        pbkdf2_vault.save(vault_path)

        monkeypatch.setattr(config, "ARGON2_TIME_COST", 2)
        with SettingsVault.open(vault_path, passphrase) as reopened:
            with reopened.unlock_account(reopened.mail_accounts()[0]) as unlocked:
                assert unlocked.password.reveal_text() == "secret"

    def test_password_of_another_account_rejected(self, vault, make_account):
        work, home = make_account("work"), make_account("home")
        forged = replace(work, password=home.password)
        with pytest.raises(IntegrityError):
            vault.unlock_account(forged)


class TestClosedVault:
    """A closed handle must not change memory or disk."""

    def test_save_keeps_file(self, vault, make_account, vault_path, passphrase):
        vault.add_account(make_account("work"))
        vault.save(vault_path)
        with open(vault_path, "rb") as f:
            original = f.read()

        vault.close()
        with pytest.raises(VaultNotLoadedError):
            vault.save(vault_path, overwrite=True)

        with open(vault_path, "rb") as f:
            assert f.read() == original
        with SettingsVault.open(vault_path, passphrase) as reopened:
            assert len(reopened.mail_accounts()) == 1

    def test_set_and_remove(self, vault, crypto, vault_key):
        setting = EncryptedObjectSetting.create(vault_key, "dark", key_name="theme", crypto=crypto)
        vault.close()
        with pytest.raises(VaultNotLoadedError):
            vault.set("theme", setting)
        with pytest.raises(VaultNotLoadedError):
            vault.remove(config.MAIL_ACCOUNTS_KEY)
        assert len(vault) == 0

    def test_load(self, vault, vault_path):
        vault.save(vault_path)
        vault.close()
        with pytest.raises(VaultNotLoadedError):
            vault.load(vault_path)
        assert len(vault) == 0

    def test_copy(self, vault):
        vault.close()
        with pytest.raises(VaultNotLoadedError):
            vault.copy()
