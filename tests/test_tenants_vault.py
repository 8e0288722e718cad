"""Tests for tenants/vault.py and tenants/store.py modules."""

import json

import pytest

from storeapp_builder.db import create_all_tables, get_engine, get_session_factory
from storeapp_builder.tenants.store import (
    InMemoryTenantSettingsStore,
    SqlTenantSettingsStore,
    TenantNotFoundError,
)
from storeapp_builder.tenants.vault import (
    ENCRYPTED_FIELD,
    SETTINGS_KEY,
    ConfigDecryptionError,
    ConfigVault,
    TenantConfigService,
    derive_key,
)

SECRET = "unit-test-secret"


@pytest.fixture
def vault() -> ConfigVault:
    return ConfigVault(SECRET)


@pytest.fixture
def store() -> InMemoryTenantSettingsStore:
    return InMemoryTenantSettingsStore({"tenant1": {"theme": "dark"}})


@pytest.fixture
def service(store, vault) -> TenantConfigService:
    return TenantConfigService(store, vault)


class TestConfigVault:
    """Tests for symmetric encryption."""

    def test_derive_key_pads_and_truncates(self):
        assert derive_key("abc") == b"abc" + b"0" * 29
        assert derive_key("x" * 40) == b"x" * 32

    def test_round_trip(self, vault):
        text = json.dumps({"appName": "Café Shop", "colors": ["#fff"]})
        assert vault.decrypt(vault.encrypt(text)) == text

    def test_format_and_fresh_iv(self, vault):
        first = vault.encrypt("same")
        second = vault.encrypt("same")

        iv_hex, _, ciphertext_hex = first.partition(":")
        assert len(iv_hex) == 32
        assert len(ciphertext_hex) % 32 == 0
        assert first != second

    @pytest.mark.parametrize(
        "data",
        [
            "no-separator",
            "zz:00",
            "0011:" + "00" * 16,
            "00" * 16 + ":",
            "00" * 16 + ":" + "00" * 10,
        ],
    )
    def test_malformed_input(self, vault, data):
        with pytest.raises(ConfigDecryptionError):
            vault.decrypt(data)

    def test_wrong_key(self, vault):
        ciphertext = vault.encrypt(json.dumps({"appName": "Shop"}))
        other = ConfigVault("another-secret")
        try:
            result = other.decrypt(ciphertext)
        except ConfigDecryptionError:
            return
        assert result != json.dumps({"appName": "Shop"})

    def test_tampered_ciphertext(self, vault):
        iv_hex, _, ciphertext_hex = vault.encrypt("hello").partition(":")
        tampered_iv = bytes(b ^ 0xFF for b in bytes.fromhex(iv_hex)).hex()
        try:
            result = vault.decrypt(f"{tampered_iv}:{ciphertext_hex}")
        except ConfigDecryptionError:
            return
        assert result != "hello"


class TestTenantConfigService:
    """Tests for reading and writing tenant build settings."""

    def test_save_and_get(self, service, store):
        config = {"appName": "Shop", "primaryColor": "#000000"}
        assert service.save_config("tenant1", config) == config

        assert service.get_config("tenant1") == config
        stored = store.get_settings("tenant1")
        assert set(stored[SETTINGS_KEY]) == {ENCRYPTED_FIELD}
        assert "Shop" not in stored[SETTINGS_KEY][ENCRYPTED_FIELD]

    def test_other_settings_are_preserved(self, service, store):
        service.save_config("tenant1", {"appName": "Shop"})
        assert store.get_settings("tenant1")["theme"] == "dark"

    def test_unknown_tenant(self, service):
        assert service.get_config("nobody") is None
        with pytest.raises(TenantNotFoundError):
            service.save_config("nobody", {"appName": "Shop"})

    def test_nothing_saved(self, service):
        assert service.get_config("tenant1") is None

    def test_undecryptable_value_reads_as_absent(self, store, vault):
        store.update_settings(
            "tenant1", {SETTINGS_KEY: {ENCRYPTED_FIELD: "not-encrypted-at-all"}}
        )
        service = TenantConfigService(store, vault)
        assert service.get_config("tenant1") is None

    def test_other_key_reads_as_absent(self, service, store):
        service.save_config("tenant1", {"appName": "Shop"})
        other = TenantConfigService(store, ConfigVault("x" * 32))
        assert other.get_config("tenant1") is None

    def test_legacy_plaintext_section(self, store, vault):
        store.update_settings("tenant1", {SETTINGS_KEY: {"appName": "Old Shop"}})
        service = TenantConfigService(store, vault)
        assert service.get_config("tenant1") == {"appName": "Old Shop"}

    def test_non_object_value_is_returned_as_stored(self, store, vault):
        store.update_settings(
            "tenant1",
            {SETTINGS_KEY: {ENCRYPTED_FIELD: vault.encrypt(json.dumps(["a", "b"]))}},
        )
        service = TenantConfigService(store, vault)
        assert service.get_config("tenant1") == ["a", "b"]


class TestSqlTenantSettingsStore:
    """Tests for the database-backed store."""

    @pytest.fixture
    def sql_store(self) -> SqlTenantSettingsStore:
        engine = get_engine("sqlite://")
        create_all_tables(engine)
        return SqlTenantSettingsStore(get_session_factory(engine))

    def test_unknown_tenant(self, sql_store):
        assert sql_store.get_settings("nobody") is None
        with pytest.raises(TenantNotFoundError):
            sql_store.update_settings("nobody", {})

    def test_create_and_update(self, sql_store):
        sql_store.create_tenant("tenant1", name="Tenant One", settings={"a": 1})
        sql_store.update_settings("tenant1", {"a": 2, "b": {"c": 3}})

        assert sql_store.get_settings("tenant1") == {"a": 2, "b": {"c": 3}}

    def test_create_is_idempotent(self, sql_store):
        sql_store.create_tenant("tenant1", settings={"a": 1})
        sql_store.create_tenant("tenant1", settings={"a": 2})
        assert sql_store.get_settings("tenant1") == {"a": 1}

    def test_service_round_trip(self, sql_store, vault):
        sql_store.create_tenant("tenant1")
        service = TenantConfigService(sql_store, vault)

        service.save_config("tenant1", {"appName": "Shop", "iconUrl": None})

        assert service.get_config("tenant1") == {"appName": "Shop", "iconUrl": None}
