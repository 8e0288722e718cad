"""Encryption of tenant build settings at rest.

Ciphertext is ``<iv_hex>:<ciphertext_hex>`` using AES-256-CBC with PKCS7
padding and a random 16-byte IV per message.
"""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING, Any

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from storeapp_builder.tenants.store import TenantNotFoundError, TenantSettingsStore

if TYPE_CHECKING:
    from storeapp_builder.config import Settings

logger = logging.getLogger(__name__)

KEY_SIZE = 32
IV_SIZE = 16
SETTINGS_KEY = "appBuilder"
ENCRYPTED_FIELD = "encryptedData"


class ConfigDecryptionError(Exception):
    """Raised when ciphertext cannot be decrypted."""


def derive_key(secret: str) -> bytes:
    """Pad a secret with '0' bytes or truncate it to 32 bytes."""
    return secret.encode("utf-8").ljust(KEY_SIZE, b"0")[:KEY_SIZE]


class ConfigVault:
    """Symmetric encryption of configuration text.

    Args:
        secret: Encryption secret.
    """

    def __init__(self, secret: str) -> None:
        self._key = derive_key(secret)

    @classmethod
    def from_settings(cls, settings: Settings) -> ConfigVault:
        return cls(settings.encryption_key.get_secret_value())

    def encrypt(self, text: str) -> str:
        """Encrypt text.

        Returns:
            ``<iv_hex>:<ciphertext_hex>``.
        """
        iv = os.urandom(IV_SIZE)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(text.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, data: str) -> str:
        """Decrypt text produced by :meth:`encrypt`.

        Raises:
            ConfigDecryptionError: If the input is malformed, was encrypted
                with another key, or is not UTF-8 text.
        """
        iv_hex, sep, ciphertext_hex = data.partition(":")
        if not sep:
            raise ConfigDecryptionError("Ciphertext has no IV separator")
        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError as e:
            raise ConfigDecryptionError(f"Ciphertext is not valid hex: {e}") from e
        if len(iv) != IV_SIZE:
            raise ConfigDecryptionError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
        if not ciphertext or len(ciphertext) % IV_SIZE:
            raise ConfigDecryptionError("Ciphertext length is not a block multiple")

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            plain = unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise ConfigDecryptionError("Invalid padding") from e
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ConfigDecryptionError("Decrypted data is not UTF-8 text") from e


class TenantConfigService:
    """Reads and writes a tenant's encrypted app builder configuration.

    Only the ``appBuilder`` key of the settings document is touched.

    Args:
        store: Tenant settings store.
        vault: Vault used for the configuration.
    """

    def __init__(self, store: TenantSettingsStore, vault: ConfigVault) -> None:
        self.store = store
        self.vault = vault

    def get_config(self, tenant_id: str) -> Any:
        """Return the decrypted configuration.

        Returns:
            The decrypted JSON value as stored (normally an object), or
            None when the tenant is unknown, nothing is stored, or the
            stored value cannot be decrypted.
        """
        settings = self.store.get_settings(tenant_id)
        if not settings:
            return None
        section = settings.get(SETTINGS_KEY)
        if not isinstance(section, dict):
            return None
        encrypted = section.get(ENCRYPTED_FIELD)
        if encrypted is None:
            # Stored before encryption was introduced
            return section
        if not isinstance(encrypted, str):
            logger.warning("Tenant %s: malformed app builder settings", tenant_id)
            return None
        try:
            config = json.loads(self.vault.decrypt(encrypted))
        except (ConfigDecryptionError, json.JSONDecodeError) as e:
            logger.warning(
                "Tenant %s: cannot decrypt app builder settings: %s", tenant_id, e
            )
            return None
        return config

    def save_config(self, tenant_id: str, config: dict[str, Any]) -> dict[str, Any]:
        """Encrypt and store the configuration.

        Returns:
            The saved configuration.

        Raises:
            TenantNotFoundError: If the tenant does not exist.
        """
        settings = self.store.get_settings(tenant_id)
        if settings is None:
            raise TenantNotFoundError(tenant_id)
        settings[SETTINGS_KEY] = {ENCRYPTED_FIELD: self.vault.encrypt(json.dumps(config))}
        self.store.update_settings(tenant_id, settings)
        logger.info("Tenant %s: saved app builder settings", tenant_id)
        return config


__all__ = [
    "ConfigDecryptionError",
    "ConfigVault",
    "TenantConfigService",
    "derive_key",
]
