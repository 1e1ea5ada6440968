"""Tests for keystore crypto helpers, the KeyStore container and both storage backends."""

import os
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy.exc import OperationalError

from preflight.keystore.crypto import (
    CryptoError,
    compute_thumbprint,
    decrypt_private_key,
    encrypt_private_key,
    key_matches_certificate,
    resolve_password,
)
from preflight.keystore.database_storage import KeystoreDatabaseStorage
from preflight.keystore.keystore import DEFAULT_ALIAS, KeyStore
from preflight.keystore.storage import KeystoreLocation, KeystoreStorageError
from shared.config import Settings


class TestResolvePassword:
    """Tests for keystore password resolution."""

    def test_explicit_password_wins(self, settings):
        settings.CA_PASSWORD = "ca-pass"
        assert resolve_password(settings, "explicit") == "explicit"

    def test_ca_password_preferred_over_secret(self, settings):
        settings.CA_PASSWORD = "ca-pass"
        assert resolve_password(settings) == "ca-pass"

    def test_falls_back_to_password_secret(self, settings):
        assert resolve_password(settings) == "cluster-shared-secret"

    def test_empty_explicit_password_is_ignored(self, settings):
        assert resolve_password(settings, "") == "cluster-shared-secret"

    def test_re_evaluated_on_every_call(self):
        """Changing settings between calls changes the result."""
        settings = Settings(_env_file=None, PASSWORD_SECRET="first", CA_PASSWORD=None)
        assert resolve_password(settings) == "first"

        settings.CA_PASSWORD = "second"
        assert resolve_password(settings) == "second"


class TestCryptoHelpers:
    """Tests for private key protection and certificate helpers."""

    def test_encrypt_decrypt_roundtrip(self, ca_material):
        protected = encrypt_private_key(ca_material.private_key, "secret")
        assert b"ENCRYPTED" in protected

        key = decrypt_private_key(protected, "secret")
        assert key_matches_certificate(key, ca_material.certificate)

    def test_no_password_leaves_key_unencrypted(self, ca_material):
        protected = encrypt_private_key(ca_material.private_key, None)
        assert b"ENCRYPTED" not in protected
        assert decrypt_private_key(protected, None) is not None

    def test_wrong_password_raises(self, ca_material):
        protected = encrypt_private_key(ca_material.private_key, "secret")
        with pytest.raises(CryptoError, match="unlock"):
            decrypt_private_key(protected, "wrong")

    def test_missing_password_raises(self, ca_material):
        protected = encrypt_private_key(ca_material.private_key, "secret")
        with pytest.raises(CryptoError, match="no password"):
            decrypt_private_key(protected, None)

    def test_password_for_unprotected_key_raises(self, ca_material):
        protected = encrypt_private_key(ca_material.private_key, None)
        with pytest.raises(CryptoError, match="unprotected"):
            decrypt_private_key(protected, "secret")

    def test_key_matches_certificate_rejects_other_key(self, ca_material):
        other = ec.generate_private_key(ec.SECP256R1())
        assert not key_matches_certificate(other, ca_material.certificate)

    def test_compute_thumbprint(self, ca_material):
        thumbprint = compute_thumbprint(ca_material.certificate)
        assert len(thumbprint) == 64
        assert thumbprint == thumbprint.lower()
        assert thumbprint == compute_thumbprint(ca_material.certificate)


class TestKeyStore:
    """Tests for the in-memory keystore container."""

    def test_set_and_get_key_entry(self, ca_material):
        keystore = KeyStore()
        keystore.set_key_entry("ca", ca_material.private_key, "pw", ca_material.certificate_chain)

        assert len(keystore) == 1
        assert "ca" in keystore
        assert keystore.aliases() == ["ca"]
        assert keystore.get_certificate("ca") == ca_material.certificate
        assert keystore.get_certificate_chain("ca") == ca_material.certificate_chain
        assert key_matches_certificate(keystore.get_key("ca", "pw"), ca_material.certificate)

    def test_missing_alias_returns_none(self):
        keystore = KeyStore()
        assert keystore.get_key("ca", "pw") is None
        assert keystore.get_certificate("ca") is None
        assert keystore.get_certificate_chain("ca") is None

    def test_set_key_entry_replaces_same_alias(self, ca_material):
        keystore = KeyStore()
        keystore.set_key_entry("ca", ca_material.private_key, "one", ca_material.certificate_chain)
        keystore.set_key_entry("ca", ca_material.private_key, "two", ca_material.certificate_chain)

        assert len(keystore) == 1
        assert keystore.get_key("ca", "two") is not None

    def test_empty_chain_rejected(self, ca_material):
        with pytest.raises(ValueError, match="empty"):
            KeyStore().set_key_entry("ca", ca_material.private_key, "pw", [])

    def test_mismatched_leaf_rejected(self, ca_material):
        other = ec.generate_private_key(ec.SECP256R1())
        with pytest.raises(ValueError, match="does not match"):
            KeyStore().set_key_entry("ca", other, "pw", ca_material.certificate_chain)

    def test_pkcs12_roundtrip_rewraps_password(self, ca_material):
        """Entries are unlocked with the entry password and stored under the store password."""
        keystore = ca_material.to_keystore("ca", "entry-pw")
        data = keystore.to_pkcs12("entry-pw", "store-pw")

        loaded = KeyStore.from_pkcs12(data, "store-pw")
        assert loaded.aliases() == ["ca"]
        assert loaded.get_certificate("ca") == ca_material.certificate
        assert loaded.get_key("ca", "store-pw") is not None

    def test_from_pkcs12_with_explicit_alias(self, ca_material):
        data = ca_material.to_keystore("original", "pw").to_pkcs12("pw", "pw")
        loaded = KeyStore.from_pkcs12(data, "pw", alias="ca")
        assert loaded.aliases() == ["ca"]

    def test_from_pkcs12_wrong_password(self, ca_material):
        data = ca_material.to_keystore("ca", "pw").to_pkcs12("pw", "pw")
        with pytest.raises(ValueError):
            KeyStore.from_pkcs12(data, "wrong")

    def test_from_pkcs12_garbage(self):
        with pytest.raises(ValueError):
            KeyStore.from_pkcs12(b"not a keystore", "pw")

    def test_to_pkcs12_requires_single_entry(self, ca_material):
        with pytest.raises(ValueError, match="exactly one"):
            KeyStore().to_pkcs12("pw", "pw")

        keystore = ca_material.to_keystore("a", "pw")
        keystore.set_key_entry("b", ca_material.private_key, "pw", ca_material.certificate_chain)
        with pytest.raises(ValueError, match="exactly one"):
            keystore.to_pkcs12("pw", "pw")

    def test_to_pkcs12_wrong_entry_password(self, ca_material):
        keystore = ca_material.to_keystore("ca", "pw")
        with pytest.raises(CryptoError):
            keystore.to_pkcs12("wrong", "pw")

    def test_default_alias_constant(self):
        assert DEFAULT_ALIAS == "key"


class TestKeystoreLocation:
    """Tests for keystore location keys."""

    def test_certificate_authority_location(self):
        assert KeystoreLocation.certificate_authority().key == "certificate-authority"

    def test_locations_compare_by_key(self):
        assert KeystoreLocation("x") == KeystoreLocation("x")


class TestKeystoreFileStorage:
    """Tests for the filesystem backend."""

    @pytest.mark.asyncio
    async def test_read_missing_returns_none(self, file_storage):
        assert await file_storage.read(KeystoreLocation("absent"), "pw") is None

    @pytest.mark.asyncio
    async def test_write_then_read(self, file_storage, ca_material):
        location = KeystoreLocation.certificate_authority()
        await file_storage.write(location, ca_material.to_keystore("ca", "pw"), "pw", "store")

        path = file_storage.path_for(location)
        assert path.name == "certificate-authority.p12"
        assert path.is_file()
        assert oct(os.stat(path).st_mode & 0o777) == oct(0o600)

        loaded = await file_storage.read(location, "store")
        assert loaded.get_certificate("ca") == ca_material.certificate

    @pytest.mark.asyncio
    async def test_write_replaces_existing(self, file_storage, ca_material):
        location = KeystoreLocation("ca")
        await file_storage.write(location, ca_material.to_keystore("first", "pw"), "pw", "pw")
        await file_storage.write(location, ca_material.to_keystore("second", "pw"), "pw", "pw")

        loaded = await file_storage.read(location, "pw")
        assert loaded.aliases() == ["second"]
        leftovers = [p for p in file_storage.path_for(location).parent.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    @pytest.mark.asyncio
    async def test_read_with_wrong_password_raises(self, file_storage, ca_material):
        location = KeystoreLocation("ca")
        await file_storage.write(location, ca_material.to_keystore("ca", "pw"), "pw", "pw")

        with pytest.raises(KeystoreStorageError, match="Could not read keystore"):
            await file_storage.read(location, "wrong")

    @pytest.mark.asyncio
    async def test_failed_encoding_leaves_file_untouched(self, file_storage, ca_material):
        location = KeystoreLocation("ca")
        await file_storage.write(location, ca_material.to_keystore("ca", "pw"), "pw", "pw")

        with pytest.raises(KeystoreStorageError, match="Could not encode"):
            await file_storage.write(location, KeyStore(), "pw", "pw")

        assert await file_storage.read(location, "pw") is not None

    @pytest.mark.asyncio
    async def test_absolute_key_is_used_as_path(self, file_storage, ca_material, tmp_path):
        target = tmp_path / "operator" / "ca.p12"
        location = KeystoreLocation(str(target))

        await file_storage.write(location, ca_material.to_keystore("ca", "pw"), "pw", "pw")

        assert target.is_file()
        assert file_storage.path_for(location) == target

    @pytest.mark.parametrize("key", ["../escape", "a/b", "..", "."])
    def test_unsafe_relative_key_rejected(self, file_storage, key):
        with pytest.raises(KeystoreStorageError, match="Unsafe"):
            file_storage.path_for(KeystoreLocation(key))

    @pytest.mark.asyncio
    async def test_delete(self, file_storage, ca_material):
        location = KeystoreLocation("ca")
        assert await file_storage.delete(location) is False

        await file_storage.write(location, ca_material.to_keystore("ca", "pw"), "pw", "pw")
        assert await file_storage.delete(location) is True
        assert await file_storage.read(location, "pw") is None


class TestKeystoreDatabaseStorage:
    """Tests for the cluster database backend."""

    @pytest.mark.asyncio
    async def test_read_missing_returns_none(self, db_storage):
        assert await db_storage.read(KeystoreLocation.certificate_authority(), "pw") is None

    @pytest.mark.asyncio
    async def test_write_then_read(self, db_storage, ca_material):
        location = KeystoreLocation.certificate_authority()
        await db_storage.write(location, ca_material.to_keystore("ca", "pw"), "pw", "store")

        loaded = await db_storage.read(location, "store")
        assert loaded.aliases() == ["ca"]
        assert loaded.get_certificate("ca") == ca_material.certificate

    @pytest.mark.asyncio
    async def test_write_overwrites_single_row(self, db_storage, ca_material):
        location = KeystoreLocation.certificate_authority()
        await db_storage.write(location, ca_material.to_keystore("first", "pw"), "pw", "pw")
        await db_storage.write(location, ca_material.to_keystore("second", "pw"), "pw", "pw")

        loaded = await db_storage.read(location, "pw")
        assert loaded.aliases() == ["second"]

    @pytest.mark.asyncio
    async def test_locations_are_independent(self, db_storage, ca_material):
        await db_storage.write(KeystoreLocation("a"), ca_material.to_keystore("ca", "pw"), "pw", "pw")

        assert await db_storage.read(KeystoreLocation("b"), "pw") is None

    @pytest.mark.asyncio
    async def test_wrong_password_raises(self, db_storage, ca_material):
        location = KeystoreLocation.certificate_authority()
        await db_storage.write(location, ca_material.to_keystore("ca", "pw"), "pw", "pw")

        with pytest.raises(KeystoreStorageError):
            await db_storage.read(location, "other")

    @pytest.mark.asyncio
    async def test_delete(self, db_storage, ca_material):
        location = KeystoreLocation.certificate_authority()
        assert await db_storage.delete(location) is False

        await db_storage.write(location, ca_material.to_keystore("ca", "pw"), "pw", "pw")
        assert await db_storage.delete(location) is True
        assert await db_storage.read(location, "pw") is None

    @pytest.mark.asyncio
    async def test_database_errors_are_wrapped(self):
        """Driver errors surface as KeystoreStorageError."""
        session = MagicMock()
        session.__aenter__.side_effect = OperationalError("SELECT", {}, Exception("down"))
        storage = KeystoreDatabaseStorage(MagicMock(return_value=session))

        with pytest.raises(KeystoreStorageError, match="Could not read keystore"):
            await storage.read(KeystoreLocation.certificate_authority(), "pw")
