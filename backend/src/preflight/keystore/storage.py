"""Keystore persistence contract shared by the database and file backends.

Backends only move bytes. Encoding, decoding and password handling live here,
so both backends behave identically apart from where the blob is kept.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from preflight.keystore.keystore import KeyStore

logger = logging.getLogger(__name__)


class KeystoreStorageError(Exception):
    """Raised when a keystore cannot be read, written or deleted."""

    pass


@dataclass(frozen=True)
class KeystoreLocation:
    """Opaque key identifying a keystore blob within a backend."""

    key: str

    CA_KEYSTORE_ID = "certificate-authority"

    @classmethod
    def certificate_authority(cls) -> "KeystoreLocation":
        return cls(cls.CA_KEYSTORE_ID)


class KeystoreStorage(ABC):
    """Read/write of password-protected keystores by location."""

    async def read(self, location: KeystoreLocation, password: str | None) -> KeyStore | None:
        """Read the keystore at location, or None if nothing is stored there.

        Entries of the returned keystore are protected by password.

        Raises:
            KeystoreStorageError: On I/O failure, corrupt data or wrong password.
        """
        data = await self._load_bytes(location)
        if data is None:
            return None

        try:
            return KeyStore.from_pkcs12(data, password)
        except Exception as e:
            logger.error(
                "keystore_read_failed",
                extra={"location": location.key, "error": str(e)},
            )
            raise KeystoreStorageError(
                f"Could not read keystore '{location.key}': {e}"
            ) from e

    async def write(
        self,
        location: KeystoreLocation,
        keystore: KeyStore,
        read_password: str | None,
        write_password: str | None,
    ) -> None:
        """Persist keystore, re-protected from read_password to write_password.

        The blob is fully encoded before the backend is touched.

        Raises:
            KeystoreStorageError: On encoding failure, wrong read_password or I/O failure.
        """
        try:
            data = keystore.to_pkcs12(read_password, write_password)
        except Exception as e:
            raise KeystoreStorageError(
                f"Could not encode keystore '{location.key}': {e}"
            ) from e

        await self._store_bytes(location, data)
        logger.debug("keystore_written", extra={"location": location.key})

    async def delete(self, location: KeystoreLocation) -> bool:
        """Remove the keystore at location. Returns False if nothing was stored.

        Raises:
            KeystoreStorageError: On I/O failure.
        """
        removed = await self._remove(location)
        logger.debug("keystore_deleted", extra={"location": location.key, "removed": removed})
        return removed

    @abstractmethod
    async def _load_bytes(self, location: KeystoreLocation) -> bytes | None: ...

    @abstractmethod
    async def _store_bytes(self, location: KeystoreLocation, data: bytes) -> None:
        """Atomically replace the blob at location."""
        ...

    @abstractmethod
    async def _remove(self, location: KeystoreLocation) -> bool: ...
