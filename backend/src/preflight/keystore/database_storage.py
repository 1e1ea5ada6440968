"""Cluster-wide keystore backend on the shared database."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from preflight.domain.models import StoredKeystore
from preflight.keystore.storage import KeystoreLocation, KeystoreStorage, KeystoreStorageError
from preflight.repository.repositories import KeystoreRepository

logger = logging.getLogger(__name__)


class KeystoreDatabaseStorage(KeystoreStorage):
    """Stores keystores in the keystores table, one row per location.

    Every call runs in its own session; a write is a single-row upsert committed
    in one transaction, so readers see either the old or the new blob.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _load_bytes(self, location: KeystoreLocation) -> bytes | None:
        try:
            async with self._session_factory() as db:
                stored = await KeystoreRepository(db).get(location.key)
                return stored.keystore if stored else None
        except SQLAlchemyError as e:
            raise KeystoreStorageError(f"Could not read keystore '{location.key}': {e}") from e

    async def _store_bytes(self, location: KeystoreLocation, data: bytes) -> None:
        try:
            async with self._session_factory() as db:
                await KeystoreRepository(db).save(
                    StoredKeystore(location=location.key, keystore=data)
                )
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "keystore_db_write_failed",
                extra={"location": location.key, "error": str(e)},
            )
            raise KeystoreStorageError(f"Could not write keystore '{location.key}': {e}") from e

    async def _remove(self, location: KeystoreLocation) -> bool:
        try:
            async with self._session_factory() as db:
                removed = await KeystoreRepository(db).delete(location.key)
                await db.commit()
                return removed > 0
        except SQLAlchemyError as e:
            raise KeystoreStorageError(f"Could not delete keystore '{location.key}': {e}") from e
