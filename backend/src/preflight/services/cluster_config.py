"""Cluster-wide configuration documents stored as JSON, keyed by document type."""

import logging
from datetime import timedelta
from typing import TypeVar

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from preflight.domain.models import ClusterConfigEntry
from preflight.domain.states import RenewalMode
from preflight.repository.repositories import ClusterConfigRepository

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=BaseModel)


class RenewalPolicy(BaseModel):
    """How node certificates are renewed once the cluster is running."""

    mode: RenewalMode = RenewalMode.AUTOMATIC
    certificate_lifetime: timedelta = timedelta(days=30)


class ClusterConfigService:
    """Get, write and remove configuration documents shared by the cluster."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _key(config_type: type[BaseModel]) -> str:
        return f"{config_type.__module__}.{config_type.__qualname__}"

    async def get(self, config_type: type[C]) -> C | None:
        async with self._session_factory() as db:
            entry = await ClusterConfigRepository(db).get(self._key(config_type))
            return config_type.model_validate(entry.payload) if entry else None

    async def write(self, document: BaseModel) -> None:
        async with self._session_factory() as db:
            await ClusterConfigRepository(db).save(
                ClusterConfigEntry(
                    config_type=self._key(type(document)),
                    payload=document.model_dump(mode="json"),
                )
            )
            await db.commit()
        logger.info("cluster_config_written", extra={"config_type": self._key(type(document))})

    async def remove(self, config_type: type[BaseModel]) -> bool:
        """Remove a document. Returns False if none was stored."""
        async with self._session_factory() as db:
            removed = await ClusterConfigRepository(db).delete(self._key(config_type))
            await db.commit()
        logger.info(
            "cluster_config_removed",
            extra={"config_type": self._key(config_type), "removed": removed},
        )
        return removed > 0
