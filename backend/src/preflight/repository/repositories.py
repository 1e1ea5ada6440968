"""Repository layer for preflight data access."""

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from preflight.domain.models import (
    ClusterConfigEntry,
    DataNode,
    NodeProvisioningConfig,
    StoredKeystore,
)

logger = logging.getLogger(__name__)


class KeystoreRepository:
    """Repository for encrypted keystore blobs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, location: str) -> StoredKeystore | None:
        """Get stored keystore by location key."""
        result = await self.db.execute(
            select(StoredKeystore).where(StoredKeystore.location == location)
        )
        return result.scalar_one_or_none()

    async def save(self, stored: StoredKeystore) -> StoredKeystore:
        """Insert or replace the keystore at its location."""
        merged = await self.db.merge(stored)
        await self.db.flush()
        return merged

    async def delete(self, location: str) -> int:
        """Delete keystore by location key. Returns number of rows removed."""
        result = await self.db.execute(
            delete(StoredKeystore).where(StoredKeystore.location == location)
        )
        return result.rowcount


class NodeProvisioningRepository:
    """Repository for per-node provisioning configs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, node_id: str) -> NodeProvisioningConfig | None:
        """Get provisioning config by node ID."""
        result = await self.db.execute(
            select(NodeProvisioningConfig).where(NodeProvisioningConfig.node_id == node_id)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[NodeProvisioningConfig]:
        """List all provisioning configs ordered by node ID."""
        result = await self.db.execute(
            select(NodeProvisioningConfig).order_by(NodeProvisioningConfig.node_id)
        )
        return list(result.scalars().all())

    async def upsert(self, config: NodeProvisioningConfig) -> NodeProvisioningConfig:
        """Insert or fully replace the config for its node."""
        merged = await self.db.merge(config)
        await self.db.flush()
        return merged

    async def delete(self, node_id: str) -> int:
        """Delete config for a node. Returns number of rows removed."""
        result = await self.db.execute(
            delete(NodeProvisioningConfig).where(NodeProvisioningConfig.node_id == node_id)
        )
        return result.rowcount

    async def delete_all(self) -> int:
        """Delete every config. Returns number of rows removed."""
        result = await self.db.execute(delete(NodeProvisioningConfig))
        return result.rowcount


class ClusterConfigRepository:
    """Repository for cluster configuration documents."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, config_type: str) -> ClusterConfigEntry | None:
        result = await self.db.execute(
            select(ClusterConfigEntry).where(ClusterConfigEntry.config_type == config_type)
        )
        return result.scalar_one_or_none()

    async def save(self, entry: ClusterConfigEntry) -> ClusterConfigEntry:
        merged = await self.db.merge(entry)
        await self.db.flush()
        return merged

    async def delete(self, config_type: str) -> int:
        result = await self.db.execute(
            delete(ClusterConfigEntry).where(ClusterConfigEntry.config_type == config_type)
        )
        return result.rowcount


class DataNodeRepository:
    """Read access to data node registrations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_seen_since(self, cutoff: datetime) -> list[DataNode]:
        """List nodes whose last heartbeat is at or after cutoff."""
        result = await self.db.execute(
            select(DataNode).where(DataNode.last_seen >= cutoff).order_by(DataNode.node_id)
        )
        return list(result.scalars().all())
