"""Read-only directory of active data nodes."""

from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from preflight.domain.records import ActiveNode
from preflight.repository.repositories import DataNodeRepository


class NodeDirectory(Protocol):
    async def list_active_nodes(self) -> Mapping[str, ActiveNode]: ...


class DatabaseNodeDirectory:
    """Active nodes are those whose heartbeat is newer than stale_after."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        stale_after: timedelta,
    ) -> None:
        self._session_factory = session_factory
        self._stale_after = stale_after

    async def list_active_nodes(self) -> dict[str, ActiveNode]:
        cutoff = datetime.now(timezone.utc) - self._stale_after
        async with self._session_factory() as db:
            nodes = await DataNodeRepository(db).list_seen_since(cutoff)
            return {node.node_id: node.to_active_node() for node in nodes}
