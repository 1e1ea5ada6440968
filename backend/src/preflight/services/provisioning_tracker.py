"""Per-node provisioning state tracking."""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from preflight.domain.models import NodeProvisioningConfig
from preflight.domain.records import NodeProvisioningRecord
from preflight.domain.state_machine import PermissiveTransitions, TransitionPolicy
from preflight.domain.states import ProvisioningState
from preflight.metrics import preflight_metrics
from preflight.repository.repositories import NodeProvisioningRepository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")


class NodeProvisioningTracker:
    """Owns the provisioning record of every node.

    Each call runs in its own session and transaction, so calls for different
    nodes never wait on each other. Concurrent writes for the same node are
    last-write-wins; read-modify-write callers may lose updates.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transition_policy: TransitionPolicy | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._transition_policy = transition_policy or PermissiveTransitions()

    async def stream_all(self) -> list[NodeProvisioningRecord]:
        """Snapshot of all records, ordered by node ID."""
        async with self._session_factory() as db:
            configs = await NodeProvisioningRepository(db).list_all()
            return [config.to_record() for config in configs]

    async def get_config_for(self, node_id: str) -> NodeProvisioningRecord | None:
        """Get the record of a node, or None if the node was never seen."""
        async with self._session_factory() as db:
            config = await NodeProvisioningRepository(db).get(node_id)
            return config.to_record() if config else None

    async def save(self, record: NodeProvisioningRecord) -> NodeProvisioningRecord:
        """Insert or replace the record of record.node_id.

        All fields are replaced wholesale, including alt_names and valid_for.
        """
        with tracer.start_as_current_span("NodeProvisioningTracker.save") as span:
            span.set_attribute("node_id", record.node_id)

            async def upsert() -> NodeProvisioningRecord:
                async with self._session_factory() as db:
                    merged = await NodeProvisioningRepository(db).upsert(
                        NodeProvisioningConfig.from_record(record)
                    )
                    await db.commit()
                    return merged.to_record()

            saved = await self._retry_on_conflict(record.node_id, upsert)
            logger.info(
                "provisioning_config_saved",
                extra={"node_id": record.node_id, "state": saved.state.value},
            )
            return saved

    async def change_state(
        self,
        node_id: str,
        state: ProvisioningState,
        error_message: str | None = None,
    ) -> NodeProvisioningRecord:
        """Overwrite the state of a node, creating its record if absent.

        The transition policy is consulted first; the default policy never
        rejects. error_message replaces any previous message.

        Raises:
            InvalidTransitionError: If a strict policy rejects the move
        """
        with tracer.start_as_current_span("NodeProvisioningTracker.change_state") as span:
            span.set_attribute("node_id", node_id)
            span.set_attribute("to_state", state.value)

            previous = await self._current_state(node_id)
            # Checked once per call; a conflict retry below does not re-check
            self._transition_policy.check(node_id, previous, state)

            async def overwrite() -> NodeProvisioningRecord:
                async with self._session_factory() as db:
                    config = await NodeProvisioningRepository(db).get(node_id)
                    if config is None:
                        config = NodeProvisioningConfig(node_id=node_id, alt_names=[])
                        db.add(config)
                    config.state = state.value
                    config.error_msg = error_message
                    await db.commit()
                    return config.to_record()

            record = await self._retry_on_conflict(node_id, overwrite)

            logger.info(
                "provisioning_state_changed",
                extra={
                    "node_id": node_id,
                    "from_state": previous.value if previous else "absent",
                    "to_state": state.value,
                },
            )
            preflight_metrics.record_node_state_change(state.value)
            return record

    async def delete(self, node_id: str) -> None:
        """Remove the record of a node. No-op if absent."""
        async with self._session_factory() as db:
            removed = await NodeProvisioningRepository(db).delete(node_id)
            await db.commit()

        if removed:
            logger.info("provisioning_config_deleted", extra={"node_id": node_id})
            preflight_metrics.record_node_reset(removed)

    async def delete_all(self) -> int:
        """Remove every record. Returns the number removed."""
        async with self._session_factory() as db:
            removed = await NodeProvisioningRepository(db).delete_all()
            await db.commit()

        logger.info("provisioning_configs_cleared", extra={"removed": removed})
        if removed:
            preflight_metrics.record_node_reset(removed)
        return removed

    async def _current_state(self, node_id: str) -> ProvisioningState | None:
        async with self._session_factory() as db:
            config = await NodeProvisioningRepository(db).get(node_id)
            return ProvisioningState(config.state) if config else None

    async def _retry_on_conflict(self, node_id: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run operation, retrying once if a concurrent insert created the row first."""
        try:
            return await operation()
        except IntegrityError:
            logger.debug("provisioning_config_insert_race", extra={"node_id": node_id})
            return await operation()
