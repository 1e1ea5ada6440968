"""Preflight use cases: node overview, certificate parameters, generation and reset."""

import dataclasses
import logging
from collections.abc import Iterable
from datetime import timedelta

from opentelemetry import trace

from preflight.ca.ca_manager import CaManager
from preflight.domain.records import DataNodeView, NodeProvisioningRecord
from preflight.domain.states import ProvisioningState
from preflight.services.cluster_config import ClusterConfigService, RenewalPolicy
from preflight.services.node_directory import NodeDirectory
from preflight.services.provisioning_tracker import NodeProvisioningTracker

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class NotFoundError(Exception):
    """Raised when a resource is not found."""

    pass


class PreflightService:
    """Composes the CA manager, the provisioning tracker and the node directory."""

    def __init__(
        self,
        ca_manager: CaManager,
        tracker: NodeProvisioningTracker,
        node_directory: NodeDirectory,
        cluster_config: ClusterConfigService,
    ) -> None:
        self.ca_manager = ca_manager
        self.tracker = tracker
        self.node_directory = node_directory
        self.cluster_config = cluster_config

    async def list_data_nodes(self) -> list[DataNodeView]:
        """Active nodes joined with their provisioning records.

        Nodes without a record report state None.
        """
        active_nodes = await self.node_directory.list_active_nodes()
        records = {record.node_id: record for record in await self.tracker.stream_all()}

        views = []
        for node in active_nodes.values():
            record = records.get(node.node_id)
            views.append(
                DataNodeView(
                    node_id=node.node_id,
                    transport_address=node.transport_address,
                    state=record.state if record else None,
                    error_message=record.error_message if record else None,
                    hostname=node.hostname,
                    short_node_id=node.short_node_id,
                    data_node_status=node.data_node_status,
                )
            )
        return views

    async def generate(self) -> None:
        """Move every active node to CONFIGURED, creating missing records."""
        with tracer.start_as_current_span("PreflightService.generate") as span:
            active_nodes = await self.node_directory.list_active_nodes()
            span.set_attribute("nodes", len(active_nodes))

            for node_id in active_nodes:
                await self.tracker.change_state(node_id, ProvisioningState.CONFIGURED)

            logger.info("preflight_generate_triggered", extra={"nodes": len(active_nodes)})

    async def add_parameters(
        self,
        node_id: str,
        alt_names: Iterable[str],
        valid_for: timedelta | None,
    ) -> NodeProvisioningRecord:
        """Set the certificate parameters of a node, keeping its state.

        alt_names replaces the previous set instead of extending it.
        """
        if valid_for is not None and valid_for <= timedelta(0):
            raise ValueError("Certificate validity must be positive")

        existing = await self.tracker.get_config_for(node_id)
        record = existing or NodeProvisioningRecord(node_id=node_id)
        return await self.tracker.save(
            dataclasses.replace(record, alt_names=frozenset(alt_names), valid_for=valid_for)
        )

    async def start_over(self) -> None:
        """Reset preflight completely.

        The CA is removed before node records so that no node is observed as
        configured against a CA that no longer exists.
        """
        with tracer.start_as_current_span("PreflightService.start_over"):
            await self.ca_manager.start_over()
            await self.cluster_config.remove(RenewalPolicy)
            removed = await self.tracker.delete_all()

            logger.info("preflight_reset", extra={"node_records_removed": removed})

    async def start_over_node(self, node_id: str) -> None:
        """Forget the provisioning record of one node. The CA is untouched."""
        await self.tracker.delete(node_id)

    async def ca_certificate_pem(self) -> str:
        """PEM of the active CA certificate.

        Raises:
            NotFoundError: If there is no CA.
            KeystoreStorageError: If the CA cannot be read.
        """
        material = await self.ca_manager.load_key_material()
        if material is None:
            raise NotFoundError("CA keystore not available")
        return material.certificate_pem
