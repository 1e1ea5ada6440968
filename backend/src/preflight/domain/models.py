from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from sqlalchemy import JSON, DateTime, Interval, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shared.database import Base

from .records import ActiveNode, NodeProvisioningRecord
from .states import ProvisioningState


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StoredKeystore(Base):
    """Encrypted PKCS#12 blob addressed by a location key."""

    __tablename__ = "keystores"

    location: Mapped[str] = mapped_column(String(255), primary_key=True)
    keystore: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class NodeProvisioningConfig(Base):
    __tablename__ = "node_provisioning_configs"

    node_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    state: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ProvisioningState.NEW.value
    )
    error_msg: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    alt_names: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    valid_for: Mapped[Optional[timedelta]] = mapped_column(Interval, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    @classmethod
    def from_record(cls, record: NodeProvisioningRecord) -> "NodeProvisioningConfig":
        return cls(
            node_id=record.node_id,
            state=record.state.value,
            error_msg=record.error_message,
            alt_names=sorted(record.alt_names),
            valid_for=record.valid_for,
        )

    def to_record(self) -> NodeProvisioningRecord:
        return NodeProvisioningRecord(
            node_id=self.node_id,
            state=ProvisioningState(self.state),
            error_message=self.error_msg,
            alt_names=frozenset(self.alt_names or ()),
            valid_for=self.valid_for,
        )


class ClusterConfigEntry(Base):
    """Cluster-wide configuration document, one row per document type."""

    __tablename__ = "cluster_config"

    config_type: Mapped[str] = mapped_column(String(255), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class DataNode(Base):
    """Heartbeat registration of a data node. Written by the nodes themselves."""

    __tablename__ = "data_nodes"

    node_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    transport_address: Mapped[str] = mapped_column(String(255), nullable=False)
    hostname: Mapped[str] = mapped_column(String(255), nullable=False)
    data_node_status: Mapped[str] = mapped_column(String(50), nullable=False)
    last_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    @property
    def short_node_id(self) -> str:
        return self.node_id[:8]

    def to_active_node(self) -> ActiveNode:
        return ActiveNode(
            node_id=self.node_id,
            transport_address=self.transport_address,
            hostname=self.hostname,
            short_node_id=self.short_node_id,
            data_node_status=self.data_node_status,
        )
