"""Immutable values exchanged between the CA manager, the tracker and callers."""

from dataclasses import dataclass, field
from datetime import timedelta

from .states import CaSource, ProvisioningState


@dataclass(frozen=True)
class CertificateAuthority:
    """Descriptor of the active CA. Carries no key material."""

    source: CaSource
    identity: str


@dataclass(frozen=True)
class NodeProvisioningRecord:
    """Provisioning progress and certificate parameters of one node.

    Edits produce a new value via ``dataclasses.replace``.
    """

    node_id: str
    state: ProvisioningState = ProvisioningState.NEW
    error_message: str | None = None
    alt_names: frozenset[str] = field(default_factory=frozenset)
    valid_for: timedelta | None = None


@dataclass(frozen=True)
class ActiveNode:
    """Entry of the active node directory."""

    node_id: str
    transport_address: str
    hostname: str
    short_node_id: str
    data_node_status: str


@dataclass(frozen=True)
class DataNodeView:
    """Active node joined with its provisioning record (if any)."""

    node_id: str
    transport_address: str
    state: ProvisioningState | None
    error_message: str | None
    hostname: str
    short_node_id: str
    data_node_status: str
