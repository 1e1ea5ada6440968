from enum import StrEnum


class CaSource(StrEnum):
    """Where the active certificate authority lives."""

    LOCAL_FILE = "local_file"  # Operator-supplied keystore file
    GENERATED = "generated"  # Stored in the cluster database


class ProvisioningState(StrEnum):
    """Provisioning progress of a single data node."""

    NEW = "new"
    CSR = "csr"  # Certificate signing request issued
    SIGNED = "signed"
    CONFIGURED = "configured"  # Terminal for a successful run
    ERROR = "error"


class RenewalMode(StrEnum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"
