from backend.src.main import health_check
from backend.src.preflight.domain.models import (
    ClusterConfigEntry,
    DataNode,
    NodeProvisioningConfig,
    StoredKeystore,
)
from backend.src.preflight.domain.states import ProvisioningState, RenewalMode
from backend.src.shared.config import Settings

# Pydantic Settings
Settings.model_config
Settings.APP_ENV

# Domain Models (columns maintained by SQLAlchemy defaults or written by data nodes)
StoredKeystore.updated_at
NodeProvisioningConfig.updated_at
ClusterConfigEntry.last_updated
DataNode.last_seen

# Enums (states set by data nodes during provisioning)
ProvisioningState.CSR
ProvisioningState.SIGNED
RenewalMode.MANUAL

# FastAPI
health_check
