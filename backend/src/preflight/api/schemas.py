"""Pydantic schemas for preflight API request/response validation."""

from datetime import timedelta

from pydantic import BaseModel, Field


class CreateCARequest(BaseModel):
    """Request body for creating a certificate authority."""

    organization: str = Field(..., min_length=1, max_length=255)
    validity_days: int | None = Field(None, ge=0, le=36500)


class CAResponse(BaseModel):
    """Descriptor of the active certificate authority."""

    type: str
    id: str


class CertParameters(BaseModel):
    """Certificate parameters for a single data node."""

    alt_names: list[str] = Field(default_factory=list)
    valid_for: timedelta | None = None


class DataNodeResponse(BaseModel):
    """Active data node with its provisioning status."""

    node_id: str
    transport_address: str
    status: str | None
    error_msg: str | None
    hostname: str
    short_node_id: str
    data_node_status: str

