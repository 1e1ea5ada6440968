"""API endpoints driving preflight: CA setup, node parameters, generation and reset."""

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import PlainTextResponse

from preflight.api.schemas import CAResponse, CertParameters, CreateCARequest, DataNodeResponse
from preflight.ca.ca_manager import CACreationError
from preflight.keystore.storage import KeystoreStorageError
from preflight.services.preflight_service import NotFoundError, PreflightService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/preflight", tags=["preflight"])

# Global service instance (initialized on startup)
_preflight_service: PreflightService | None = None


def set_preflight_service(service: PreflightService) -> None:
    """Set the global preflight service instance."""
    global _preflight_service
    _preflight_service = service


def get_preflight_service() -> PreflightService:
    """Get the global preflight service instance."""
    if _preflight_service is None:
        raise RuntimeError("PreflightService not initialized")
    return _preflight_service


# =============================================================================
# Data nodes
# =============================================================================


@router.get("/data_nodes", response_model=list[DataNodeResponse])
async def list_data_nodes(
    service: PreflightService = Depends(get_preflight_service),
) -> list[DataNodeResponse]:
    """List active data nodes with their provisioning status."""
    nodes = await service.list_data_nodes()
    return [
        DataNodeResponse(
            node_id=node.node_id,
            transport_address=node.transport_address,
            status=node.state.value if node.state else None,
            error_msg=node.error_message,
            hostname=node.hostname,
            short_node_id=node.short_node_id,
            data_node_status=node.data_node_status,
        )
        for node in nodes
    ]


# =============================================================================
# Certificate authority
# =============================================================================


@router.get("/ca", response_model=CAResponse)
async def get_ca(service: PreflightService = Depends(get_preflight_service)) -> CAResponse:
    """Describe the active CA."""
    try:
        ca = await service.ca_manager.get()
    except KeystoreStorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from None

    if ca is None:
        raise HTTPException(status_code=404, detail="No CA configured")
    return CAResponse(type=ca.source.value, id=ca.identity)


@router.get("/ca/certificate", response_class=PlainTextResponse)
async def get_ca_certificate(
    service: PreflightService = Depends(get_preflight_service),
) -> str:
    """Return the CA certificate as PEM."""
    try:
        return await service.ca_certificate_pem()
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    except KeystoreStorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from None


@router.post("/ca/create", response_model=CAResponse, status_code=201)
async def create_ca(
    body: CreateCARequest,
    service: PreflightService = Depends(get_preflight_service),
) -> CAResponse:
    """Generate a new self-signed CA."""
    try:
        ca = await service.ca_manager.create(body.organization, body.validity_days)
    except CACreationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    return CAResponse(type=ca.source.value, id=ca.identity)


@router.post("/ca/upload")
async def upload_ca(
    password: str | None = Form(None),
    files: list[UploadFile] = File(...),
    service: PreflightService = Depends(get_preflight_service),
) -> dict[str, str]:
    """Import a CA from uploaded PEM or PKCS#12 files."""
    parts = [await upload.read() for upload in files]
    try:
        await service.ca_manager.upload(password, parts)
    except CACreationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    return {"status": "ok"}


# =============================================================================
# Provisioning
# =============================================================================


@router.delete("/startOver", status_code=204)
async def start_over(service: PreflightService = Depends(get_preflight_service)) -> None:
    """Reset the CA, the renewal policy and all node records."""
    try:
        await service.start_over()
    except KeystoreStorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from None


@router.delete("/startOver/{node_id}", status_code=204)
async def start_over_node(
    node_id: str,
    service: PreflightService = Depends(get_preflight_service),
) -> None:
    """Reset the provisioning record of one node."""
    await service.start_over_node(node_id)


@router.post("/generate", status_code=204)
async def generate(service: PreflightService = Depends(get_preflight_service)) -> None:
    """Mark every active node as configured."""
    await service.generate()


@router.post("/{node_id}", status_code=204)
async def add_parameters(
    node_id: str,
    params: CertParameters,
    service: PreflightService = Depends(get_preflight_service),
) -> None:
    """Set certificate parameters for one node."""
    try:
        await service.add_parameters(node_id, params.alt_names, params.valid_for)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
