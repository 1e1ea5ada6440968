import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from preflight.api import preflight as preflight_api
from preflight.ca.ca_manager import CaManager, CertificateAuthorityChangedEvent
from preflight.keystore.database_storage import KeystoreDatabaseStorage
from preflight.keystore.file_storage import KeystoreFileStorage
from preflight.services.cluster_config import ClusterConfigService
from preflight.services.node_directory import DatabaseNodeDirectory
from preflight.services.preflight_service import PreflightService
from preflight.services.provisioning_tracker import NodeProvisioningTracker
from shared.config import settings
from shared.database import AsyncSessionLocal, engine, init_models
from shared.logging import setup_logging
from shared.metrics import setup_metrics

logger = logging.getLogger(__name__)


# Setup OpenTelemetry Tracing
def setup_tracing() -> None:
    resource = Resource.create({"service.name": settings.APP_NAME})
    provider = TracerProvider(resource=resource)

    processor = BatchSpanProcessor(ConsoleSpanExporter())
    provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)


async def log_ca_changed(event: CertificateAuthorityChangedEvent) -> None:
    """Default CA-changed listener. Data nodes poll the CA endpoint on their own."""
    logger.info(
        "ca_changed",
        extra={"source": event.source.value, "changed_at": event.changed_at.isoformat()},
    )


def build_preflight_service() -> PreflightService:
    """Wire storage backends, CA manager and tracker on the shared database."""
    ca_manager = CaManager(
        cluster_storage=KeystoreDatabaseStorage(AsyncSessionLocal),
        file_storage=KeystoreFileStorage(settings.KEYSTORE_DIR),
        settings=settings,
        on_ca_changed=log_ca_changed,
    )
    return PreflightService(
        ca_manager=ca_manager,
        tracker=NodeProvisioningTracker(AsyncSessionLocal),
        node_directory=DatabaseNodeDirectory(
            AsyncSessionLocal, stale_after=timedelta(seconds=settings.NODE_STALE_AFTER_SECONDS)
        ),
        cluster_config=ClusterConfigService(AsyncSessionLocal),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    setup_logging()
    setup_tracing()
    setup_metrics(settings.APP_NAME)

    LoggingInstrumentor().instrument(set_logging_format=True)
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

    await init_models()

    preflight_api.set_preflight_service(build_preflight_service())

    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# Instrument FastAPI
FastAPIInstrumentor.instrument_app(app)

# Include routers
app.include_router(preflight_api.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok", "service": settings.APP_NAME}
