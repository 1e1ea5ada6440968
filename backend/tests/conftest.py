"""Shared fixtures: in-memory database, settings and CA helpers."""

from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import preflight.domain.models  # noqa: F401
from preflight.ca.key_pair import CaKeyMaterial, CaKeyPairFactory
from preflight.keystore.database_storage import KeystoreDatabaseStorage
from preflight.keystore.file_storage import KeystoreFileStorage
from shared.config import Settings
from shared.database import Base


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory SQLite database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with only the shared secret configured."""
    return Settings(
        _env_file=None,
        PASSWORD_SECRET="cluster-shared-secret",
        CA_PASSWORD=None,
        CA_KEYSTORE_FILE=None,
        CA_ALGORITHM="ECDSA",
        KEYSTORE_DIR=str(tmp_path / "keystores"),
    )


@pytest.fixture
def db_storage(session_factory) -> KeystoreDatabaseStorage:
    return KeystoreDatabaseStorage(session_factory)


@pytest.fixture
def file_storage(tmp_path) -> KeystoreFileStorage:
    return KeystoreFileStorage(tmp_path / "keystores")


@pytest.fixture(scope="session")
def ca_material() -> CaKeyMaterial:
    """A throwaway ECDSA CA, generated once per test session."""
    return CaKeyPairFactory("ECDSA").generate("Test Org", timedelta(days=30))


def pem_bundle(material: CaKeyMaterial, password: str | None = None) -> bytes:
    """Certificate chain followed by the private key, optionally encrypted."""
    encryption = (
        serialization.BestAvailableEncryption(password.encode())
        if password
        else serialization.NoEncryption()
    )
    key_pem = material.private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )
    certs_pem = b"".join(
        c.public_bytes(serialization.Encoding.PEM) for c in material.certificate_chain
    )
    return certs_pem + key_pem
