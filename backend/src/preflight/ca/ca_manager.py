"""CA lifecycle management: lookup, creation, import, reset and loading.

Storage precedence:
1. Operator-configured keystore file (CA_KEYSTORE_FILE, CA_PASSWORD)
2. Generated CA in the cluster database

Password for the generated CA: CA_PASSWORD if set, otherwise PASSWORD_SECRET.
"""

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from opentelemetry import trace

from preflight.ca.key_pair import CaKeyMaterial, CaKeyPairFactory
from preflight.ca.pem_reader import CERTIFICATE_MARKER, PemCaReader
from preflight.domain.records import CertificateAuthority
from preflight.domain.states import CaSource
from preflight.keystore.crypto import compute_thumbprint, resolve_password
from preflight.keystore.keystore import KeyStore
from preflight.keystore.storage import KeystoreLocation, KeystoreStorage, KeystoreStorageError
from preflight.metrics import preflight_metrics
from shared.config import Settings

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class CACreationError(Exception):
    """Raised when CA material cannot be generated, imported or persisted."""

    pass


@dataclass(frozen=True)
class CertificateAuthorityChangedEvent:
    """Published after a new CA has been persisted."""

    source: CaSource
    identity: str
    changed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


CaChangedCallback = Callable[[CertificateAuthorityChangedEvent], Awaitable[None]]


class CaManager:
    """Owns persistence of the cluster CA.

    create, upload and start_over are serialized by a process-local lock; the
    single-row write in the cluster store is the distributed commit point.
    """

    CA_KEY_ALIAS = "ca"
    DEFAULT_VALIDITY_DAYS = 365
    MAX_VALIDITY_DAYS = 36500

    def __init__(
        self,
        cluster_storage: KeystoreStorage,
        file_storage: KeystoreStorage,
        settings: Settings,
        pem_reader: PemCaReader | None = None,
        key_pair_factory: CaKeyPairFactory | None = None,
        on_ca_changed: CaChangedCallback | None = None,
    ) -> None:
        self._cluster_storage = cluster_storage
        self._file_storage = file_storage
        self._settings = settings
        self._pem_reader = pem_reader or PemCaReader()
        self._key_pair_factory = key_pair_factory
        self._on_ca_changed = on_ca_changed
        self._lock = asyncio.Lock()

    @property
    def location(self) -> KeystoreLocation:
        return KeystoreLocation.certificate_authority()

    def _configured_ca_file(self) -> str | None:
        """Absolute path of the operator-configured CA keystore, if set and present.

        Relative paths are resolved against the working directory.
        """
        path = self._settings.CA_KEYSTORE_FILE
        if not path:
            return None
        resolved = Path(path).resolve()
        return str(resolved) if resolved.is_file() else None

    async def get(self) -> CertificateAuthority | None:
        """Describe the active CA, or None if there is none.

        Raises:
            KeystoreStorageError: If the stored CA cannot be read.
        """
        configured = self._configured_ca_file()
        if configured:
            preflight_metrics.record_ca_source(CaSource.LOCAL_FILE.value)
            return CertificateAuthority(source=CaSource.LOCAL_FILE, identity=configured)

        keystore = await self._cluster_storage.read(
            self.location, resolve_password(self._settings)
        )
        if keystore is None:
            preflight_metrics.record_ca_source(None)
            return None

        preflight_metrics.record_ca_source(CaSource.GENERATED.value)
        return CertificateAuthority(source=CaSource.GENERATED, identity=self.location.key)

    async def create(
        self,
        organization: str,
        validity_days: int | None = None,
        export_password: str | None = None,
    ) -> CertificateAuthority:
        """Generate a new CA and store it in the cluster database.

        An existing generated CA is overwritten only by the final write; call
        start_over first to purge it explicitly.

        Args:
            organization: Subject of the CA certificate.
            validity_days: Lifetime in days, at most MAX_VALIDITY_DAYS; None or 0
                means DEFAULT_VALIDITY_DAYS.
            export_password: Password sealing the fresh key before it is
                re-encrypted for storage.

        Raises:
            CACreationError: If generation or persistence fails.
        """
        if validity_days is not None and not 0 <= validity_days <= self.MAX_VALIDITY_DAYS:
            raise CACreationError(f"Invalid CA validity: {validity_days} days")
        validity = timedelta(days=validity_days or self.DEFAULT_VALIDITY_DAYS)

        with tracer.start_as_current_span("CaManager.create") as span:
            span.set_attribute("validity_days", validity.days)

            storage_password = resolve_password(self._settings)
            seal_password = resolve_password(self._settings, export_password)
            factory = self._key_pair_factory or CaKeyPairFactory(self._settings.CA_ALGORITHM)

            async with self._lock:
                try:
                    material = await asyncio.to_thread(factory.generate, organization, validity)
                    keystore = material.to_keystore(self.CA_KEY_ALIAS, seal_password)
                    await self._cluster_storage.write(
                        self.location, keystore, seal_password, storage_password
                    )
                except Exception as e:
                    logger.error("ca_creation_failed", extra={"error": str(e)})
                    raise CACreationError(f"Could not create CA: {e}") from e

            logger.info(
                "ca_created",
                extra={
                    "location": self.location.key,
                    "thumbprint": compute_thumbprint(material.certificate),
                    "not_after": material.certificate.not_valid_after_utc.isoformat(),
                },
            )
            preflight_metrics.record_ca_created("generated")

        authority = CertificateAuthority(source=CaSource.GENERATED, identity=self.location.key)
        await self._notify_ca_changed(authority)
        return authority

    async def upload(self, password: str | None, parts: Sequence[bytes]) -> None:
        """Import an externally issued CA from one or more uploaded files.

        All parts are folded into one keystore before a single write. If any
        part fails, nothing is stored.

        Raises:
            CACreationError: If no part is given, a part cannot be read, or the
                write fails.
        """
        if not parts:
            raise CACreationError("Could not write CA: no files uploaded")

        with tracer.start_as_current_span("CaManager.upload") as span:
            span.set_attribute("parts", len(parts))

            async with self._lock:
                try:
                    keystore = functools.reduce(
                        functools.partial(self._fold_part, password), parts, KeyStore()
                    )
                    await self._cluster_storage.write(
                        self.location, keystore, password, resolve_password(self._settings)
                    )
                except Exception as e:
                    logger.error("ca_upload_failed", extra={"parts": len(parts), "error": str(e)})
                    preflight_metrics.record_ca_upload("failed")
                    raise CACreationError(f"Could not write CA: {e}") from e

            logger.info("ca_uploaded", extra={"parts": len(parts)})
            preflight_metrics.record_ca_upload("stored")

        await self._notify_ca_changed(
            CertificateAuthority(source=CaSource.GENERATED, identity=self.location.key)
        )

    def _fold_part(self, password: str | None, keystore: KeyStore, part: bytes) -> KeyStore:
        """Merge one uploaded part into the accumulated keystore."""
        text = part.decode("utf-8", errors="replace")
        if CERTIFICATE_MARKER in text:
            material = self._pem_reader.read_ca(text, password)
            keystore.set_key_entry(
                self.CA_KEY_ALIAS, material.private_key, password, material.certificate_chain
            )
            return keystore

        # A keystore container replaces everything accumulated so far
        return KeyStore.from_pkcs12(part, password, alias=self.CA_KEY_ALIAS)

    async def start_over(self) -> None:
        """Delete the generated CA. Succeeds when there is none.

        Raises:
            KeystoreStorageError: If the store cannot be reached.
        """
        async with self._lock:
            removed = await self._cluster_storage.delete(self.location)

        logger.info("ca_reset", extra={"location": self.location.key, "removed": removed})
        preflight_metrics.record_ca_reset()
        preflight_metrics.record_ca_source(None)

    async def load_keystore(self) -> KeyStore | None:
        """Load the active CA keystore, with the same precedence as get().

        Entries of the returned keystore are protected by the password used to
        read it (see keystore_password()).

        Raises:
            KeystoreStorageError: If the keystore cannot be read.
        """
        configured = self._configured_ca_file()
        if configured:
            return await self._file_storage.read(
                KeystoreLocation(configured), self.keystore_password()
            )
        return await self._cluster_storage.read(self.location, self.keystore_password())

    def keystore_password(self) -> str:
        """Password protecting the keystore returned by load_keystore()."""
        return resolve_password(self._settings)

    async def load_key_material(self) -> CaKeyMaterial | None:
        """Load and unlock the active CA key and chain for signing or export.

        An operator-supplied keystore may use any alias; its single entry is used.

        Raises:
            KeystoreStorageError: If the keystore cannot be read or unlocked.
        """
        keystore = await self.load_keystore()
        if keystore is None:
            return None

        # Loaded keystores always hold exactly one entry
        alias = self.CA_KEY_ALIAS if self.CA_KEY_ALIAS in keystore else keystore.aliases()[0]

        try:
            private_key = keystore.get_key(alias, self.keystore_password())
            return CaKeyMaterial(
                private_key=private_key,  # type: ignore[arg-type]
                certificate_chain=keystore.get_certificate_chain(alias) or [],
            )
        except Exception as e:
            raise KeystoreStorageError(f"Could not unlock CA key: {e}") from e

    async def _notify_ca_changed(self, authority: CertificateAuthority) -> None:
        """Fire the CA-changed callback. Failures never undo the stored CA."""
        if self._on_ca_changed is None:
            return

        event = CertificateAuthorityChangedEvent(source=authority.source, identity=authority.identity)
        try:
            await self._on_ca_changed(event)
            preflight_metrics.record_ca_changed_notification("delivered")
        except Exception as e:
            logger.warning("ca_changed_notification_failed", extra={"error": str(e)})
            preflight_metrics.record_ca_changed_notification("failed")
