"""In-memory keystore container with PKCS#12 serialization.

Each entry keeps its private key protected by an entry password (encrypted
PKCS#8), mirroring the semantics of a password-protected keystore: the key is
only handed out to callers presenting that password.
"""

from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.hazmat.primitives.serialization import pkcs12

from preflight.keystore.crypto import (
    decrypt_private_key,
    encrypt_private_key,
    encryption_for,
    key_matches_certificate,
)

DEFAULT_ALIAS = "key"


@dataclass(frozen=True)
class KeyStoreEntry:
    """A protected private key and its certificate chain (leaf first)."""

    protected_key: bytes
    certificates: tuple[x509.Certificate, ...]


class KeyStore:
    """Aliased key entries, serializable as a single-entry PKCS#12 container."""

    def __init__(self) -> None:
        self._entries: dict[str, KeyStoreEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, alias: object) -> bool:
        return alias in self._entries

    def aliases(self) -> list[str]:
        return list(self._entries)

    def set_key_entry(
        self,
        alias: str,
        private_key: PrivateKeyTypes,
        password: str | None,
        certificates: list[x509.Certificate],
    ) -> None:
        """Store a key entry, replacing any entry under the same alias.

        Raises:
            ValueError: If the chain is empty or its leaf does not match the key.
            CryptoError: If the key cannot be protected.
        """
        if not certificates:
            raise ValueError(f"Certificate chain for '{alias}' is empty")
        if not key_matches_certificate(private_key, certificates[0]):
            raise ValueError(f"Leaf certificate for '{alias}' does not match its private key")

        self._entries[alias] = KeyStoreEntry(
            protected_key=encrypt_private_key(private_key, password),
            certificates=tuple(certificates),
        )

    def get_key(self, alias: str, password: str | None) -> PrivateKeyTypes | None:
        """Unlock the private key stored under alias.

        Raises:
            CryptoError: If the password does not unlock the entry.
        """
        entry = self._entries.get(alias)
        if entry is None:
            return None
        return decrypt_private_key(entry.protected_key, password)

    def get_certificate_chain(self, alias: str) -> list[x509.Certificate] | None:
        entry = self._entries.get(alias)
        return list(entry.certificates) if entry else None

    def get_certificate(self, alias: str) -> x509.Certificate | None:
        entry = self._entries.get(alias)
        return entry.certificates[0] if entry else None

    def to_pkcs12(self, entry_password: str | None, store_password: str | None) -> bytes:
        """Serialize as PKCS#12, re-protecting the entry with store_password.

        Raises:
            ValueError: If the keystore does not hold exactly one entry.
            CryptoError: If entry_password does not unlock the entry.
        """
        if len(self._entries) != 1:
            raise ValueError(
                f"A PKCS#12 container holds exactly one key entry, found {len(self._entries)}"
            )

        ((alias, entry),) = self._entries.items()
        private_key = decrypt_private_key(entry.protected_key, entry_password)
        return pkcs12.serialize_key_and_certificates(
            name=alias.encode("utf-8"),
            key=private_key,  # type: ignore[arg-type]
            cert=entry.certificates[0],
            cas=list(entry.certificates[1:]) or None,
            encryption_algorithm=encryption_for(store_password),
        )

    @classmethod
    def from_pkcs12(cls, data: bytes, password: str | None, alias: str | None = None) -> "KeyStore":
        """Load a PKCS#12 container. The entry stays protected by password.

        The entry is stored under alias, or the container's friendly name when
        no alias is given.

        Raises:
            ValueError: If the data is not PKCS#12, the password is wrong, or
                the container holds no private key.
        """
        loaded = pkcs12.load_pkcs12(data, password.encode("utf-8") if password else None)
        if loaded.key is None or loaded.cert is None:
            raise ValueError("PKCS#12 container holds no private key entry")

        friendly_name = loaded.cert.friendly_name
        entry_alias = alias or (friendly_name.decode("utf-8") if friendly_name else DEFAULT_ALIAS)
        chain = [loaded.cert.certificate] + [c.certificate for c in loaded.additional_certs]

        keystore = cls()
        keystore.set_key_entry(entry_alias, loaded.key, password, chain)
        return keystore
