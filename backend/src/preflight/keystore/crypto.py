"""Cryptographic utilities for keystore entries.

Provides password resolution, private key protection and thumbprint computation.
"""

import hashlib

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from shared.config import Settings


class CryptoError(Exception):
    """Raised when a cryptographic operation fails."""

    pass


def resolve_password(settings: Settings, explicit: str | None = None) -> str:
    """Resolve the password protecting a keystore.

    Order: explicit per-keystore password, then CA_PASSWORD, then PASSWORD_SECRET.
    Evaluated on every call so that reloaded settings take effect immediately.
    """
    if explicit:
        return explicit
    if settings.CA_PASSWORD:
        return settings.CA_PASSWORD
    return settings.PASSWORD_SECRET


def encryption_for(password: str | None) -> serialization.KeySerializationEncryption:
    if password:
        return serialization.BestAvailableEncryption(password.encode("utf-8"))
    return serialization.NoEncryption()


def encrypt_private_key(private_key: PrivateKeyTypes, password: str | None) -> bytes:
    """Serialize a private key as PKCS#8 PEM, encrypted when a password is given.

    Raises:
        CryptoError: If serialization fails.
    """
    try:
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption_for(password),
        )
    except Exception as e:
        raise CryptoError(f"Failed to protect private key: {e}") from e


def decrypt_private_key(protected: bytes, password: str | None) -> PrivateKeyTypes:
    """Load a PKCS#8 PEM private key produced by encrypt_private_key.

    Raises:
        CryptoError: If the password does not match or the data is corrupt.
    """
    is_encrypted = b"ENCRYPTED" in protected
    if is_encrypted and not password:
        raise CryptoError("Private key is password protected but no password was given")
    if not is_encrypted and password:
        raise CryptoError("Password given for an unprotected private key")

    try:
        return serialization.load_pem_private_key(
            protected, password=password.encode("utf-8") if is_encrypted and password else None
        )
    except Exception as e:
        raise CryptoError(f"Failed to unlock private key: {e}") from e


def key_matches_certificate(private_key: PrivateKeyTypes, certificate: x509.Certificate) -> bool:
    """Check whether a certificate carries the public half of a private key."""
    spki = serialization.PublicFormat.SubjectPublicKeyInfo
    der = serialization.Encoding.DER
    return certificate.public_key().public_bytes(der, spki) == private_key.public_key().public_bytes(
        der, spki
    )


def compute_thumbprint(certificate: x509.Certificate) -> str:
    """Compute the lowercase hex SHA-256 thumbprint of a certificate."""
    der_bytes = certificate.public_bytes(serialization.Encoding.DER)
    return hashlib.sha256(der_bytes).hexdigest().lower()
