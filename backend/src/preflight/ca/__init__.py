"""Certificate Authority module for preflight.

This module provides:
- CA lifecycle management (lookup, creation, upload, reset, loading)
- Generation of self-signed CA key pairs
- Parsing of uploaded PEM bundles
"""

from preflight.ca.ca_manager import CACreationError, CaManager, CertificateAuthorityChangedEvent
from preflight.ca.key_pair import CaKeyMaterial, CaKeyPairFactory
from preflight.ca.pem_reader import ParseError, PemCaReader

__all__ = [
    "CACreationError",
    "CaKeyMaterial",
    "CaKeyPairFactory",
    "CaManager",
    "CertificateAuthorityChangedEvent",
    "ParseError",
    "PemCaReader",
]
