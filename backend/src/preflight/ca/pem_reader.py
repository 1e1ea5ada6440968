"""Parsing of uploaded PEM bundles into CA key material."""

import re

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from preflight.ca.key_pair import CaKeyMaterial
from preflight.keystore.crypto import key_matches_certificate

CERTIFICATE_MARKER = "-----BEGIN CERTIFICATE"

_PRIVATE_KEY_BLOCK = re.compile(
    r"-----BEGIN (?P<kind>(?:ENCRYPTED |RSA |EC |DSA )?PRIVATE KEY)-----.*?-----END (?P=kind)-----",
    re.DOTALL,
)


class ParseError(Exception):
    """Raised when an upload is not a usable CA bundle."""

    pass


class PemCaReader:
    """Reads a CA private key and certificate chain from PEM text. Stateless."""

    def read_ca(self, pem: str, password: str | None) -> CaKeyMaterial:
        """Parse PEM text holding certificates and one private key.

        The certificate matching the key becomes the leaf; the others follow
        in file order.

        Raises:
            ParseError: If no certificate or key is found, the key cannot be
                decrypted, or no certificate matches the key.
        """
        if CERTIFICATE_MARKER not in pem:
            raise ParseError("No certificate found in upload")

        try:
            certificates = x509.load_pem_x509_certificates(pem.encode("utf-8"))
        except ValueError as e:
            raise ParseError(f"Malformed certificate: {e}") from e

        private_key = self._read_private_key(pem, password)

        leaf = next((c for c in certificates if key_matches_certificate(private_key, c)), None)
        if leaf is None:
            raise ParseError("Private key does not match any uploaded certificate")

        chain = [leaf] + [c for c in certificates if c is not leaf]
        return CaKeyMaterial(private_key=private_key, certificate_chain=chain)

    def _read_private_key(self, pem: str, password: str | None):
        match = _PRIVATE_KEY_BLOCK.search(pem)
        if match is None:
            raise ParseError("No private key found in upload")

        block = match.group(0)
        # PKCS#8 marks encryption in the header, traditional OpenSSL keys in Proc-Type
        encrypted = match.group("kind").startswith("ENCRYPTED") or "Proc-Type: 4,ENCRYPTED" in block
        if encrypted and not password:
            raise ParseError("Private key is encrypted but no password was given")

        try:
            return serialization.load_pem_private_key(
                block.encode("utf-8"),
                password=password.encode("utf-8") if encrypted and password else None,
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise ParseError(f"Could not read private key: {e}") from e
