"""CA key material and generation of new self-signed CAs."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.x509.oid import NameOID
from opentelemetry import trace

from preflight.keystore.crypto import key_matches_certificate
from preflight.keystore.keystore import KeyStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class CaKeyMaterial:
    """CA private key and its certificate chain (leaf first)."""

    private_key: PrivateKeyTypes
    certificate_chain: list[x509.Certificate]

    def __post_init__(self) -> None:
        if not self.certificate_chain:
            raise ValueError("CA certificate chain is empty")
        if not key_matches_certificate(self.private_key, self.certificate_chain[0]):
            raise ValueError("CA certificate does not match the private key")

    @property
    def certificate(self) -> x509.Certificate:
        """Leaf certificate of the chain."""
        return self.certificate_chain[0]

    @property
    def certificate_pem(self) -> str:
        """Get CA certificate as PEM string."""
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("utf-8")

    def to_keystore(self, alias: str, password: str | None) -> KeyStore:
        """Wrap into a keystore with a single entry protected by password."""
        keystore = KeyStore()
        keystore.set_key_entry(alias, self.private_key, password, self.certificate_chain)
        return keystore


class CaKeyPairFactory:
    """Generates self-signed CA key pairs.

    Every call produces fresh key material; results are never cached.
    """

    RSA_KEY_SIZE = 4096
    ECDSA_CURVE = ec.SECP384R1()

    def __init__(self, algorithm: str = "RSA") -> None:
        self.algorithm = algorithm.upper()

    def generate(self, organization: str, validity: timedelta) -> CaKeyMaterial:
        """Generate a new CA key and self-signed certificate.

        Args:
            organization: Used as subject CN and O.
            validity: Certificate lifetime starting now.

        Raises:
            ValueError: If organization is empty or validity is not positive.
        """
        if not organization:
            raise ValueError("Organization is required")
        if validity <= timedelta(0):
            raise ValueError("CA validity must be positive")

        with tracer.start_as_current_span("CaKeyPairFactory.generate") as span:
            span.set_attribute("algorithm", self.algorithm)
            span.set_attribute("validity_days", validity.days)

            if self.algorithm == "ECDSA":
                private_key: PrivateKeyTypes = ec.generate_private_key(self.ECDSA_CURVE)
            else:
                private_key = rsa.generate_private_key(
                    public_exponent=65537,
                    key_size=self.RSA_KEY_SIZE,
                )

            now = datetime.now(timezone.utc)
            subject = issuer = x509.Name(
                [
                    x509.NameAttribute(NameOID.COMMON_NAME, organization),
                    x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
                ]
            )

            certificate = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(issuer)
                .public_key(private_key.public_key())  # type: ignore[arg-type]
                .serial_number(x509.random_serial_number())
                .not_valid_before(now)
                .not_valid_after(now + validity)
                .add_extension(
                    x509.BasicConstraints(ca=True, path_length=0),
                    critical=True,
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        key_cert_sign=True,
                        crl_sign=True,
                        key_encipherment=False,
                        content_commitment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),  # type: ignore[arg-type]
                    critical=False,
                )
                .sign(private_key, hashes.SHA256())  # type: ignore[arg-type]
            )

            logger.info(
                "ca_key_pair_generated",
                extra={
                    "algorithm": self.algorithm,
                    "not_after": certificate.not_valid_after_utc.isoformat(),
                },
            )

            return CaKeyMaterial(private_key=private_key, certificate_chain=[certificate])
