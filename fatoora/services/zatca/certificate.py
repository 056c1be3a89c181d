"""Issued certificate + private key handle used for signing."""

from __future__ import annotations

import base64
import hashlib

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificatePublicKeyTypes,
    PrivateKeyTypes,
)

from fatoora.services.zatca.exceptions import InvalidCertificateEncoding, InvalidKeyEncoding

_DER_SEQUENCE = b"\x30"


def _as_bytes(raw: bytes | str) -> bytes:
    return (raw.encode("ascii") if isinstance(raw, str) else raw).strip()


def _b64decode(data: bytes) -> bytes:
    # PEM bodies are often passed around with their line breaks
    return base64.b64decode(b"".join(data.split()), validate=True)


def _load_certificate(raw: bytes | str) -> x509.Certificate:
    """Load a certificate from PEM, raw DER, base64 DER or a binary security token."""
    try:
        data = _as_bytes(raw)
        if b"-----BEGIN CERTIFICATE-----" in data:
            return x509.load_pem_x509_certificate(data)
        if data.startswith(_DER_SEQUENCE):
            return x509.load_der_x509_certificate(data)
        der = _b64decode(data)
        # Binary security tokens are base64 of the base64 certificate body
        if der.startswith(b"MII"):
            der = _b64decode(der)
        return x509.load_der_x509_certificate(der)
    except ValueError as exc:
        raise InvalidCertificateEncoding(f"Certificate cannot be decoded: {exc}") from exc


def _load_private_key(raw: bytes | str) -> PrivateKeyTypes:
    """Load an unencrypted private key from PEM or bare base64 PKCS#8 / SEC1 DER."""
    try:
        data = _as_bytes(raw)
        if b"-----BEGIN" in data:
            return serialization.load_pem_private_key(data, password=None)
        der = data if data.startswith(_DER_SEQUENCE) else _b64decode(data)
        return serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise InvalidKeyEncoding(f"Private key cannot be decoded: {exc}") from exc


class Certificate:
    """Read-only view over an issued certificate and its private key.

    Build it with :meth:`parse`; the onboarding ``secret`` is only carried
    for the API client and never used for signing.
    """

    __slots__ = ("_cert", "_private_key", "_secret")

    def __init__(
        self,
        cert: x509.Certificate,
        private_key: PrivateKeyTypes | None,
        secret: str = "",
    ) -> None:
        self._cert = cert
        self._private_key = private_key
        self._secret = secret

    @classmethod
    def parse(
        cls,
        raw_cert: bytes | str,
        raw_key: bytes | str | None,
        secret: str = "",
    ) -> Certificate:
        cert = _load_certificate(raw_cert)
        private_key = _load_private_key(raw_key) if raw_key else None
        return cls(cert, private_key, secret)

    @property
    def secret(self) -> str:
        return self._secret

    def x509(self) -> x509.Certificate:
        return self._cert

    def public_key(self) -> CertificatePublicKeyTypes:
        return self._cert.public_key()

    def private_key(self) -> PrivateKeyTypes | None:
        return self._private_key

    def issuer_name(self) -> str:
        return self._cert.issuer.rfc4514_string()

    def serial_number(self) -> str:
        return str(self._cert.serial_number)

    def certificate_der(self) -> bytes:
        return self._cert.public_bytes(serialization.Encoding.DER)

    def certificate_base64(self) -> str:
        """Base64 DER, as embedded in ds:X509Certificate."""
        return base64.b64encode(self.certificate_der()).decode("ascii")

    def certificate_hash(self) -> str:
        """SHA-256 of the DER certificate -> base64. For xades:CertDigest."""
        return base64.b64encode(hashlib.sha256(self.certificate_der()).digest()).decode("ascii")

    def public_key_bytes(self) -> bytes:
        """Public key in SubjectPublicKeyInfo DER. For QR tag 8."""
        return self.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def certificate_signature(self) -> bytes:
        """The CA's own DER signature over this certificate. For QR tag 9."""
        return self._cert.signature

    def binary_security_token(self) -> str:
        """Certificate in the form the Fatoora API hands out and expects back."""
        return base64.b64encode(self.certificate_base64().encode("ascii")).decode("ascii")

    def __repr__(self) -> str:
        return f"Certificate(issuer={self.issuer_name()!r}, serial={self.serial_number()!r})"
