"""ECDSA signing of invoice digests."""

from __future__ import annotations

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificatePublicKeyTypes,
    PrivateKeyTypes,
)

from fatoora.services.zatca.certificate import Certificate
from fatoora.services.zatca.exceptions import SigningKeyUnavailable

DIGEST_SIZE = 32


def sign(digest: bytes, private_key: PrivateKeyTypes | None) -> bytes:
    """ECDSA-SHA256 signature over the raw invoice digest (DER encoded).

    Signatures are randomized; only validity against the public key matters.
    """
    if private_key is None:
        raise SigningKeyUnavailable("No private key available for signing")
    if not isinstance(private_key, ec.EllipticCurvePrivateKey):
        raise SigningKeyUnavailable(
            f"Expected an elliptic-curve private key, got {type(private_key).__name__}"
        )
    if len(digest) != DIGEST_SIZE:
        raise SigningKeyUnavailable(
            f"Digest must be {DIGEST_SIZE} bytes, got {len(digest)}"
        )
    return private_key.sign(digest, ec.ECDSA(hashes.SHA256()))


def sign_with_certificate(digest: bytes, certificate: Certificate) -> bytes:
    """Sign with the certificate's key after checking the key belongs to it."""
    private_key = certificate.private_key()
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        cert_key = certificate.public_key()
        if not isinstance(cert_key, ec.EllipticCurvePublicKey):
            raise SigningKeyUnavailable("Certificate does not carry an elliptic-curve public key")
        if cert_key.curve.name != private_key.curve.name:
            raise SigningKeyUnavailable(
                f"Private key curve {private_key.curve.name} does not match "
                f"certificate curve {cert_key.curve.name}"
            )
        if private_key.public_key().public_numbers() != cert_key.public_numbers():
            raise SigningKeyUnavailable("Private key does not belong to the certificate")
    return sign(digest, private_key)


def verify_signature(public_key: CertificatePublicKeyTypes, digest: bytes, signature: bytes) -> bool:
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        return False
    try:
        public_key.verify(signature, digest, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True
