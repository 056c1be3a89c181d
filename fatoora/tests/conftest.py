"""Shared test fixtures.

Certificates are generated per session: a throwaway secp256k1 "CA" issues the
supplier certificate, so the certificate carries a real CA signature for QR
tag 9.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from lxml import etree

from fatoora.services.zatca.certificate import Certificate
from fatoora.services.zatca.chain import initial_previous_hash
from fatoora.services.zatca.ubl import InvoiceDocument, InvoiceLine, Party, build_invoice

CERT_SERIAL = 379112742831380471835263969587287663520528387
API_SECRET = "Xlj15LyMCgSC66ObnEO/qVPfhSbs3kDTjWnGheYhfSs="


# ─── Key material ───────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def ca_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256K1())


@pytest.fixture(scope="session")
def signing_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256K1())


@pytest.fixture(scope="session")
def x509_certificate(
    ca_key: ec.EllipticCurvePrivateKey,
    signing_key: ec.EllipticCurvePrivateKey,
) -> x509.Certificate:
    subject = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "SA"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Tuwaiq Outdoor"),
        x509.NameAttribute(NameOID.COMMON_NAME, "TST-886431145-399999999999993"),
    ])
    issuer = x509.Name([
        x509.NameAttribute(NameOID.DOMAIN_COMPONENT, "local"),
        x509.NameAttribute(NameOID.DOMAIN_COMPONENT, "gov"),
        x509.NameAttribute(NameOID.DOMAIN_COMPONENT, "extgazt"),
        x509.NameAttribute(NameOID.COMMON_NAME, "TSZEINVOICE-SubCA-1"),
    ])
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(signing_key.public_key())
        .serial_number(CERT_SERIAL)
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .sign(ca_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def certificate_pem(x509_certificate: x509.Certificate) -> bytes:
    return x509_certificate.public_bytes(serialization.Encoding.PEM)


@pytest.fixture(scope="session")
def private_key_pem(signing_key: ec.EllipticCurvePrivateKey) -> bytes:
    return signing_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def certificate(certificate_pem: bytes, private_key_pem: bytes) -> Certificate:
    return Certificate.parse(certificate_pem, private_key_pem, API_SECRET)


# ─── Invoice documents ──────────────────────────────────────────────────────


def _sample_seller() -> Party:
    return Party(
        name="Tuwaiq Outdoor",
        vat_number="399999999999993",
        street="King Fahd Road",
        building_number="1234",
        city="Riyadh",
        district="Al Olaya",
        postal_code="12345",
    )


def _sample_buyer() -> Party:
    return Party(
        name="Test B2B Customer",
        vat_number="300000000000003",
        street="Prince Sultan St",
        building_number="5678",
        city="Jeddah",
        district="Al Rawdah",
        postal_code="23456",
    )


def _sample_lines() -> list[InvoiceLine]:
    return [
        InvoiceLine(
            line_id="1",
            item_name="Product A",
            quantity=Decimal("2"),
            unit_price=Decimal("86.96"),
            net_amount=Decimal("173.91"),
            vat_amount=Decimal("26.09"),
        ),
        InvoiceLine(
            line_id="2",
            item_name="Product B",
            quantity=Decimal("1"),
            unit_price=Decimal("173.91"),
            net_amount=Decimal("173.91"),
            vat_amount=Decimal("26.09"),
        ),
    ]


def sample_invoice_document(**overrides: object) -> InvoiceDocument:
    defaults = dict(
        invoice_id="INV-2026-0001",
        uuid="550e8400-e29b-41d4-a716-446655440000",
        issue_date="2026-02-12",
        issue_time="14:30:00",
        seller=_sample_seller(),
        buyer=_sample_buyer(),
        lines=_sample_lines(),
        total_excluding_vat=Decimal("347.82"),
        total_vat=Decimal("52.18"),
        total_including_vat=Decimal("400.00"),
        icv=1,
        pih=initial_previous_hash(),
    )
    defaults.update(overrides)
    return InvoiceDocument(**defaults)  # type: ignore[arg-type]


@pytest.fixture()
def make_invoice() -> Callable[..., etree._Element]:
    """Factory: unsigned invoice element, keyword overrides go to InvoiceDocument."""

    def _make(**overrides: object) -> etree._Element:
        return build_invoice(sample_invoice_document(**overrides))

    return _make


@pytest.fixture()
def invoice(make_invoice: Callable[..., etree._Element]) -> etree._Element:
    return make_invoice()
