"""Phase 2 QR code: TLV encoding of the invoice summary and signature data."""

from __future__ import annotations

import base64
import re
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Union

from lxml import etree

from fatoora.services.zatca.exceptions import FieldTooLong, MalformedDocument
from fatoora.services.zatca.ubl import SIMPLIFIED_PREFIX, XPATH_NS

TLVValue = Union[bytes, str]

MAX_VALUE_LENGTH = 255

# Trailing "Z" or a numeric UTC offset (+03:00, -0300)
_ZONE_SUFFIX = re.compile(r"(Z|[+-]\d{2}:?\d{2})$")


class QRTag(IntEnum):
    SELLER_NAME = 1
    VAT_NUMBER = 2
    TIMESTAMP = 3
    INVOICE_TOTAL = 4
    VAT_TOTAL = 5
    INVOICE_HASH = 6
    SIGNATURE = 7
    PUBLIC_KEY = 8
    CERTIFICATE_SIGNATURE = 9


@dataclass(frozen=True)
class QRSummary:
    """Invoice fields carried by QR tags 1-5."""

    seller_name: str
    vat_number: str
    timestamp: str
    total_amount: str
    vat_amount: str
    simplified: bool = True


def _tlv(tag: int, value: bytes) -> bytes:
    """Encode a single TLV field with 1-byte tag and 1-byte length (max 255)."""
    if not 0 <= tag <= 255:
        raise ValueError(f"TLV tag out of range: {tag}")
    length = len(value)
    if length > MAX_VALUE_LENGTH:
        raise FieldTooLong(tag, length)
    return struct.pack("BB", tag, length) + value


def encode_tlv(fields: Iterable[tuple[int, TLVValue]]) -> str:
    """Serialize ``(tag, value)`` pairs in the given order and base64 the result.

    ``str`` values are UTF-8 encoded, ``bytes`` are written as-is.
    """
    tlv_data = b"".join(
        _tlv(int(tag), value.encode("utf-8") if isinstance(value, str) else value)
        for tag, value in fields
    )
    return base64.b64encode(tlv_data).decode("ascii")


def decode_tlv(payload: str) -> list[tuple[int, bytes]]:
    """Split a base64 TLV payload back into ``(tag, raw bytes)`` pairs."""
    raw = base64.b64decode(payload)
    fields: list[tuple[int, bytes]] = []
    pos = 0
    while pos < len(raw):
        if pos + 1 >= len(raw):
            raise ValueError(f"Truncated TLV data at position {pos}")
        tag, length = raw[pos], raw[pos + 1]
        pos += 2
        if pos + length > len(raw):
            raise ValueError(
                f"Tag {tag} claims length {length} but only {len(raw) - pos} bytes remain"
            )
        fields.append((tag, raw[pos:pos + length]))
        pos += length
    return fields


def build_qr_fields(
    summary: QRSummary,
    invoice_digest: bytes,
    signature: bytes,
    public_key: bytes,
    certificate_signature: bytes | None = None,
) -> list[tuple[int, TLVValue]]:
    """Fixed-order QR field list.

    Tag 9 is only emitted for simplified invoices and only when the
    certificate signature is supplied.
    """
    fields: list[tuple[int, TLVValue]] = [
        (QRTag.SELLER_NAME, summary.seller_name),
        (QRTag.VAT_NUMBER, summary.vat_number),
        (QRTag.TIMESTAMP, summary.timestamp),
        (QRTag.INVOICE_TOTAL, summary.total_amount),
        (QRTag.VAT_TOTAL, summary.vat_amount),
        (QRTag.INVOICE_HASH, invoice_digest),
        (QRTag.SIGNATURE, signature),
        (QRTag.PUBLIC_KEY, public_key),
    ]
    if summary.simplified and certificate_signature is not None:
        fields.append((QRTag.CERTIFICATE_SIGNATURE, certificate_signature))
    return fields


def _required_text(root: etree._Element, path: str) -> str:
    text = root.findtext(path, namespaces=XPATH_NS)
    if text is None or not text.strip():
        raise MalformedDocument(f"Missing QR source element: {path}")
    return text.strip()


def qr_summary_from_document(root: etree._Element) -> QRSummary:
    """Read QR tags 1-5 from the invoice itself."""
    issue_date = _required_text(root, "cbc:IssueDate")
    issue_time = _required_text(root, "cbc:IssueTime")
    # Timestamp must match IssueDate + IssueTime
    timestamp = f"{issue_date}T{issue_time}"
    if not _ZONE_SUFFIX.search(issue_time):
        timestamp += "Z"

    type_code = root.find("cbc:InvoiceTypeCode", namespaces=XPATH_NS)
    sub_type = type_code.get("name", "") if type_code is not None else ""

    return QRSummary(
        seller_name=_required_text(
            root, "cac:AccountingSupplierParty/cac:Party/cac:PartyLegalEntity/cbc:RegistrationName"
        ),
        vat_number=_required_text(
            root, "cac:AccountingSupplierParty/cac:Party/cac:PartyTaxScheme/cbc:CompanyID"
        ),
        timestamp=timestamp,
        total_amount=_required_text(root, "cac:LegalMonetaryTotal/cbc:TaxInclusiveAmount"),
        vat_amount=_required_text(root, "cac:TaxTotal/cbc:TaxAmount"),
        simplified=sub_type.startswith(SIMPLIFIED_PREFIX),
    )
