"""Invoice signing orchestrator: canonicalize → hash → sign → extend → QR → serialize.

This is the single entry point used by callers that already hold an
assembled UBL invoice and the supplier's certificate.
"""

from __future__ import annotations

import base64
import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Literal, Sequence
from uuid import UUID

from lxml import etree

from fatoora.core.config import settings
from fatoora.services.storage import Storage
from fatoora.services.zatca.certificate import Certificate
from fatoora.services.zatca.chain import ChainLink, read_chain_link
from fatoora.services.zatca.exceptions import MalformedDocument, SigningError
from fatoora.services.zatca.extension import EXTENSION_URI, REFERENCED_SIGNATURE_ID, build_signature_extension
from fatoora.services.zatca.hashing import (
    DEFAULT_REMOVAL_RULES,
    DocumentSource,
    RemovalRule,
    apply_removal_rules,
    canonicalize,
    digest,
    parse_document,
)
from fatoora.services.zatca.qr_code import QRSummary, build_qr_fields, encode_tlv, qr_summary_from_document
from fatoora.services.zatca.signing import sign_with_certificate
from fatoora.services.zatca.ubl import CAC, CBC, add_document_reference, cac, cbc

logger = logging.getLogger(__name__)

AnchorPolicy = Literal["skip", "raise"]

PROFILE_ID_TAG = f"{{{CBC}}}ProfileID"
SUPPLIER_PARTY_TAG = f"{{{CAC}}}AccountingSupplierParty"


class SigningStage(str, enum.Enum):
    UNSIGNED = "Unsigned"
    CANONICALIZED = "Canonicalized"
    DIGESTED = "Digested"
    SIGNED = "Signed"
    EXTENDED = "Extended"
    QR_ATTACHED = "QRAttached"
    FINALIZED = "Finalized"


@dataclass(frozen=True)
class SignedInvoice:
    xml: bytes
    invoice_hash: str  # base64, the next invoice's PIH
    signature: str  # base64 DER ECDSA signature
    qr_code: str  # base64 TLV
    uuid: str | None = None
    chain_link: ChainLink | None = None

    def default_filename(self) -> str:
        """``<uuid>.xml``, or ``signed_invoice.xml`` when the UUID is not a valid UUID."""
        if self.uuid:
            try:
                return f"{UUID(self.uuid)}.xml"
            except ValueError:
                logger.warning("Invoice UUID %r is not a valid UUID; using default filename", self.uuid)
        return "signed_invoice.xml"

    def save(self, storage: Storage, filename: str | None = None) -> str:
        """Persist the signed XML and return where it was written."""
        return storage.put(filename or self.default_filename(), self.xml)


@contextmanager
def _stage(stage: SigningStage) -> Iterator[None]:
    """Tag any SigningError raised while reaching *stage*."""
    try:
        yield
    except SigningError as exc:
        exc.stage = stage
        logger.error("Invoice signing failed reaching %s: %s", stage.value, exc)
        raise


def _anchor(root: etree._Element, anchor_tag: str, policy: AnchorPolicy) -> etree._Element | None:
    """Top-level element new blocks go in front of, or None when skipped."""
    anchor = root.find(anchor_tag)
    if anchor is None:
        local = etree.QName(anchor_tag).localname
        if policy == "raise":
            raise MalformedDocument(f"Anchor element {local} not found")
        logger.warning("Anchor element %s not found; block not inserted", local)
    return anchor


def _qr_elements(root: etree._Element, qr_code: str) -> list[etree._Element]:
    """QR reference + cac:Signature placeholder, created with the root's prefixes."""
    adr = add_document_reference(root, "QR", attachment=qr_code)
    sig = cac(root, "Signature")
    cbc(sig, "ID", REFERENCED_SIGNATURE_ID)
    cbc(sig, "SignatureMethod", EXTENSION_URI)
    return [adr, sig]


def _optional_chain_link(root: etree._Element) -> ChainLink | None:
    try:
        return read_chain_link(root)
    except MalformedDocument:
        return None


def sign_invoice(
    document: DocumentSource,
    certificate: Certificate,
    *,
    summary: QRSummary | None = None,
    signing_time: datetime | None = None,
    removal_rules: Sequence[RemovalRule] = DEFAULT_REMOVAL_RULES,
    missing_anchor: AnchorPolicy | None = None,
) -> SignedInvoice:
    """Sign an assembled invoice and return the finalized document.

    The caller's document is never mutated; an element input is copied first.
    Any failure aborts the whole run: the raised SigningError carries the
    stage that could not be reached in ``exc.stage``. Retry from a fresh
    unsigned document.

    ``summary`` overrides the QR tags 1-5 otherwise read from the document.
    ``missing_anchor`` defaults to ``settings.MISSING_ANCHOR_POLICY``.
    """
    policy: AnchorPolicy = missing_anchor or settings.MISSING_ANCHOR_POLICY

    with _stage(SigningStage.UNSIGNED):
        root = parse_document(document)
        chain_link = _optional_chain_link(root)
        invoice_uuid = root.findtext(f"{{{CBC}}}UUID")

    with _stage(SigningStage.CANONICALIZED):
        canonical = canonicalize(root, removal_rules)

    with _stage(SigningStage.DIGESTED):
        invoice_digest = digest(canonical)
        invoice_hash = base64.b64encode(invoice_digest).decode("ascii")

    with _stage(SigningStage.SIGNED):
        signature = sign_with_certificate(invoice_digest, certificate)
        signature_b64 = base64.b64encode(signature).decode("ascii")

    with _stage(SigningStage.EXTENDED):
        # Stale extension / signature / QR blocks are dropped, never merged
        apply_removal_rules(root, removal_rules)
        extension = build_signature_extension(certificate, invoice_hash, signature_b64, signing_time)
        profile_id = _anchor(root, PROFILE_ID_TAG, policy)
        if profile_id is not None:
            profile_id.addprevious(extension)

    with _stage(SigningStage.QR_ATTACHED):
        qr_summary = summary or qr_summary_from_document(root)
        fields = build_qr_fields(
            qr_summary,
            invoice_digest=invoice_digest,
            signature=signature,
            public_key=certificate.public_key_bytes(),
            certificate_signature=certificate.certificate_signature(),
        )
        qr_code = encode_tlv(fields)
        supplier = _anchor(root, SUPPLIER_PARTY_TAG, policy)
        if supplier is not None:
            for el in _qr_elements(root, qr_code):
                supplier.addprevious(el)

    with _stage(SigningStage.FINALIZED):
        xml_bytes = etree.tostring(root, xml_declaration=True, encoding="UTF-8")

    logger.info(
        "Signed invoice %s (ICV %s): hash=%s",
        invoice_uuid,
        chain_link.sequence if chain_link else None,
        invoice_hash,
    )
    return SignedInvoice(
        xml=xml_bytes,
        invoice_hash=invoice_hash,
        signature=signature_b64,
        qr_code=qr_code,
        uuid=invoice_uuid.strip() if invoice_uuid else None,
        chain_link=chain_link,
    )
