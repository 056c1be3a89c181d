"""Invoice hash chain: ICV counter + previous invoice hash (PIH).

The signing core never persists the chain. Callers keep a :class:`ChainTracker`
(or their own store), embed the next link into each unsigned document and
record the hash returned by the signer.
"""

from __future__ import annotations

import base64
import hashlib
import threading
from dataclasses import dataclass
from typing import Sequence

from lxml import etree

from fatoora.services.zatca.exceptions import MalformedDocument, SigningError
from fatoora.services.zatca.hashing import DocumentSource, hash_invoice, parse_document
from fatoora.services.zatca.ubl import CAC, CBC, XPATH_NS, add_document_reference, cac, cbc


def initial_previous_hash() -> str:
    """PIH of the first invoice in the chain: base64 of the hex SHA-256 of "0".

    NWZlY2ViNjZmZmM4NmYzOGQ5NTI3ODZjNmQ2OTZjNzljMmRiYzIzOWRkNGU5MWI0NjcyOWQ3M2EyN2ZiNTdlOQ==
    """
    hex_str = hashlib.sha256(b"0").hexdigest()
    return base64.b64encode(hex_str.encode("ascii")).decode("ascii")


@dataclass(frozen=True)
class ChainLink:
    sequence: int
    previous_hash: str


@dataclass
class ChainVerificationResult:
    valid: bool
    checked_count: int = 0
    failed_index: int | None = None
    error_message: str | None = None


class ChainTracker:
    """In-memory holder of the last ICV and invoice hash."""

    def __init__(self, last_sequence: int = 0, last_hash: str | None = None) -> None:
        self._lock = threading.Lock()
        self._last_sequence = last_sequence
        self._last_hash = last_hash or initial_previous_hash()

    def next_link(self) -> ChainLink:
        with self._lock:
            return ChainLink(self._last_sequence + 1, self._last_hash)

    def advance(self, invoice_hash: str) -> ChainLink:
        """Record the hash of the invoice just signed; return the following link."""
        with self._lock:
            self._last_sequence += 1
            self._last_hash = invoice_hash
            return ChainLink(self._last_sequence + 1, self._last_hash)


def _find_reference(root: etree._Element, ref_id: str) -> etree._Element | None:
    for adr in root.findall(f"{{{CAC}}}AdditionalDocumentReference"):
        if (adr.findtext(f"{{{CBC}}}ID") or "").strip() == ref_id:
            return adr
    return None


def embed_chain_link(root: etree._Element, link: ChainLink) -> None:
    """Write the ICV and PIH references into an unsigned invoice, in place."""
    icv = _find_reference(root, "ICV")
    if icv is None:
        icv = add_document_reference(root, "ICV", uuid=str(link.sequence))
    else:
        uuid_el = icv.find(f"{{{CBC}}}UUID")
        if uuid_el is None:
            uuid_el = cbc(icv, "UUID")
        uuid_el.text = str(link.sequence)

    pih = _find_reference(root, "PIH")
    if pih is None:
        add_document_reference(root, "PIH", attachment=link.previous_hash)
        return
    embedded = pih.find(f"{{{CAC}}}Attachment/{{{CBC}}}EmbeddedDocumentBinaryObject")
    if embedded is None:
        attach = pih.find(f"{{{CAC}}}Attachment")
        if attach is None:
            attach = cac(pih, "Attachment")
        embedded = cbc(attach, "EmbeddedDocumentBinaryObject", mimeCode="text/plain")
    embedded.text = link.previous_hash


def read_chain_link(root: etree._Element) -> ChainLink:
    """Read the ICV and PIH references from an invoice."""
    icv = _find_reference(root, "ICV")
    pih = _find_reference(root, "PIH")
    sequence = icv.findtext("cbc:UUID", namespaces=XPATH_NS) if icv is not None else None
    previous_hash = (
        pih.findtext("cac:Attachment/cbc:EmbeddedDocumentBinaryObject", namespaces=XPATH_NS)
        if pih is not None
        else None
    )
    if not sequence or not previous_hash:
        raise MalformedDocument("Invoice carries no ICV/PIH chain references")
    try:
        return ChainLink(int(sequence.strip()), previous_hash.strip())
    except ValueError as exc:
        raise MalformedDocument(f"ICV is not an integer: {sequence!r}") from exc


def verify_chain(
    documents: Sequence[DocumentSource],
    first_previous_hash: str | None = None,
) -> ChainVerificationResult:
    """Check that every invoice's PIH is the hash of the invoice before it.

    Documents must be in issue order. The first one is checked against
    *first_previous_hash* (the initial PIH unless the sequence starts mid-chain).
    """
    expected_hash = first_previous_hash or initial_previous_hash()
    expected_sequence: int | None = None

    for index, document in enumerate(documents):
        try:
            root = parse_document(document)
            link = read_chain_link(root)
            invoice_hash = hash_invoice(root)
        except SigningError as exc:
            return ChainVerificationResult(
                valid=False, checked_count=index, failed_index=index, error_message=str(exc)
            )

        if link.previous_hash != expected_hash:
            return ChainVerificationResult(
                valid=False,
                checked_count=index,
                failed_index=index,
                error_message=f"PIH mismatch at ICV {link.sequence}",
            )
        if expected_sequence is not None and link.sequence != expected_sequence:
            return ChainVerificationResult(
                valid=False,
                checked_count=index,
                failed_index=index,
                error_message=f"ICV {link.sequence} does not follow {expected_sequence - 1}",
            )

        expected_hash = invoice_hash
        expected_sequence = link.sequence + 1

    return ChainVerificationResult(valid=True, checked_count=len(documents))
