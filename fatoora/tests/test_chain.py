"""Unit tests for the ICV/PIH invoice hash chain."""

from __future__ import annotations

from decimal import Decimal
from typing import Callable

import pytest
from lxml import etree

from fatoora.services.zatca.certificate import Certificate
from fatoora.services.zatca.chain import (
    ChainLink,
    ChainTracker,
    embed_chain_link,
    initial_previous_hash,
    read_chain_link,
    verify_chain,
)
from fatoora.services.zatca.exceptions import MalformedDocument
from fatoora.services.zatca.signer import SignedInvoice, sign_invoice
from fatoora.services.zatca.ubl import CAC, CBC, XPATH_NS

INITIAL_PIH = "NWZlY2ViNjZmZmM4NmYzOGQ5NTI3ODZjNmQ2OTZjNzljMmRiYzIzOWRkNGU5MWI0NjcyOWQ3M2EyN2ZiNTdlOQ=="


def _sign_chain(
    make_invoice: Callable[..., etree._Element],
    certificate: Certificate,
    count: int,
) -> list[SignedInvoice]:
    tracker = ChainTracker()
    signed: list[SignedInvoice] = []
    for n in range(1, count + 1):
        link = tracker.next_link()
        document = make_invoice(invoice_id=f"INV-2026-000{n}")
        embed_chain_link(document, link)
        result = sign_invoice(document, certificate)
        tracker.advance(result.invoice_hash)
        signed.append(result)
    return signed


class TestInitialHash:
    def test_constant(self) -> None:
        assert initial_previous_hash() == INITIAL_PIH


class TestChainTracker:
    def test_starts_at_one_with_initial_hash(self) -> None:
        assert ChainTracker().next_link() == ChainLink(1, INITIAL_PIH)

    def test_advance(self) -> None:
        tracker = ChainTracker()
        assert tracker.advance("aGFzaDE=") == ChainLink(2, "aGFzaDE=")
        assert tracker.next_link() == ChainLink(2, "aGFzaDE=")

    def test_resume_mid_chain(self) -> None:
        tracker = ChainTracker(last_sequence=41, last_hash="aGFzaDQx")
        assert tracker.next_link() == ChainLink(42, "aGFzaDQx")


class TestEmbedAndRead:
    def test_read_built_invoice(self, invoice: etree._Element) -> None:
        assert read_chain_link(invoice) == ChainLink(1, INITIAL_PIH)

    def test_embed_overwrites_existing_references(self, invoice: etree._Element) -> None:
        embed_chain_link(invoice, ChainLink(7, "cHJldmlvdXM="))
        assert read_chain_link(invoice) == ChainLink(7, "cHJldmlvdXM=")
        refs = invoice.findall(f"{{{CAC}}}AdditionalDocumentReference")
        assert [adr.findtext(f"{{{CBC}}}ID") for adr in refs] == ["ICV", "PIH"]

    def test_embed_adds_missing_references(self, invoice: etree._Element) -> None:
        for adr in invoice.findall(f"{{{CAC}}}AdditionalDocumentReference"):
            invoice.remove(adr)
        embed_chain_link(invoice, ChainLink(3, "cHJldmlvdXM="))
        assert read_chain_link(invoice) == ChainLink(3, "cHJldmlvdXM=")

    def test_read_missing_references(self, invoice: etree._Element) -> None:
        pih = invoice.find("cac:AdditionalDocumentReference[cbc:ID='PIH']", namespaces=XPATH_NS)
        invoice.remove(pih)
        with pytest.raises(MalformedDocument, match="chain references"):
            read_chain_link(invoice)

    def test_read_non_integer_icv(self, invoice: etree._Element) -> None:
        uuid_el = invoice.find("cac:AdditionalDocumentReference[cbc:ID='ICV']/cbc:UUID", namespaces=XPATH_NS)
        uuid_el.text = "one"
        with pytest.raises(MalformedDocument, match="not an integer"):
            read_chain_link(invoice)


class TestVerifyChain:
    def test_valid_chain(self, make_invoice: Callable[..., etree._Element], certificate: Certificate) -> None:
        signed = _sign_chain(make_invoice, certificate, 3)

        assert [s.chain_link.sequence for s in signed] == [1, 2, 3]  # type: ignore[union-attr]
        assert signed[1].chain_link.previous_hash == signed[0].invoice_hash  # type: ignore[union-attr]

        result = verify_chain([s.xml for s in signed])
        assert result.valid
        assert result.checked_count == 3

    def test_tampered_invoice_breaks_next_link(
        self, make_invoice: Callable[..., etree._Element], certificate: Certificate
    ) -> None:
        signed = _sign_chain(make_invoice, certificate, 3)
        tampered = signed[1].xml.replace(b"400.00", b"900.00")
        assert tampered != signed[1].xml

        result = verify_chain([signed[0].xml, tampered, signed[2].xml])
        assert not result.valid
        assert result.failed_index == 2
        assert result.checked_count == 2
        assert result.error_message == "PIH mismatch at ICV 3"

    def test_resigned_predecessor_breaks_successor(
        self, make_invoice: Callable[..., etree._Element], certificate: Certificate
    ) -> None:
        """Invoice 2 chains to h1; a changed invoice 1 (h1') no longer satisfies it."""
        first = make_invoice(invoice_id="INV-2026-0001")
        h1 = sign_invoice(first, certificate)
        second = make_invoice(invoice_id="INV-2026-0002", icv=2, pih=h1.invoice_hash)
        h2 = sign_invoice(second, certificate)

        changed_first = make_invoice(invoice_id="INV-2026-0001", total_vat=Decimal("52.17"))
        h1_prime = sign_invoice(changed_first, certificate)
        assert h1_prime.invoice_hash != h1.invoice_hash

        assert verify_chain([h1.xml, h2.xml]).valid
        result = verify_chain([h1_prime.xml, h2.xml])
        assert not result.valid
        assert result.failed_index == 1

    def test_sequence_gap(self, make_invoice: Callable[..., etree._Element], certificate: Certificate) -> None:
        h1 = sign_invoice(make_invoice(), certificate)
        skipped = sign_invoice(make_invoice(invoice_id="INV-2026-0003", icv=3, pih=h1.invoice_hash), certificate)

        result = verify_chain([h1.xml, skipped.xml])
        assert not result.valid
        assert result.error_message == "ICV 3 does not follow 1"

    def test_wrong_first_hash(self, make_invoice: Callable[..., etree._Element], certificate: Certificate) -> None:
        h1 = sign_invoice(make_invoice(), certificate)
        result = verify_chain([h1.xml], first_previous_hash="c29tZXRoaW5nIGVsc2U=")
        assert not result.valid
        assert result.failed_index == 0

    def test_malformed_document_reported(self) -> None:
        result = verify_chain([b"<Invoice"])
        assert not result.valid
        assert result.failed_index == 0
        assert "cannot be parsed" in (result.error_message or "")

    def test_empty(self) -> None:
        result = verify_chain([])
        assert result.valid
        assert result.checked_count == 0
