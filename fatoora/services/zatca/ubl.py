"""UBL 2.1 namespaces and a compact invoice skeleton builder.

The skeleton carries what the signing core reads or anchors on: ProfileID,
the ICV/PIH chain references, the supplier and customer parties and the
document totals. Line-level detail is kept minimal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from lxml import etree

# ─── UBL Namespaces ─────────────────────────────────────────────────────────

INVOICE_NS = "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
CAC = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
CBC = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"
EXT = "urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2"
SIG = "urn:oasis:names:specification:ubl:schema:xsd:CommonSignatureComponents-2"
SBC = "urn:oasis:names:specification:ubl:schema:xsd:SignatureBasicComponents-2"
SAC = "urn:oasis:names:specification:ubl:schema:xsd:SignatureAggregateComponents-2"
DS = "http://www.w3.org/2000/09/xmldsig#"
XADES = "http://uri.etsi.org/01903/v1.3.2#"

NSMAP_INVOICE = {
    None: INVOICE_NS,
    "cac": CAC,
    "cbc": CBC,
    "ext": EXT,
}

# Prefixes bound for XPath evaluation against an invoice root
XPATH_NS = {
    "inv": INVOICE_NS,
    "cac": CAC,
    "cbc": CBC,
    "ext": EXT,
}

INVOICE_TAG = f"{{{INVOICE_NS}}}Invoice"

SIMPLIFIED_PREFIX = "02"


@dataclass
class Party:
    name: str
    vat_number: str | None = None
    street: str | None = None
    building_number: str | None = None
    city: str | None = None
    district: str | None = None
    postal_code: str | None = None
    country_code: str = "SA"


@dataclass
class InvoiceLine:
    line_id: str
    item_name: str
    quantity: Decimal
    unit_price: Decimal
    net_amount: Decimal
    vat_amount: Decimal
    vat_category_code: str = "S"
    vat_rate: Decimal = Decimal("15.00")


@dataclass
class InvoiceDocument:
    invoice_id: str
    uuid: str
    issue_date: str  # YYYY-MM-DD
    issue_time: str  # HH:MM:SS
    seller: Party
    total_excluding_vat: Decimal
    total_vat: Decimal
    total_including_vat: Decimal
    icv: int
    pih: str
    buyer: Party | None = None
    lines: list[InvoiceLine] = field(default_factory=list)
    type_code: str = "388"
    sub_type: str = "0200000"
    currency_code: str = "SAR"
    profile_id: str = "reporting:1.0"


def _sub(parent: etree._Element, tag: str, text: str | None = None, **attribs: str) -> etree._Element:
    el = etree.SubElement(parent, tag)
    if text is not None:
        el.text = text
    for k, v in attribs.items():
        el.set(k, v)
    return el


def cbc(parent: etree._Element, local: str, text: str | None = None, **attribs: str) -> etree._Element:
    return _sub(parent, f"{{{CBC}}}{local}", text, **attribs)


def cac(parent: etree._Element, local: str) -> etree._Element:
    return _sub(parent, f"{{{CAC}}}{local}")


def _amount(parent: etree._Element, local: str, value: Decimal, currency: str) -> etree._Element:
    return cbc(parent, local, str(value.quantize(Decimal("0.01"))), currencyID=currency)


def is_invoice_root(root: etree._Element) -> bool:
    return root.tag == INVOICE_TAG


def build_invoice(data: InvoiceDocument) -> etree._Element:
    """Build an unsigned UBL invoice ready to be handed to the signer."""
    root = etree.Element(INVOICE_TAG, nsmap=NSMAP_INVOICE)

    cbc(root, "ProfileID", data.profile_id)
    cbc(root, "ID", data.invoice_id)
    cbc(root, "UUID", data.uuid)
    cbc(root, "IssueDate", data.issue_date)
    cbc(root, "IssueTime", data.issue_time)
    cbc(root, "InvoiceTypeCode", data.type_code, name=data.sub_type)
    cbc(root, "DocumentCurrencyCode", data.currency_code)
    cbc(root, "TaxCurrencyCode", "SAR")

    add_document_reference(root, "ICV", uuid=str(data.icv))
    add_document_reference(root, "PIH", attachment=data.pih)

    _build_party(cac(root, "AccountingSupplierParty"), data.seller)
    customer = cac(root, "AccountingCustomerParty")
    if data.buyer is not None:
        _build_party(customer, data.buyer)

    tax_total = cac(root, "TaxTotal")
    _amount(tax_total, "TaxAmount", data.total_vat, data.currency_code)

    lmt = cac(root, "LegalMonetaryTotal")
    line_extension = sum((line.net_amount for line in data.lines), Decimal("0"))
    _amount(lmt, "LineExtensionAmount", line_extension, data.currency_code)
    _amount(lmt, "TaxExclusiveAmount", data.total_excluding_vat, data.currency_code)
    _amount(lmt, "TaxInclusiveAmount", data.total_including_vat, data.currency_code)
    _amount(lmt, "PayableAmount", data.total_including_vat, data.currency_code)

    for line in data.lines:
        _build_line(root, line, data.currency_code)

    return root


def add_document_reference(
    parent: etree._Element,
    ref_id: str,
    *,
    uuid: str | None = None,
    attachment: str | None = None,
) -> etree._Element:
    """Append a cac:AdditionalDocumentReference (ICV, PIH or QR)."""
    adr = cac(parent, "AdditionalDocumentReference")
    cbc(adr, "ID", ref_id)
    if uuid is not None:
        cbc(adr, "UUID", uuid)
    if attachment is not None:
        attach = cac(adr, "Attachment")
        cbc(attach, "EmbeddedDocumentBinaryObject", attachment, mimeCode="text/plain")
    return adr


def _build_party(wrapper: etree._Element, info: Party) -> None:
    party = cac(wrapper, "Party")

    if info.street:
        addr = cac(party, "PostalAddress")
        cbc(addr, "StreetName", info.street)
        if info.building_number:
            cbc(addr, "BuildingNumber", info.building_number)
        if info.district:
            cbc(addr, "CitySubdivisionName", info.district)
        if info.city:
            cbc(addr, "CityName", info.city)
        if info.postal_code:
            cbc(addr, "PostalZone", info.postal_code)
        country = cac(addr, "Country")
        cbc(country, "IdentificationCode", info.country_code)

    if info.vat_number:
        pts = cac(party, "PartyTaxScheme")
        cbc(pts, "CompanyID", info.vat_number)
        ts = cac(pts, "TaxScheme")
        cbc(ts, "ID", "VAT")

    ple = cac(party, "PartyLegalEntity")
    cbc(ple, "RegistrationName", info.name)


def _build_line(root: etree._Element, line: InvoiceLine, currency: str) -> None:
    line_el = cac(root, "InvoiceLine")
    cbc(line_el, "ID", line.line_id)
    cbc(line_el, "InvoicedQuantity", str(line.quantity), unitCode="PCE")
    _amount(line_el, "LineExtensionAmount", line.net_amount, currency)

    tt = cac(line_el, "TaxTotal")
    _amount(tt, "TaxAmount", line.vat_amount, currency)
    _amount(tt, "RoundingAmount", line.net_amount + line.vat_amount, currency)

    item = cac(line_el, "Item")
    cbc(item, "Name", line.item_name)
    ct = cac(item, "ClassifiedTaxCategory")
    cbc(ct, "ID", line.vat_category_code)
    cbc(ct, "Percent", str(line.vat_rate.quantize(Decimal("0.01"))))
    ts = cac(ct, "TaxScheme")
    cbc(ts, "ID", "VAT")

    price = cac(line_el, "Price")
    _amount(price, "PriceAmount", line.unit_price, currency)
