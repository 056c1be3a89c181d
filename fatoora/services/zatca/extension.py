"""XAdES-shaped UBL signature extension block.

The block is a fixed template with three substitution slots: the certificate
reference (CertDigest + IssuerSerial, plus the certificate itself in KeyInfo),
the invoice digest and the signature value. Each slot has one fixed place in
the template, so the order they are set in does not matter.
"""

from __future__ import annotations

import base64
import hashlib
from datetime import datetime, timezone

from lxml import etree

from fatoora.services.zatca.certificate import Certificate
from fatoora.services.zatca.ubl import CBC, DS, EXT, SAC, SBC, SIG, XADES

EXTENSION_URI = "urn:oasis:names:specification:ubl:dsig:enveloped:xades"
SIGNATURE_INFORMATION_ID = "urn:oasis:names:specification:ubl:signature:1"
REFERENCED_SIGNATURE_ID = "urn:oasis:names:specification:ubl:signature:Invoice"

C14N11 = "http://www.w3.org/2006/12/xml-c14n11"
ECDSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256"
SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"
XPATH_TRANSFORM = "http://www.w3.org/TR/1999/REC-xpath-19991116"
SIGNATURE_PROPERTIES_TYPE = "http://www.w3.org/2000/09/xmldsig#SignatureProperties"

# Mirrors DEFAULT_REMOVAL_RULES in hashing
_EXCLUDED_XPATHS = (
    "not(//ancestor-or-self::ext:UBLExtensions)",
    "not(//ancestor-or-self::cac:Signature)",
    "not(//ancestor-or-self::cac:AdditionalDocumentReference[cbc:ID='QR'])",
)

_SLOTS = ("certificate", "invoice_digest", "signature_value")


def _el(parent: etree._Element, tag: str, text: str | None = None, **attribs: str) -> etree._Element:
    el = etree.SubElement(parent, tag)
    if text is not None:
        el.text = text
    for k, v in attribs.items():
        el.set(k, v)
    return el


class SignatureExtensionBuilder:
    """Fill the slots, then :meth:`build` the ``ext:UBLExtensions`` element."""

    def __init__(self) -> None:
        self.certificate: Certificate | None = None
        self.invoice_digest: str | None = None
        self.signature_value: str | None = None
        self.signing_time: datetime | None = None

    def set_certificate(self, certificate: Certificate) -> SignatureExtensionBuilder:
        self.certificate = certificate
        return self

    def set_invoice_digest(self, invoice_digest: str) -> SignatureExtensionBuilder:
        self.invoice_digest = invoice_digest
        return self

    def set_signature_value(self, signature_value: str) -> SignatureExtensionBuilder:
        self.signature_value = signature_value
        return self

    def set_signing_time(self, signing_time: datetime) -> SignatureExtensionBuilder:
        self.signing_time = signing_time
        return self

    def build(self) -> etree._Element:
        missing = [slot for slot in _SLOTS if not getattr(self, slot)]
        if missing:
            raise ValueError(f"Signature template slots not filled: {', '.join(missing)}")
        certificate: Certificate = self.certificate  # type: ignore[assignment]

        signed_props = self._signed_properties(certificate)
        props_digest = base64.b64encode(
            hashlib.sha256(etree.tostring(signed_props, method="c14n", exclusive=True)).digest()
        ).decode("ascii")

        ext_root = etree.Element(f"{{{EXT}}}UBLExtensions", nsmap={"ext": EXT, "cbc": CBC})
        ext_el = _el(ext_root, f"{{{EXT}}}UBLExtension")
        _el(ext_el, f"{{{EXT}}}ExtensionURI", EXTENSION_URI)
        content = _el(ext_el, f"{{{EXT}}}ExtensionContent")

        doc_sigs = etree.SubElement(
            content,
            f"{{{SIG}}}UBLDocumentSignatures",
            nsmap={"sig": SIG, "sac": SAC, "sbc": SBC},
        )
        sig_info = _el(doc_sigs, f"{{{SAC}}}SignatureInformation")
        _el(sig_info, f"{{{CBC}}}ID", SIGNATURE_INFORMATION_ID)
        _el(sig_info, f"{{{SBC}}}ReferencedSignatureID", REFERENCED_SIGNATURE_ID)

        ds_sig = etree.SubElement(sig_info, f"{{{DS}}}Signature", nsmap={"ds": DS})
        ds_sig.set("Id", "signature")
        self._signed_info(ds_sig, props_digest)
        _el(ds_sig, f"{{{DS}}}SignatureValue", self.signature_value)

        key_info = _el(ds_sig, f"{{{DS}}}KeyInfo")
        x509_data = _el(key_info, f"{{{DS}}}X509Data")
        _el(x509_data, f"{{{DS}}}X509Certificate", certificate.certificate_base64())

        obj = _el(ds_sig, f"{{{DS}}}Object")
        qp = etree.SubElement(obj, f"{{{XADES}}}QualifyingProperties", nsmap={"xades": XADES})
        qp.set("Target", "signature")
        qp.append(signed_props)

        return ext_root

    def _signed_properties(self, certificate: Certificate) -> etree._Element:
        when = self.signing_time or datetime.now(timezone.utc)
        if when.tzinfo is not None:
            when = when.astimezone(timezone.utc)

        signed_props = etree.Element(f"{{{XADES}}}SignedProperties", nsmap={"xades": XADES, "ds": DS})
        signed_props.set("Id", "xadesSignedProperties")
        ssp = _el(signed_props, f"{{{XADES}}}SignedSignatureProperties")
        _el(ssp, f"{{{XADES}}}SigningTime", when.strftime("%Y-%m-%dT%H:%M:%SZ"))

        cert_el = _el(_el(ssp, f"{{{XADES}}}SigningCertificate"), f"{{{XADES}}}Cert")
        cert_digest = _el(cert_el, f"{{{XADES}}}CertDigest")
        _el(cert_digest, f"{{{DS}}}DigestMethod", Algorithm=SHA256)
        _el(cert_digest, f"{{{DS}}}DigestValue", certificate.certificate_hash())

        issuer_serial = _el(cert_el, f"{{{XADES}}}IssuerSerial")
        _el(issuer_serial, f"{{{DS}}}X509IssuerName", certificate.issuer_name())
        _el(issuer_serial, f"{{{DS}}}X509SerialNumber", certificate.serial_number())
        return signed_props

    def _signed_info(self, ds_sig: etree._Element, props_digest: str) -> None:
        signed_info = _el(ds_sig, f"{{{DS}}}SignedInfo")
        _el(signed_info, f"{{{DS}}}CanonicalizationMethod", Algorithm=C14N11)
        _el(signed_info, f"{{{DS}}}SignatureMethod", Algorithm=ECDSA_SHA256)

        # Reference to the invoice body
        ref_invoice = _el(signed_info, f"{{{DS}}}Reference", Id="invoiceSignedData", URI="")
        transforms = _el(ref_invoice, f"{{{DS}}}Transforms")
        for xpath in _EXCLUDED_XPATHS:
            transform = _el(transforms, f"{{{DS}}}Transform", Algorithm=XPATH_TRANSFORM)
            _el(transform, f"{{{DS}}}XPath", xpath)
        _el(transforms, f"{{{DS}}}Transform", Algorithm=C14N11)
        _el(ref_invoice, f"{{{DS}}}DigestMethod", Algorithm=SHA256)
        _el(ref_invoice, f"{{{DS}}}DigestValue", self.invoice_digest)

        # Reference to SignedProperties
        ref_props = _el(
            signed_info,
            f"{{{DS}}}Reference",
            Type=SIGNATURE_PROPERTIES_TYPE,
            URI="#xadesSignedProperties",
        )
        _el(ref_props, f"{{{DS}}}DigestMethod", Algorithm=SHA256)
        _el(ref_props, f"{{{DS}}}DigestValue", props_digest)


def build_signature_extension(
    certificate: Certificate,
    invoice_digest: str,
    signature_value: str,
    signing_time: datetime | None = None,
) -> etree._Element:
    builder = (
        SignatureExtensionBuilder()
        .set_certificate(certificate)
        .set_invoice_digest(invoice_digest)
        .set_signature_value(signature_value)
    )
    if signing_time is not None:
        builder.set_signing_time(signing_time)
    return builder.build()
