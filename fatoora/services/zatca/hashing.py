"""XML canonicalization and SHA-256 hashing for e-invoices."""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from typing import Sequence, Union

from lxml import etree

from fatoora.core.config import settings
from fatoora.services.zatca.exceptions import MalformedDocument
from fatoora.services.zatca.ubl import XPATH_NS, is_invoice_root

DocumentSource = Union[bytes, str, etree._Element]

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


@dataclass(frozen=True)
class RemoveElement:
    """Delete every element (and its subtree) matched by ``path``."""

    path: str
    required: bool = False

    def targets(self, root: etree._Element) -> list[etree._Element]:
        return [el for el in root.xpath(self.path, namespaces=XPATH_NS) if isinstance(el, etree._Element)]


@dataclass(frozen=True)
class RemoveParentOf:
    """Delete the parent of every element matched by ``path``.

    Used to drop a block located by the value of one of its children.
    """

    path: str
    required: bool = False

    def targets(self, root: etree._Element) -> list[etree._Element]:
        parents: list[etree._Element] = []
        for el in root.xpath(self.path, namespaces=XPATH_NS):
            if not isinstance(el, etree._Element):
                continue
            parent = el.getparent()
            if parent is not None and all(parent is not p for p in parents):
                parents.append(parent)
        return parents


RemovalRule = Union[RemoveElement, RemoveParentOf]

# Elements excluded from the invoice hash
DEFAULT_REMOVAL_RULES: tuple[RemovalRule, ...] = (
    RemoveElement("ext:UBLExtensions"),
    RemoveElement("cac:Signature"),
    RemoveParentOf("cac:AdditionalDocumentReference/cbc:ID[. = 'QR']"),
)


def parse_document(document: DocumentSource) -> etree._Element:
    """Return a private copy of the invoice root element.

    Raises MalformedDocument if the input does not parse or is not a UBL Invoice.
    """
    try:
        if isinstance(document, etree._Element):
            root = etree.fromstring(etree.tostring(document, with_tail=False), _PARSER)
        else:
            data = document.encode("utf-8") if isinstance(document, str) else document
            root = etree.fromstring(data, _PARSER)
    except (etree.XMLSyntaxError, ValueError) as exc:
        raise MalformedDocument(f"Invoice XML cannot be parsed: {exc}") from exc

    if not is_invoice_root(root):
        raise MalformedDocument("Document has no top-level Invoice element")
    return root


def remove_element(el: etree._Element) -> None:
    """Detach *el* from its parent, keeping the text that followed it."""
    parent = el.getparent()
    if parent is None:
        raise MalformedDocument("The Invoice root element cannot be removed")
    if el.tail:
        prev = el.getprevious()
        if prev is not None:
            prev.tail = (prev.tail or "") + el.tail
        else:
            parent.text = (parent.text or "") + el.tail
    parent.remove(el)


def apply_removal_rules(root: etree._Element, removal_rules: Sequence[RemovalRule]) -> None:
    """Apply *removal_rules* in order, mutating *root* in place."""
    for rule in removal_rules:
        targets = rule.targets(root)
        if not targets and rule.required:
            raise MalformedDocument(f"Required element not found: {rule.path}")
        for el in targets:
            remove_element(el)


def canonicalize(
    document: DocumentSource,
    removal_rules: Sequence[RemovalRule] = DEFAULT_REMOVAL_RULES,
    *,
    exclusive: bool | None = None,
) -> bytes:
    """C14N of the invoice after the removal rules ran on a working copy.

    No comments, no XML declaration. The input document is left untouched.
    """
    root = parse_document(document)
    apply_removal_rules(root, removal_rules)
    if exclusive is None:
        exclusive = settings.EXCLUSIVE_C14N
    return etree.tostring(root, method="c14n", exclusive=exclusive, with_comments=False)


def digest(data: bytes) -> bytes:
    """SHA-256 of *data* (32 raw bytes)."""
    return hashlib.sha256(data).digest()


def hash_invoice(
    document: DocumentSource,
    removal_rules: Sequence[RemovalRule] = DEFAULT_REMOVAL_RULES,
) -> str:
    """SHA-256 hash of the canonicalized invoice, returned as base64 string."""
    return base64.b64encode(digest(canonicalize(document, removal_rules))).decode("ascii")
