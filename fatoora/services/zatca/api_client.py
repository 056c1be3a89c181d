"""Fatoora API HTTP client for submitting signed invoices."""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from fatoora.core.config import settings
from fatoora.services.zatca.certificate import Certificate
from fatoora.services.zatca.exceptions import ZatcaApiError
from fatoora.services.zatca.signer import SignedInvoice

logger = logging.getLogger(__name__)


class FatooraClient:
    """HTTP client for the reporting, clearance and compliance-check endpoints."""

    def __init__(
        self,
        certificate: Certificate,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.certificate = certificate
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.API_TIMEOUT

    def _auth_header(self) -> dict[str, str]:
        """Basic auth using binarySecurityToken:secret."""
        if not self.certificate.secret:
            raise ValueError("API secret not configured for this certificate")
        creds = base64.b64encode(
            f"{self.certificate.binary_security_token()}:{self.certificate.secret}".encode()
        ).decode()
        return {"Authorization": f"Basic {creds}"}

    @staticmethod
    def _payload(invoice: SignedInvoice) -> dict[str, str]:
        if not invoice.uuid:
            raise ValueError("Signed invoice carries no UUID")
        return {
            "invoiceHash": invoice.invoice_hash,
            "uuid": invoice.uuid,
            "invoice": base64.b64encode(invoice.xml).decode("ascii"),
        }

    @staticmethod
    def _handle_response(resp: httpx.Response) -> dict[str, Any]:
        """Parse response, returning validation results even from 4xx errors.

        Submission endpoints report rejected invoices in 400 bodies; those are
        data for the caller. 406, 5xx and non-JSON bodies raise.
        """
        if resp.status_code == 406:
            raise ZatcaApiError(
                status_code=406,
                error_code="Version-Not-Supported",
                message=resp.text or "API version not supported",
            )

        if resp.status_code >= 500:
            raise ZatcaApiError(
                status_code=resp.status_code,
                error_code="SERVER_ERROR",
                message=resp.text or f"HTTP {resp.status_code}",
            )

        try:
            data: dict[str, Any] = resp.json()
        except ValueError:
            if resp.status_code >= 400:
                raise ZatcaApiError(
                    status_code=resp.status_code,
                    error_code="INVALID_RESPONSE",
                    message=resp.text or f"HTTP {resp.status_code} (empty body)",
                )
            raise ZatcaApiError(
                status_code=resp.status_code,
                error_code="PARSE_ERROR",
                message=f"Non-JSON response: {resp.text[:200] if resp.text else '(empty)'}",
            )
        return data

    async def _post(
        self, path: str, invoice: SignedInvoice, extra_headers: dict[str, str] | None = None
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                url,
                json=self._payload(invoice),
                headers={
                    **self._auth_header(),
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "Accept-Version": "V2",
                    "Accept-Language": "en",
                    **(extra_headers or {}),
                },
            )
        try:
            data = self._handle_response(resp)
        except ZatcaApiError as exc:
            logger.error("Fatoora %s failed for %s: %s", path, invoice.uuid, exc)
            raise
        if resp.status_code >= 400:
            logger.warning("Fatoora %s rejected %s: HTTP %s", path, invoice.uuid, resp.status_code)
        else:
            logger.info("Fatoora %s for %s: HTTP %s", path, invoice.uuid, resp.status_code)
        return data

    async def report_invoice(self, invoice: SignedInvoice) -> dict[str, Any]:
        """Report a simplified (B2C) invoice."""
        return await self._post("/invoices/reporting/single", invoice, {"Clearance-Status": "0"})

    async def clear_invoice(self, invoice: SignedInvoice) -> dict[str, Any]:
        """Submit a standard (B2B) invoice for clearance."""
        return await self._post("/invoices/clearance/single", invoice, {"Clearance-Status": "1"})

    async def check_compliance(self, invoice: SignedInvoice) -> dict[str, Any]:
        """Submit a sample invoice to the compliance-check endpoint."""
        return await self._post("/compliance/invoices", invoice)
