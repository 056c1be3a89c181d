"""Error taxonomy for e-invoice signing, storage and authority API calls."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fatoora.services.zatca.signer import SigningStage


class EInvoiceError(Exception):
    """Base class for every error raised by this package."""


class SigningError(EInvoiceError):
    """An invoice could not be signed. Never retried internally.

    ``stage`` is filled in by the orchestrator with the state that failed.
    """

    def __init__(self, message: str, stage: SigningStage | None = None) -> None:
        self.stage = stage
        super().__init__(message)


class MalformedDocument(SigningError):
    """Document cannot be parsed or a required element is missing."""


class InvalidCertificateEncoding(SigningError):
    """Certificate bytes are not a decodable X.509 certificate."""


class InvalidKeyEncoding(SigningError):
    """Private key bytes cannot be decoded."""


class SigningKeyUnavailable(SigningError):
    """Key is missing or unusable for the signature operation."""


class FieldTooLong(SigningError):
    """A QR field does not fit the single-byte TLV length."""

    def __init__(self, tag: int, length: int) -> None:
        self.tag = tag
        self.length = length
        super().__init__(f"QR tag {tag} value too long: {length} bytes (max 255)")


class StorageError(EInvoiceError):
    """Signed invoice could not be persisted."""


class ZatcaApiError(EInvoiceError):
    """Structured error from the authority API."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        raw_errors: list[dict[str, Any]] | None = None,
    ) -> None:
        self.status_code = status_code
        self.error_code = error_code
        self.raw_errors = raw_errors
        super().__init__(message)
