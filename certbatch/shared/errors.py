"""Error taxonomy for the issuance and delivery pipeline."""

from __future__ import annotations


class CertbatchError(Exception):
    """Base class for pipeline errors."""

    status_code = 500


class ValidationError(CertbatchError):
    """Missing or invalid request fields; nothing was processed."""

    status_code = 400


class NotFoundError(CertbatchError):
    """A template or certificate referenced by the request does not exist."""

    status_code = 404


class UpstreamError(CertbatchError):
    """The roster source could not be read."""

    status_code = 502


class RowProcessingError(CertbatchError):
    """Compositing or storage failed for a single roster row."""


class TemplateImageError(RowProcessingError):
    """The template image could not be decoded."""


class DeliveryFailure(CertbatchError):
    """The mail transport rejected or failed a single delivery."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail
