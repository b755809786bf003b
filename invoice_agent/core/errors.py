"""
Error taxonomy shared by the extraction pipeline, the fillers and the HTTP layer.

Every error carries an ErrorKind so results and HTTP payloads can report a
stable machine-readable name next to the human-readable message.
"""

from enum import Enum


class ErrorKind(str, Enum):
    UNSUPPORTED_FORMAT = "UnsupportedFormat"
    MODEL_CANNOT_SEE_IMAGES = "ModelCannotSeeImages"
    UNKNOWN_PROVIDER = "UnknownProvider"
    RATE_LIMITED = "RateLimited"
    UNAUTHORIZED = "Unauthorized"
    TIMEOUT = "Timeout"
    BAD_REQUEST = "BadRequest"
    UNKNOWN = "Unknown"
    UNPARSEABLE_RESPONSE = "UnparseableResponse"
    TEMPLATE_NOT_FOUND = "TemplateNotFound"
    EMPTY_WORKBOOK = "EmptyWorkbook"
    INVOICE_NOT_FOUND = "InvoiceNotFound"


TRANSPORT_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.UNAUTHORIZED,
    ErrorKind.TIMEOUT,
    ErrorKind.BAD_REQUEST,
    ErrorKind.UNKNOWN,
})


class InvoiceAgentError(Exception):
    """Base class for every expected failure in the invoice pipeline"""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class UnsupportedFormat(InvoiceAgentError):
    kind = ErrorKind.UNSUPPORTED_FORMAT


class ModelCannotSeeImages(InvoiceAgentError):
    kind = ErrorKind.MODEL_CANNOT_SEE_IMAGES


class UnknownProvider(InvoiceAgentError):
    kind = ErrorKind.UNKNOWN_PROVIDER


class ProviderError(InvoiceAgentError):
    """A classified transport/provider failure (never retried through JSON repair)"""

    def __init__(self, message: str, kind: ErrorKind, provider: str | None = None, model: str | None = None):
        if kind not in TRANSPORT_KINDS:
            raise ValueError(f"{kind} is not a transport error kind")
        super().__init__(message, kind)
        self.provider = provider
        self.model = model


class UnparseableResponse(InvoiceAgentError):
    kind = ErrorKind.UNPARSEABLE_RESPONSE


class TemplateNotFound(InvoiceAgentError):
    kind = ErrorKind.TEMPLATE_NOT_FOUND


class EmptyWorkbook(InvoiceAgentError):
    kind = ErrorKind.EMPTY_WORKBOOK


class InvoiceNotFound(InvoiceAgentError):
    kind = ErrorKind.INVOICE_NOT_FOUND
