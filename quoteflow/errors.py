"""
Quotation error taxonomy.

Services raise these; the API layer renders them through a single exception
handler into the {"error": {"code": ..., "message": ...}} envelope.
"""

from typing import Optional


class QuotationError(Exception):
    code = "QUOTATION_ERROR"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.field:
            error["field"] = self.field
        return {"error": error}


class ValidationError(QuotationError):
    """Malformed item or quotation input. Raised before anything is written."""

    code = "VALIDATION_ERROR"
    http_status = 422


class QuotationNotFoundError(QuotationError):
    code = "QUOTATION_NOT_FOUND"
    http_status = 404


class QuotationItemNotFoundError(QuotationNotFoundError):
    code = "QUOTATION_ITEM_NOT_FOUND"


class InvalidTransitionError(QuotationError):
    code = "INVALID_TRANSITION"
    http_status = 409


class DocumentLockedError(QuotationError):
    code = "DOCUMENT_LOCKED"
    http_status = 423


class ConcurrencyConflictError(QuotationError):
    """Lost a numbering or status race. The whole operation is safe to retry."""

    code = "CONCURRENCY_CONFLICT"
    http_status = 409


class PersistenceError(QuotationError):
    code = "PERSISTENCE_ERROR"
    http_status = 503
