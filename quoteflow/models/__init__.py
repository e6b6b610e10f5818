"""Central model registry. Import all models so Alembic autodiscover works."""

from quoteflow.database import Base  # noqa: F401

from quoteflow.models.quotation import (  # noqa: F401
    Quotation,
    QuotationItem,
    QuotationSequence,
)
from quoteflow.models.audit_log import AuditLog  # noqa: F401
