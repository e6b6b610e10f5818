import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    Numeric,
    DateTime,
    Date,
    Text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from quoteflow.database import Base, utcnow

QUOTATION_STATUSES = ("draft", "sent", "accepted", "rejected")


class Quotation(Base):
    __tablename__ = "quotations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    quotation_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False
    )
    project_id: Mapped[Optional[str]] = mapped_column(String(64))

    vendor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    vendor_email: Mapped[Optional[str]] = mapped_column(String(255))
    vendor_phone: Mapped[Optional[str]] = mapped_column(String(20))
    vendor_company: Mapped[Optional[str]] = mapped_column(String(255))
    vendor_address: Mapped[Optional[str]] = mapped_column(Text)

    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    # Figures entered directly by the caller. They become the effective totals
    # whenever the quotation has no items.
    manual_subtotal: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    manual_tax_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    manual_discount_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2)
    )

    notes: Mapped[Optional[str]] = mapped_column(Text)
    terms_and_conditions: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="draft")
    # Bumped on every status change; the transition compare-and-set checks status
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_by: Mapped[Optional[str]] = mapped_column(String(64))
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    accepted_by: Mapped[Optional[str]] = mapped_column(String(64))
    accepted_notes: Mapped[Optional[str]] = mapped_column(Text)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejected_by: Mapped[Optional[str]] = mapped_column(String(64))
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(255))
    rejection_notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'sent', 'accepted', 'rejected')",
            name="chk_quotation_status",
        ),
        CheckConstraint(
            "expiry_date >= issue_date", name="chk_quotation_dates"
        ),
        Index("idx_quotations_status", "status"),
        Index("idx_quotations_project", "project_id"),
        Index("idx_quotations_expiry", "expiry_date"),
    )


class QuotationItem(Base):
    __tablename__ = "quotation_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    quotation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("quotations.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text)
    unit: Mapped[Optional[str]] = mapped_column(String(20))
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0.00")
    )
    discount_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0.00")
    )
    # Derived by services.pricing.compute_item, never set from request input
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "quotation_id", "line_number", name="uq_quotation_line_item"
        ),
        CheckConstraint("quantity > 0", name="chk_quotation_item_qty"),
        CheckConstraint("unit_price >= 0", name="chk_quotation_item_price"),
        CheckConstraint(
            "tax_rate >= 0 AND tax_rate <= 100", name="chk_quotation_item_tax"
        ),
        CheckConstraint(
            "discount_rate >= 0 AND discount_rate <= 100",
            name="chk_quotation_item_discount",
        ),
        Index("idx_quotation_items_quotation", "quotation_id"),
    )


class QuotationSequence(Base):
    """Last number issued per year partition, e.g. prefix 'QT-2025-'."""

    __tablename__ = "quotation_sequences"

    prefix: Mapped[str] = mapped_column(String(40), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
