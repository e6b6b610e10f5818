from datetime import date
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field


class QuotationItemCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    details: Optional[str] = None
    unit: Optional[str] = Field(None, max_length=20)
    quantity: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    unit_price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100, decimal_places=2)
    discount_rate: Decimal = Field(Decimal("0"), ge=0, le=100, decimal_places=2)


class QuotationItemUpdate(BaseModel):
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    details: Optional[str] = None
    unit: Optional[str] = Field(None, max_length=20)
    quantity: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    unit_price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100, decimal_places=2)
    discount_rate: Optional[Decimal] = Field(None, ge=0, le=100, decimal_places=2)


class AddItemsRequest(BaseModel):
    items: List[QuotationItemCreate] = Field(..., min_length=1, max_length=200)


class QuotationCreate(BaseModel):
    project_id: Optional[str] = Field(None, max_length=64)
    vendor_name: str = Field(..., min_length=1, max_length=255)
    vendor_email: Optional[str] = Field(None, max_length=255)
    vendor_phone: Optional[str] = Field(None, max_length=20)
    vendor_company: Optional[str] = Field(None, max_length=255)
    vendor_address: Optional[str] = None
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    # Only used while the quotation has no items
    subtotal: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    tax_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    discount_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    notes: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    items: List[QuotationItemCreate] = Field(default_factory=list, max_length=200)


class QuotationUpdate(BaseModel):
    project_id: Optional[str] = Field(None, max_length=64)
    vendor_name: Optional[str] = Field(None, min_length=1, max_length=255)
    vendor_email: Optional[str] = Field(None, max_length=255)
    vendor_phone: Optional[str] = Field(None, max_length=20)
    vendor_company: Optional[str] = Field(None, max_length=255)
    vendor_address: Optional[str] = None
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    subtotal: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    tax_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    discount_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    notes: Optional[str] = None
    terms_and_conditions: Optional[str] = None


class AcceptRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)


class QuotationItemResponse(BaseModel):
    id: str
    line_number: int
    description: str
    details: Optional[str] = None
    unit: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    discount_rate: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal

    model_config = {"from_attributes": True}


class QuotationResponse(BaseModel):
    id: str
    quotation_number: str
    project_id: Optional[str] = None
    vendor_name: str
    vendor_email: Optional[str] = None
    vendor_phone: Optional[str] = None
    vendor_company: Optional[str] = None
    vendor_address: Optional[str] = None
    issue_date: str
    expiry_date: str
    is_expired: bool
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    status: str
    notes: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    created_by: Optional[str] = None
    sent_at: Optional[str] = None
    accepted_at: Optional[str] = None
    accepted_by: Optional[str] = None
    accepted_notes: Optional[str] = None
    rejected_at: Optional[str] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejection_notes: Optional[str] = None
    items: List[QuotationItemResponse] = []
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}
