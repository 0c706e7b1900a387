from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.invoice import InvoiceStatus, PaymentMethod


class InvoiceItemBase(BaseModel):
    description: str = Field(min_length=1, max_length=255)
    service_code: Optional[str] = Field(default=None, max_length=32)
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100, decimal_places=3)


class InvoiceItemCreate(InvoiceItemBase):
    pass


class InvoiceItemUpdate(BaseModel):
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    service_code: Optional[str] = Field(default=None, max_length=32)
    quantity: Optional[int] = Field(default=None, ge=1)
    unit_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, decimal_places=3)


class InvoiceItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    position: int
    description: str
    service_code: Optional[str] = None
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    amount: Decimal


class PaymentCreate(BaseModel):
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    method: PaymentMethod
    transaction_reference: Optional[str] = Field(default=None, max_length=120)
    notes: Optional[str] = None
    processed_at: Optional[datetime] = None
    expected_version: Optional[int] = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    invoice_id: str
    amount: Decimal
    method: PaymentMethod
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None
    processed_by: str
    processed_at: datetime


class InvoiceCreate(BaseModel):
    patient_id: str = Field(min_length=1, max_length=64)
    appointment_id: Optional[str] = Field(default=None, max_length=64)
    due_date: Optional[date] = None
    tax_enabled: bool = False
    notes: Optional[str] = None
    items: list[InvoiceItemCreate] = Field(default_factory=list)


class InvoiceUpdate(BaseModel):
    appointment_id: Optional[str] = Field(default=None, max_length=64)
    due_date: Optional[date] = None
    tax_enabled: Optional[bool] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus
    expected_version: Optional[int] = None


class InvoiceSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    invoice_number: str
    patient_id: str
    appointment_id: Optional[str] = None
    status: InvoiceStatus
    due_date: date
    paid_date: Optional[datetime] = None
    tax_enabled: bool
    subtotal: Decimal
    tax_total: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    version: int
    created_at: datetime
    updated_at: datetime


class InvoiceOut(InvoiceSummaryOut):
    model_config = ConfigDict(from_attributes=True)

    notes: Optional[str] = None
    sent_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    created_by: str
    updated_by: Optional[str] = None
    items: list[InvoiceItemOut]
    payments: list[PaymentOut]
