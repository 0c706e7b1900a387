from decimal import Decimal

from pydantic import BaseModel

from app.schemas.invoice import PaymentOut


class BillingStatsOut(BaseModel):
    currency: str
    total_invoiced: Decimal
    total_paid: Decimal
    outstanding_balance: Decimal
    invoices_by_status: dict[str, int]
    recent_payments: list[PaymentOut]
