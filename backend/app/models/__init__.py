from app.models.base import Base
from app.models.audit_log import AuditLog
from app.models.invoice import Invoice, InvoiceItem, InvoiceStatus, Payment, PaymentMethod

__all__ = [
    "Base",
    "AuditLog",
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
    "Payment",
    "PaymentMethod",
]
