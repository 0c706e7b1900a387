from __future__ import annotations

from decimal import Decimal

from app.core.errors import InvalidPaymentAmount, InvoiceNotPayable
from app.models.invoice import Invoice, InvoiceStatus, Payment
from app.services.invoice_status import Trigger, transition
from app.services.line_items import ZERO, to_money

PAYABLE_STATUSES = frozenset({InvoiceStatus.sent, InvoiceStatus.overdue})


def validate_payment_amount(invoice: Invoice, amount: Decimal) -> Decimal:
    amount = Decimal(amount)
    balance = invoice.balance
    if amount <= 0 or amount > balance:
        raise InvalidPaymentAmount(amount, balance)
    return amount


def ensure_payable(invoice: Invoice) -> None:
    if invoice.status not in PAYABLE_STATUSES:
        raise InvoiceNotPayable(invoice.id, InvoiceStatus(invoice.status).value)


def apply_payment(invoice: Invoice, payment: Payment) -> bool:
    """Append ``payment`` to the invoice ledger and settle the balance.

    Validation happens before anything is touched, so a rejected payment
    leaves the invoice exactly as it was. Returns True when this payment
    moved the invoice to paid.
    """
    amount = validate_payment_amount(invoice, payment.amount)
    ensure_payable(invoice)

    invoice.payments.append(payment)
    invoice.amount_paid = to_money((invoice.amount_paid or ZERO) + amount)
    if invoice.balance == 0:
        transition(invoice, InvoiceStatus.paid, trigger=Trigger.payment, at=payment.processed_at)
        return True
    return False
