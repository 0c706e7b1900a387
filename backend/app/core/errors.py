from __future__ import annotations

from decimal import Decimal


class LedgerError(Exception):
    code = "ledger_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(LedgerError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type.capitalize()} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidPaymentAmount(LedgerError):
    code = "invalid_payment_amount"
    status_code = 400

    def __init__(self, amount: Decimal, balance: Decimal):
        if amount <= 0:
            message = "Payment amount must be greater than zero"
        else:
            message = f"Payment amount {amount:.2f} exceeds the outstanding balance of {balance:.2f}"
        super().__init__(message)
        self.amount = amount
        self.balance = balance


class IllegalStatusTransition(LedgerError):
    code = "illegal_status_transition"
    status_code = 409

    def __init__(self, current: str, requested: str, reason: str | None = None):
        message = f"Cannot move invoice from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.current = current
        self.requested = requested


class InvoiceNotEditable(LedgerError):
    code = "invoice_not_editable"
    status_code = 409

    def __init__(self, invoice_id: str, status: str, hint: str = "items can only change while draft"):
        super().__init__(f"Invoice {invoice_id} is {status}; {hint}")
        self.invoice_id = invoice_id
        self.status = status


class InvoiceNotPayable(LedgerError):
    code = "invoice_not_payable"
    status_code = 409

    def __init__(self, invoice_id: str, status: str):
        super().__init__(f"Invoice {invoice_id} is {status}; payments need a sent or overdue invoice")
        self.invoice_id = invoice_id
        self.status = status


class ConcurrentModification(LedgerError):
    code = "concurrent_modification"
    status_code = 409
    retryable = True

    def __init__(self, invoice_id: str):
        super().__init__(f"Invoice {invoice_id} was modified concurrently; re-fetch and retry")
        self.invoice_id = invoice_id


class PersistenceUnavailable(LedgerError):
    code = "persistence_unavailable"
    status_code = 503
    retryable = True

    def __init__(self, operation: str):
        super().__init__(f"Storage did not respond while trying to {operation}; retry later")
        self.operation = operation
