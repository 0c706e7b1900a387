from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.core.errors import InvalidPaymentAmount, InvoiceNotPayable, NotFound
from app.models.invoice import InvoiceStatus, PaymentMethod
from app.schemas.invoice import PaymentCreate
from app.services.invoices import get_invoice, list_payments, record_payment, update_invoice_status


def pay(amount: str, method: PaymentMethod = PaymentMethod.cash, **extra) -> PaymentCreate:
    return PaymentCreate(amount=Decimal(amount), method=method, **extra)


def test_full_payment_marks_invoice_paid(db_session, actor, make_invoice):
    invoice = make_invoice(send=True)
    assert invoice.total_amount == Decimal("600.00")
    assert invoice.balance == Decimal("600.00")

    paid_at = datetime(2026, 3, 2, 10, 30, tzinfo=timezone.utc)
    payment = record_payment(db_session, invoice.id, pay("600.00", processed_at=paid_at), actor=actor)
    assert payment.processed_by == actor.id

    invoice = get_invoice(db_session, invoice.id)
    assert invoice.amount_paid == Decimal("600.00")
    assert invoice.balance == Decimal("0.00")
    assert invoice.status == InvoiceStatus.paid
    assert invoice.paid_date is not None
    assert invoice.paid_date.replace(tzinfo=None) == paid_at.replace(tzinfo=None)


def test_overpayment_is_rejected_and_state_unchanged(db_session, actor, make_invoice):
    invoice = make_invoice(send=True)
    version = invoice.version

    with pytest.raises(InvalidPaymentAmount):
        record_payment(db_session, invoice.id, pay("700.00"), actor=actor)

    invoice = get_invoice(db_session, invoice.id)
    assert invoice.amount_paid == Decimal("0.00")
    assert invoice.balance == Decimal("600.00")
    assert invoice.status == InvoiceStatus.sent
    assert invoice.version == version
    assert list_payments(db_session, invoice.id) == []


@pytest.mark.parametrize("amount", ["0.00", "-10.00"])
def test_non_positive_amounts_are_rejected(db_session, actor, make_invoice, amount):
    invoice = make_invoice(send=True)
    with pytest.raises(InvalidPaymentAmount):
        record_payment(db_session, invoice.id, pay(amount), actor=actor)


def test_partial_payments_keep_ledger_balanced(db_session, actor, make_invoice):
    invoice = make_invoice(send=True)
    amounts = ["100.00", "0.01", "249.99", "150.00", "100.00"]

    for amount in amounts:
        record_payment(db_session, invoice.id, pay(amount, PaymentMethod.insurance), actor=actor)
        current = get_invoice(db_session, invoice.id)
        assert current.amount_paid + current.balance == current.total_amount
        assert current.balance >= 0

    current = get_invoice(db_session, invoice.id)
    assert current.status == InvoiceStatus.paid
    assert [p.amount for p in list_payments(db_session, invoice.id)] == [Decimal(a) for a in amounts]


def test_payment_exceeding_remaining_balance_after_partial(db_session, actor, make_invoice):
    invoice = make_invoice(send=True)
    record_payment(db_session, invoice.id, pay("450.00"), actor=actor)

    with pytest.raises(InvalidPaymentAmount) as excinfo:
        record_payment(db_session, invoice.id, pay("150.01"), actor=actor)
    assert excinfo.value.balance == Decimal("150.00")

    invoice = get_invoice(db_session, invoice.id)
    assert invoice.amount_paid == Decimal("450.00")
    assert invoice.status == InvoiceStatus.sent


def test_paid_invoice_accepts_no_further_payment(db_session, actor, make_invoice):
    invoice = make_invoice(send=True)
    record_payment(db_session, invoice.id, pay("600.00"), actor=actor)
    with pytest.raises(InvalidPaymentAmount):
        record_payment(db_session, invoice.id, pay("1.00"), actor=actor)


def test_draft_and_canceled_invoices_are_not_payable(db_session, actor, make_invoice):
    draft = make_invoice()
    with pytest.raises(InvoiceNotPayable):
        record_payment(db_session, draft.id, pay("10.00"), actor=actor)

    canceled = make_invoice(send=True)
    update_invoice_status(db_session, canceled.id, InvoiceStatus.canceled, actor=actor)
    with pytest.raises(InvoiceNotPayable):
        record_payment(db_session, canceled.id, pay("10.00"), actor=actor)


def test_payments_record_reference_and_notes(db_session, actor, make_invoice):
    invoice = make_invoice(send=True)
    payment = record_payment(
        db_session,
        invoice.id,
        pay("50.00", PaymentMethod.credit, transaction_reference="tr-1234", notes="Front desk card"),
        actor=actor,
    )
    stored = list_payments(db_session, invoice.id)
    assert [p.id for p in stored] == [payment.id]
    assert stored[0].transaction_reference == "tr-1234"
    assert stored[0].notes == "Front desk card"
    assert stored[0].method == PaymentMethod.credit


def test_unknown_invoice_raises_not_found(db_session, actor):
    with pytest.raises(NotFound):
        record_payment(db_session, "inv_missing", pay("10.00"), actor=actor)
    with pytest.raises(NotFound):
        list_payments(db_session, "inv_missing")
