import logging
from decimal import Decimal

import pytest

from app.core.errors import ConcurrentModification, InvalidPaymentAmount
from app.core.settings import settings
from app.db.session import SessionLocal
from app.models.invoice import Invoice, InvoiceStatus, PaymentMethod
from app.schemas.actor import Actor
from app.schemas.invoice import PaymentCreate
from app.services.invoices import get_invoice, list_payments, record_payment, update_invoice_status

SECOND_ACTOR = Actor(id="REC-002")


@pytest.fixture
def other_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def pay(amount: str) -> PaymentCreate:
    return PaymentCreate(amount=Decimal(amount), method=PaymentMethod.cash)


def test_racing_payments_that_jointly_exceed_balance(caplog, db_session, other_session, actor, make_invoice):
    caplog.set_level(logging.INFO, logger="clinic_billing.ledger")
    invoice = make_invoice(send=True)

    # The second clerk reads the invoice before the first payment lands.
    stale = other_session.get(Invoice, invoice.id)
    assert stale.balance == Decimal("600.00")

    record_payment(db_session, invoice.id, pay("400.00"), actor=actor)

    with pytest.raises(InvalidPaymentAmount):
        record_payment(other_session, invoice.id, pay("500.00"), actor=SECOND_ACTOR)
    assert "Version conflict on invoice" in caplog.text

    current = get_invoice(db_session, invoice.id)
    assert current.amount_paid == Decimal("400.00")
    assert current.balance == Decimal("200.00")
    assert [p.amount for p in list_payments(db_session, invoice.id)] == [Decimal("400.00")]


def test_conflict_retry_applies_payment_that_still_fits(caplog, db_session, other_session, actor, make_invoice):
    caplog.set_level(logging.INFO, logger="clinic_billing.ledger")
    invoice = make_invoice(send=True)
    stale = other_session.get(Invoice, invoice.id)
    stale_version = stale.version

    record_payment(db_session, invoice.id, pay("400.00"), actor=actor)
    record_payment(other_session, invoice.id, pay("200.00"), actor=SECOND_ACTOR)
    assert "Version conflict on invoice" in caplog.text
    assert stale.version == stale_version + 2

    current = get_invoice(db_session, invoice.id)
    assert current.amount_paid == Decimal("600.00")
    assert current.status == InvoiceStatus.paid
    assert len(list_payments(db_session, invoice.id)) == 2


def test_conflict_without_retry_budget_raises(
    monkeypatch, db_session, other_session, actor, make_invoice
):
    monkeypatch.setattr(settings, "conflict_retries", 0)
    invoice = make_invoice(send=True)
    stale = other_session.get(Invoice, invoice.id)

    record_payment(db_session, invoice.id, pay("100.00"), actor=actor)
    with pytest.raises(ConcurrentModification):
        record_payment(other_session, invoice.id, pay("100.00"), actor=SECOND_ACTOR)
    assert stale.amount_paid == Decimal("100.00")

    current = get_invoice(db_session, invoice.id)
    assert current.amount_paid == Decimal("100.00")
    assert len(list_payments(db_session, invoice.id)) == 1


def test_expected_version_mismatch_is_rejected(db_session, actor, make_invoice):
    invoice = make_invoice(send=True)
    stale_version = invoice.version
    record_payment(db_session, invoice.id, pay("100.00"), actor=actor)

    draft = PaymentCreate(amount=Decimal("50.00"), method=PaymentMethod.check, expected_version=stale_version)
    with pytest.raises(ConcurrentModification):
        record_payment(db_session, invoice.id, draft, actor=actor)

    with pytest.raises(ConcurrentModification):
        update_invoice_status(
            db_session,
            invoice.id,
            InvoiceStatus.canceled,
            actor=actor,
            expected_version=stale_version,
        )

    current = get_invoice(db_session, invoice.id)
    assert current.amount_paid == Decimal("100.00")
    assert current.status == InvoiceStatus.sent


def test_each_write_bumps_version(db_session, actor, make_invoice):
    invoice = make_invoice()
    assert invoice.version == 1
    invoice = update_invoice_status(db_session, invoice.id, InvoiceStatus.sent, actor=actor)
    assert invoice.version == 2
    record_payment(db_session, invoice.id, pay("10.00"), actor=actor)
    assert get_invoice(db_session, invoice.id).version == 3
