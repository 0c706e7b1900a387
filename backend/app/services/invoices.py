from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Callable, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import (
    ConcurrentModification,
    InvoiceNotEditable,
    NotFound,
    PersistenceUnavailable,
)
from app.core.settings import settings
from app.models.base import gen_id
from app.models.invoice import Invoice, InvoiceItem, InvoiceStatus, Payment
from app.schemas.actor import Actor
from app.schemas.invoice import (
    InvoiceCreate,
    InvoiceItemCreate,
    InvoiceItemUpdate,
    InvoiceUpdate,
    PaymentCreate,
)
from app.services.audit import log_event, snapshot_model
from app.services.balance import apply_payment
from app.services.invoice_status import (
    Trigger,
    ensure_editable,
    resolve_overdue,
    transition,
)
from app.services.line_items import ZERO, recalculate_invoice, to_money

logger = logging.getLogger("clinic_billing.ledger")

T = TypeVar("T")


def format_invoice_number(invoice_id: str) -> str:
    return f"INV-{invoice_id.split('_', 1)[-1][:8].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return _now()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _today(as_of: date | None = None) -> date:
    """The date persisted overdue moves are judged against.

    A caller may look back in time but never ahead: a stored ``overdue``
    must have been true by the server clock.
    """
    today = date.today()
    if as_of is None or as_of > today:
        return today
    return as_of


def _touch(invoice: Invoice, actor: Actor | None) -> None:
    invoice.updated_at = _now()
    if actor is not None:
        invoice.updated_by = actor.id


def _audit(
    db: Session,
    actor: Actor | None,
    action: str,
    invoice: Invoice,
    *,
    before_data: dict | None = None,
    entity_type: str = "invoice",
    entity_id: str | None = None,
    after_obj=None,
) -> None:
    log_event(
        db,
        actor=actor.id if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id or invoice.id,
        before_data=before_data,
        after_obj=after_obj if after_obj is not None else invoice,
        request_id=actor.request_id if actor else None,
        ip_address=actor.ip_address if actor else None,
    )


def _check_version(invoice: Invoice, expected_version: int | None) -> None:
    if expected_version is not None and invoice.version != expected_version:
        logger.info(
            "Invoice %s is at version %s, caller expected %s",
            invoice.id,
            invoice.version,
            expected_version,
        )
        raise ConcurrentModification(invoice.id)


def commit_with_retry(
    db: Session,
    invoice_id: str,
    operation: Callable[[], T],
    *,
    action: str,
) -> T:
    """Run ``operation`` and commit it as one unit.

    A stale invoice revision rolls the whole unit back and re-runs it against
    fresh state; once the retry budget is spent the conflict surfaces as
    ConcurrentModification. Any other failure is rolled back and re-raised.
    """
    attempts = settings.conflict_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            db.commit()
            return result
        except StaleDataError:
            db.rollback()
            if attempt >= attempts:
                logger.warning("Giving up on %s for invoice %s after %s conflicts", action, invoice_id, attempt)
                raise ConcurrentModification(invoice_id) from None
            logger.info("Version conflict on invoice %s during %s; retrying", invoice_id, action)
        except (OperationalError, PoolTimeoutError) as exc:
            db.rollback()
            logger.warning("Storage unavailable during %s for invoice %s: %s", action, invoice_id, exc)
            raise PersistenceUnavailable(action) from exc
        except Exception:
            db.rollback()
            raise
    raise ConcurrentModification(invoice_id)


def _load_invoice(db: Session, invoice_id: str) -> Invoice:
    invoice = db.get(Invoice, invoice_id)
    if not invoice:
        raise NotFound("invoice", invoice_id)
    return invoice


def _load_item(invoice: Invoice, item_id: str) -> InvoiceItem:
    for item in invoice.items:
        if item.id == item_id:
            return item
    raise NotFound("line item", item_id)


def _refresh_overdue(db: Session, invoice: Invoice, today: date | None) -> Invoice:
    def _op() -> None:
        current = _load_invoice(db, invoice.id)
        if resolve_overdue(current, today=_today(today)):
            _touch(current, None)
            _audit(db, None, "invoice.overdue", current)
            logger.info("Invoice %s is now overdue (due %s)", current.id, current.due_date)

    commit_with_retry(db, invoice.id, _op, action="mark overdue")
    return _load_invoice(db, invoice.id)


def mark_overdue_invoices(db: Session, *, today: date | None = None, apply: bool = True) -> list[str]:
    """Move every sent invoice past its due date with a balance to overdue."""
    resolved_today = _today(today)
    stmt = (
        select(Invoice)
        .where(Invoice.status == InvoiceStatus.sent)
        .where(Invoice.due_date < resolved_today)
        .where(Invoice.total_amount > Invoice.amount_paid)
        .order_by(Invoice.due_date.asc())
    )
    candidates = [invoice.id for invoice in db.scalars(stmt)]
    if not apply:
        return candidates

    marked: list[str] = []
    for invoice_id in candidates:
        invoice = _refresh_overdue(db, _load_invoice(db, invoice_id), resolved_today)
        if invoice.status == InvoiceStatus.overdue:
            marked.append(invoice_id)
    return marked


def get_invoice(db: Session, invoice_id: str, *, today: date | None = None) -> Invoice:
    invoice = _load_invoice(db, invoice_id)
    if invoice.status == InvoiceStatus.sent:
        invoice = _refresh_overdue(db, invoice, today)
    return invoice


def list_invoices(
    db: Session,
    *,
    patient_id: str | None = None,
    status: InvoiceStatus | None = None,
    limit: int = 50,
    offset: int = 0,
    today: date | None = None,
) -> list[Invoice]:
    mark_overdue_invoices(db, today=today)
    stmt = select(Invoice)
    if patient_id is not None:
        stmt = stmt.where(Invoice.patient_id == patient_id)
    if status is not None:
        stmt = stmt.where(Invoice.status == status)
    stmt = stmt.order_by(Invoice.created_at.desc(), Invoice.id).limit(limit).offset(offset)
    return list(db.scalars(stmt))


def create_invoice(db: Session, payload: InvoiceCreate, *, actor: Actor) -> Invoice:
    invoice_id = gen_id("inv")
    due_date = payload.due_date or date.today() + timedelta(days=settings.default_payment_terms_days)

    def _op() -> Invoice:
        invoice = Invoice(
            id=invoice_id,
            invoice_number=format_invoice_number(invoice_id),
            patient_id=payload.patient_id,
            appointment_id=payload.appointment_id,
            status=InvoiceStatus.draft,
            tax_enabled=payload.tax_enabled,
            due_date=due_date,
            notes=payload.notes,
            amount_paid=ZERO,
            created_by=actor.id,
            updated_by=actor.id,
        )
        for position, item in enumerate(payload.items):
            invoice.items.append(_new_item(item, position))
        recalculate_invoice(invoice)
        db.add(invoice)
        db.flush()
        _audit(db, actor, "invoice.created", invoice)
        return invoice

    invoice = commit_with_retry(db, invoice_id, _op, action="create invoice")
    logger.info("Invoice %s created for patient %s by %s", invoice.id, invoice.patient_id, actor.id)
    db.refresh(invoice)
    return invoice


def update_invoice(
    db: Session, invoice_id: str, payload: InvoiceUpdate, *, actor: Actor
) -> Invoice:
    data = payload.model_dump(exclude_unset=True)
    data.pop("expected_version", None)
    # due_date and tax_enabled cannot be cleared; null means "leave as is".
    requested = {
        field: value
        for field, value in data.items()
        if value is not None or field in {"appointment_id", "notes"}
    }

    def _op() -> Invoice:
        invoice = _load_invoice(db, invoice_id)
        _check_version(invoice, payload.expected_version)
        before_data = snapshot_model(invoice)
        changes = {
            field: value for field, value in requested.items() if getattr(invoice, field) != value
        }
        if set(changes) - {"notes"}:
            ensure_editable(invoice)
        for field, value in changes.items():
            setattr(invoice, field, value)
        if "tax_enabled" in changes:
            recalculate_invoice(invoice)
        _touch(invoice, actor)
        _audit(db, actor, "invoice.updated", invoice, before_data=before_data)
        return invoice

    invoice = commit_with_retry(db, invoice_id, _op, action="update invoice")
    db.refresh(invoice)
    return invoice


def delete_invoice(db: Session, invoice_id: str, *, actor: Actor) -> None:
    """Remove a draft invoice and its items. Anything already sent is canceled instead."""

    def _op() -> None:
        invoice = _load_invoice(db, invoice_id)
        if invoice.status != InvoiceStatus.draft:
            raise InvoiceNotEditable(
                invoice.id,
                InvoiceStatus(invoice.status).value,
                "only drafts can be deleted; cancel it instead",
            )
        log_event(
            db,
            actor=actor.id,
            action="invoice.deleted",
            entity_type="invoice",
            entity_id=invoice.id,
            before_obj=invoice,
            request_id=actor.request_id,
            ip_address=actor.ip_address,
        )
        db.delete(invoice)

    commit_with_retry(db, invoice_id, _op, action="delete invoice")
    logger.info("Draft invoice %s deleted by %s", invoice_id, actor.id)


def _new_item(payload: InvoiceItemCreate, position: int) -> InvoiceItem:
    return InvoiceItem(
        id=gen_id("item"),
        position=position,
        description=payload.description,
        service_code=payload.service_code,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
        tax_rate=payload.tax_rate,
        amount=ZERO,
    )


def add_item(
    db: Session, invoice_id: str, payload: InvoiceItemCreate, *, actor: Actor
) -> InvoiceItem:
    def _op() -> InvoiceItem:
        invoice = _load_invoice(db, invoice_id)
        ensure_editable(invoice)
        position = max((item.position for item in invoice.items), default=-1) + 1
        item = _new_item(payload, position)
        invoice.items.append(item)
        recalculate_invoice(invoice)
        _touch(invoice, actor)
        db.flush()
        _audit(db, actor, "invoice.item_added", invoice)
        return item

    item = commit_with_retry(db, invoice_id, _op, action="add item")
    db.refresh(item)
    return item


def update_item(
    db: Session,
    invoice_id: str,
    item_id: str,
    payload: InvoiceItemUpdate,
    *,
    actor: Actor,
) -> InvoiceItem:
    data = payload.model_dump(exclude_unset=True)

    def _op() -> InvoiceItem:
        invoice = _load_invoice(db, invoice_id)
        ensure_editable(invoice)
        item = _load_item(invoice, item_id)
        before_data = snapshot_model(invoice)
        for field in ("description", "quantity", "unit_price", "tax_rate"):
            if data.get(field) is not None:
                setattr(item, field, data[field])
        if "service_code" in data:
            item.service_code = data["service_code"]
        recalculate_invoice(invoice)
        _touch(invoice, actor)
        _audit(db, actor, "invoice.item_updated", invoice, before_data=before_data)
        return item

    item = commit_with_retry(db, invoice_id, _op, action="update item")
    db.refresh(item)
    return item


def remove_item(db: Session, invoice_id: str, item_id: str, *, actor: Actor) -> Invoice:
    def _op() -> Invoice:
        invoice = _load_invoice(db, invoice_id)
        ensure_editable(invoice)
        item = _load_item(invoice, item_id)
        before_data = snapshot_model(invoice)
        invoice.items.remove(item)
        recalculate_invoice(invoice)
        _touch(invoice, actor)
        _audit(db, actor, "invoice.item_removed", invoice, before_data=before_data)
        return invoice

    invoice = commit_with_retry(db, invoice_id, _op, action="remove item")
    db.refresh(invoice)
    return invoice


def update_invoice_status(
    db: Session,
    invoice_id: str,
    status: InvoiceStatus,
    *,
    actor: Actor,
    expected_version: int | None = None,
    today: date | None = None,
) -> Invoice:
    def _op() -> Invoice:
        invoice = _load_invoice(db, invoice_id)
        _check_version(invoice, expected_version)
        if resolve_overdue(invoice, today=_today(today)):
            _audit(db, None, "invoice.overdue", invoice)
        before_data = snapshot_model(invoice)
        if status == InvoiceStatus.sent:
            recalculate_invoice(invoice)
        previous = transition(invoice, status, trigger=Trigger.manual)
        _touch(invoice, actor)
        _audit(db, actor, f"invoice.{status.value}", invoice, before_data=before_data)
        logger.info(
            "Invoice %s moved %s -> %s by %s", invoice.id, previous.value, status.value, actor.id
        )
        return invoice

    invoice = commit_with_retry(db, invoice_id, _op, action=f"mark invoice {status.value}")
    db.refresh(invoice)
    return invoice


def list_payments(db: Session, invoice_id: str) -> list[Payment]:
    _load_invoice(db, invoice_id)
    stmt = (
        select(Payment)
        .where(Payment.invoice_id == invoice_id)
        .order_by(Payment.processed_at.asc(), Payment.id)
    )
    return list(db.scalars(stmt))


def get_payment(db: Session, payment_id: str) -> Payment:
    payment = db.get(Payment, payment_id)
    if not payment:
        raise NotFound("payment", payment_id)
    return payment


def record_payment(
    db: Session,
    invoice_id: str,
    draft: PaymentCreate,
    *,
    actor: Actor,
    today: date | None = None,
) -> Payment:
    processed_at = _as_utc(draft.processed_at)

    def _op() -> Payment:
        invoice = _load_invoice(db, invoice_id)
        _check_version(invoice, draft.expected_version)
        if resolve_overdue(invoice, today=_today(today)):
            _audit(db, None, "invoice.overdue", invoice)
        payment = Payment(
            id=gen_id("pmt"),
            invoice_id=invoice.id,
            amount=Decimal(draft.amount),
            method=draft.method,
            transaction_reference=draft.transaction_reference,
            notes=draft.notes,
            processed_by=actor.id,
            processed_at=processed_at,
        )
        became_paid = apply_payment(invoice, payment)
        _touch(invoice, actor)
        db.flush()
        _audit(
            db,
            actor,
            "payment.recorded",
            invoice,
            entity_type="payment",
            entity_id=payment.id,
            after_obj=payment,
        )
        _audit(db, actor, "invoice.payment_applied", invoice)
        if became_paid:
            _audit(db, actor, "invoice.paid", invoice)
        return payment

    payment = commit_with_retry(db, invoice_id, _op, action="record payment")
    logger.info(
        "Payment %s of %s recorded against invoice %s by %s",
        payment.id,
        payment.amount,
        invoice_id,
        actor.id,
    )
    db.refresh(payment)
    return payment


def billing_stats(
    db: Session,
    *,
    start: date | None = None,
    end: date | None = None,
    recent: int | None = None,
    today: date | None = None,
) -> dict:
    mark_overdue_invoices(db, today=today)

    invoice_filters = []
    payment_filters = []
    if start is not None:
        start_at = datetime.combine(start, time.min, tzinfo=timezone.utc)
        invoice_filters.append(Invoice.created_at >= start_at)
        payment_filters.append(Payment.processed_at >= start_at)
    if end is not None:
        end_at = datetime.combine(end, time.max, tzinfo=timezone.utc)
        invoice_filters.append(Invoice.created_at <= end_at)
        payment_filters.append(Payment.processed_at <= end_at)

    billed_statuses = [InvoiceStatus.sent, InvoiceStatus.overdue, InvoiceStatus.paid]
    open_statuses = [InvoiceStatus.sent, InvoiceStatus.overdue]

    total_invoiced = db.scalar(
        select(func.coalesce(func.sum(Invoice.total_amount), 0))
        .where(Invoice.status.in_(billed_statuses))
        .where(*invoice_filters)
    )
    outstanding = db.scalar(
        select(func.coalesce(func.sum(Invoice.total_amount - Invoice.amount_paid), 0))
        .where(Invoice.status.in_(open_statuses))
        .where(*invoice_filters)
    )
    total_paid = db.scalar(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(*payment_filters)
    )

    counts = {status.value: 0 for status in InvoiceStatus}
    status_rows = db.execute(
        select(Invoice.status, func.count(Invoice.id))
        .where(*invoice_filters)
        .group_by(Invoice.status)
    ).all()
    for status, count in status_rows:
        counts[InvoiceStatus(status).value] = int(count)

    recent_payments = list(
        db.scalars(
            select(Payment)
            .where(*payment_filters)
            .order_by(Payment.processed_at.desc(), Payment.id)
            .limit(recent if recent is not None else settings.stats_recent_payments)
        )
    )
    return {
        "currency": settings.currency,
        "total_invoiced": to_money(total_invoiced or 0),
        "total_paid": to_money(total_paid or 0),
        "outstanding_balance": to_money(outstanding or 0),
        "invoices_by_status": counts,
        "recent_payments": recent_payments,
    }
