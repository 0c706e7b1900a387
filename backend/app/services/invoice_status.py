from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable

from app.core.errors import IllegalStatusTransition, InvoiceNotEditable
from app.models.invoice import Invoice, InvoiceStatus

TERMINAL_STATUSES = frozenset({InvoiceStatus.paid, InvoiceStatus.canceled})


class Trigger(str, enum.Enum):
    manual = "manual"
    payment = "payment"
    schedule = "schedule"


@dataclass(frozen=True)
class Transition:
    trigger: Trigger
    guard: Callable[[Invoice, date], str | None] | None = None


def _has_items(invoice: Invoice, _today: date) -> str | None:
    if not invoice.items:
        return "invoice has no items"
    return None


def _settled(invoice: Invoice, _today: date) -> str | None:
    if invoice.balance > 0:
        return f"balance of {invoice.balance:.2f} is still outstanding"
    return None


def _past_due(invoice: Invoice, today: date) -> str | None:
    if invoice.due_date is None or invoice.due_date >= today:
        return "due date has not passed"
    if invoice.balance <= 0:
        return "nothing is outstanding"
    return None


TRANSITIONS: dict[tuple[InvoiceStatus, InvoiceStatus], Transition] = {
    (InvoiceStatus.draft, InvoiceStatus.sent): Transition(Trigger.manual, _has_items),
    (InvoiceStatus.draft, InvoiceStatus.canceled): Transition(Trigger.manual),
    (InvoiceStatus.sent, InvoiceStatus.paid): Transition(Trigger.payment, _settled),
    (InvoiceStatus.sent, InvoiceStatus.overdue): Transition(Trigger.schedule, _past_due),
    (InvoiceStatus.overdue, InvoiceStatus.paid): Transition(Trigger.payment, _settled),
    (InvoiceStatus.sent, InvoiceStatus.canceled): Transition(Trigger.manual),
    (InvoiceStatus.overdue, InvoiceStatus.canceled): Transition(Trigger.manual),
}


def allowed_targets(status: InvoiceStatus, trigger: Trigger | None = None) -> list[InvoiceStatus]:
    return [
        target
        for (source, target), rule in TRANSITIONS.items()
        if source == status and (trigger is None or rule.trigger == trigger)
    ]


def check_transition(
    invoice: Invoice,
    target: InvoiceStatus,
    *,
    trigger: Trigger,
    today: date | None = None,
) -> None:
    current = InvoiceStatus(invoice.status)
    rule = TRANSITIONS.get((current, target))
    if rule is None:
        raise IllegalStatusTransition(current.value, target.value)
    if rule.trigger != trigger:
        raise IllegalStatusTransition(
            current.value, target.value, f"only reachable by {rule.trigger.value}"
        )
    if rule.guard is not None:
        reason = rule.guard(invoice, today or date.today())
        if reason:
            raise IllegalStatusTransition(current.value, target.value, reason)


def transition(
    invoice: Invoice,
    target: InvoiceStatus,
    *,
    trigger: Trigger,
    at: datetime | None = None,
) -> InvoiceStatus:
    """Move an invoice to ``target`` and apply the status side effects.

    Returns the previous status.
    """
    moment = at or datetime.now(timezone.utc)
    check_transition(invoice, target, trigger=trigger, today=moment.date())
    previous = InvoiceStatus(invoice.status)
    invoice.status = target
    if target == InvoiceStatus.sent:
        invoice.sent_at = moment
    elif target == InvoiceStatus.paid:
        invoice.paid_date = moment
    elif target == InvoiceStatus.canceled:
        invoice.canceled_at = moment
    return previous


def ensure_editable(invoice: Invoice) -> None:
    if invoice.status != InvoiceStatus.draft:
        raise InvoiceNotEditable(invoice.id, InvoiceStatus(invoice.status).value)


def is_overdue(invoice: Invoice, today: date) -> bool:
    return invoice.status == InvoiceStatus.sent and _past_due(invoice, today) is None


def resolve_overdue(invoice: Invoice, *, today: date | None = None) -> bool:
    """Apply the time-based sent -> overdue move; True when it happened."""
    resolved_today = today or date.today()
    if not is_overdue(invoice, resolved_today):
        return False
    check_transition(
        invoice, InvoiceStatus.overdue, trigger=Trigger.schedule, today=resolved_today
    )
    invoice.status = InvoiceStatus.overdue
    return True
