from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import get_actor, get_as_of
from app.models.invoice import InvoiceStatus
from app.schemas.actor import Actor
from app.schemas.invoice import (
    InvoiceCreate,
    InvoiceItemCreate,
    InvoiceItemOut,
    InvoiceItemUpdate,
    InvoiceOut,
    InvoiceStatusUpdate,
    InvoiceSummaryOut,
    InvoiceUpdate,
    PaymentCreate,
    PaymentOut,
)
from app.services import invoices as invoice_service

router = APIRouter(prefix="/invoices", tags=["invoices"])
patient_router = APIRouter(prefix="/patients/{patient_id}/invoices", tags=["invoices"])


@router.post("", response_model=InvoiceOut, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return invoice_service.create_invoice(db, payload, actor=actor)


@router.get("", response_model=list[InvoiceSummaryOut])
def list_invoices(
    db: Session = Depends(get_db),
    patient_id: str | None = Query(default=None),
    status: InvoiceStatus | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    as_of: date | None = Depends(get_as_of),
):
    return invoice_service.list_invoices(
        db, patient_id=patient_id, status=status, limit=limit, offset=offset, today=as_of
    )


@patient_router.get("", response_model=list[InvoiceSummaryOut])
def list_patient_invoices(
    patient_id: str,
    db: Session = Depends(get_db),
    status: InvoiceStatus | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    as_of: date | None = Depends(get_as_of),
):
    return invoice_service.list_invoices(
        db, patient_id=patient_id, status=status, limit=limit, offset=offset, today=as_of
    )


@router.get("/{invoice_id}", response_model=InvoiceOut)
def get_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    as_of: date | None = Depends(get_as_of),
):
    return invoice_service.get_invoice(db, invoice_id, today=as_of)


@router.patch("/{invoice_id}", response_model=InvoiceOut)
def update_invoice(
    invoice_id: str,
    payload: InvoiceUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return invoice_service.update_invoice(db, invoice_id, payload, actor=actor)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    invoice_service.delete_invoice(db, invoice_id, actor=actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{invoice_id}/status", response_model=InvoiceOut)
def update_invoice_status(
    invoice_id: str,
    payload: InvoiceStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return invoice_service.update_invoice_status(
        db,
        invoice_id,
        payload.status,
        actor=actor,
        expected_version=payload.expected_version,
    )


@router.post("/{invoice_id}/items", response_model=InvoiceItemOut, status_code=status.HTTP_201_CREATED)
def add_invoice_item(
    invoice_id: str,
    payload: InvoiceItemCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return invoice_service.add_item(db, invoice_id, payload, actor=actor)


@router.patch("/{invoice_id}/items/{item_id}", response_model=InvoiceItemOut)
def update_invoice_item(
    invoice_id: str,
    item_id: str,
    payload: InvoiceItemUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return invoice_service.update_item(db, invoice_id, item_id, payload, actor=actor)


@router.delete("/{invoice_id}/items/{item_id}", response_model=InvoiceOut)
def delete_invoice_item(
    invoice_id: str,
    item_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return invoice_service.remove_item(db, invoice_id, item_id, actor=actor)


@router.get("/{invoice_id}/payments", response_model=list[PaymentOut])
def list_invoice_payments(invoice_id: str, db: Session = Depends(get_db)):
    return invoice_service.list_payments(db, invoice_id)


@router.post("/{invoice_id}/payments", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
def record_payment(
    invoice_id: str,
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return invoice_service.record_payment(db, invoice_id, payload, actor=actor)
