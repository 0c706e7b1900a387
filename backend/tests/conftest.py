import os
import tempfile
from datetime import date, timedelta
from decimal import Decimal

_DB_DIR = tempfile.mkdtemp(prefix="clinic-billing-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'ledger.db')}"
os.environ.setdefault("APP_ENV", "test")

import pytest
from fastapi.testclient import TestClient

from app.db.session import SessionLocal, engine
from app.main import app
from app.models import Base
from app.models.invoice import InvoiceStatus
from app.schemas.actor import Actor
from app.schemas.invoice import InvoiceCreate, InvoiceItemCreate
from app.services.invoices import create_invoice, update_invoice_status


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def actor():
    return Actor(id="STAFF-001", request_id="req-test")


@pytest.fixture
def api_client():
    with TestClient(app) as client:
        yield client


@pytest.fixture
def actor_headers():
    return {"X-Actor-Id": "REC-001", "X-Request-Id": "req-api"}


@pytest.fixture
def make_invoice(db_session, actor):
    def _make(
        items=(("Office Visit", 2, "150.00"), ("X-Ray", 1, "300.00")),
        *,
        send: bool = False,
        due_date: date | None = None,
        tax_enabled: bool = False,
        patient_id: str = "p-001",
    ):
        payload = InvoiceCreate(
            patient_id=patient_id,
            due_date=due_date or date.today() + timedelta(days=30),
            tax_enabled=tax_enabled,
            items=[
                InvoiceItemCreate(description=description, quantity=quantity, unit_price=Decimal(price))
                for description, quantity, price in items
            ],
        )
        invoice = create_invoice(db_session, payload, actor=actor)
        if send:
            invoice = update_invoice_status(db_session, invoice.id, InvoiceStatus.sent, actor=actor)
        return invoice

    return _make
