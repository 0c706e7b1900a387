import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from app.core.errors import LedgerError
from app.core.settings import settings, validate_settings
from app.db.session import engine
from app.models import Base
from app.routers.audit import router as audit_router
from app.routers.invoices import patient_router as patient_invoices_router
from app.routers.invoices import router as invoices_router
from app.routers.payments import router as payments_router
from app.routers.reports import router as reports_router

app = FastAPI(title="Clinic Billing API", version="0.1.0")
logger = logging.getLogger("clinic_billing.startup")
error_logger = logging.getLogger("clinic_billing.errors")


def _error_payload(request: Request, detail: str, code: str) -> dict:
    payload = {"detail": detail, "code": code}
    request_id = request.headers.get("x-request-id")
    if request_id:
        payload["request_id"] = request_id
    return payload


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    error_logger.info(
        "%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.code
    )
    headers = {"Retry-After": "1"} if exc.retryable and exc.status_code == 503 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(request, exc.message, exc.code),
        headers=headers,
    )


@app.exception_handler(OperationalError)
@app.exception_handler(PoolTimeoutError)
async def storage_error_handler(request: Request, exc: Exception):
    error_logger.warning("Storage unavailable for %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content=_error_payload(request, "Storage unavailable; retry later", "persistence_unavailable"),
        headers={"Retry-After": "1"},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = request.headers.get("x-request-id")
    error_logger.exception("Unhandled server error", extra={"request_id": request_id})
    payload = {"detail": "Internal server error"}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=500, content=payload)


@app.on_event("startup")
def startup():
    validate_settings(settings)
    Base.metadata.create_all(bind=engine)
    logger.info("Clinic billing ready (env=%s, currency=%s).", settings.app_env, settings.currency)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(invoices_router)
app.include_router(patient_invoices_router)
app.include_router(payments_router)
app.include_router(reports_router)
app.include_router(audit_router)
