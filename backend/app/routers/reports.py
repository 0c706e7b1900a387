from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.schemas.reports import BillingStatsOut
from app.services import invoices as invoice_service

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/stats", response_model=BillingStatsOut)
def billing_stats(
    db: Session = Depends(get_db),
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    recent: int | None = Query(default=None, ge=0, le=50),
):
    if start and end and start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="start must be on or before end"
        )
    return invoice_service.billing_stats(db, start=start, end=end, recent=recent)
