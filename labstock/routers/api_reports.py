from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db.session import get_db
from ..deps.auth import require_api_or_jwt
from ..schemas.transaction import TransactionReport
from ..services.reporting import transaction_report

router = APIRouter(prefix="/api/v1/reports", tags=["reports"], dependencies=[Depends(require_api_or_jwt)])


@router.get("/transactions", response_model=TransactionReport)
def api_transaction_report(
    start_date: date,
    end_date: date,
    type: str | None = Query(default=None, description="ADD, ISSUE or BOTH"),
    db: Session = Depends(get_db),
):
    return transaction_report(db, start_date, end_date, type)
