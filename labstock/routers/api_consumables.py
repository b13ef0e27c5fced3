from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..crud import consumables as inventory
from ..crud.transactions import list_for_consumable_identity
from ..db.session import get_db
from ..deps.auth import require_api_or_jwt
from ..schemas.consumable import (
    BatchIssueRequest,
    ConsumableOut,
    ConsumableUpdate,
    IssueRequest,
    ReconcileOut,
    StockIn,
    StockMovementOut,
)
from ..schemas.transaction import TransactionOut
from ..services import reconciliation

router = APIRouter(prefix="/api/v1/consumables", tags=["consumables"], dependencies=[Depends(require_api_or_jwt)])


def _movement(db: Session, entries) -> dict:
    consumable_ids = sorted({entry.consumable_id for entry in entries})
    return {
        "consumables": [inventory.get_consumable(db, consumable_id) for consumable_id in consumable_ids],
        "transactions": entries,
    }


@router.get("", response_model=list[ConsumableOut])
def api_list_consumables(limit: int = Query(default=100, le=1000), offset: int = 0, db: Session = Depends(get_db)):
    return inventory.list_consumables(db, limit=limit, offset=offset)


@router.post("", response_model=StockMovementOut, status_code=201)
def api_stock_in(payload: StockIn, db: Session = Depends(get_db)):
    entry = reconciliation.record_addition(db, **payload.model_dump())
    return _movement(db, [entry])


@router.get("/details", response_model=list[TransactionOut])
def api_consumable_details(name: str, category_fields: str | None = None, db: Session = Depends(get_db)):
    """Active ledger entries for a consumable name, newest first.

    ``category_fields`` is a JSON object narrowing the match, e.g.
    ``{"size": "M"}``.
    """

    fields = None
    if category_fields:
        try:
            fields = json.loads(category_fields)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid category fields format") from exc
        if not isinstance(fields, dict):
            raise HTTPException(status_code=400, detail="Invalid category fields format")
    return list_for_consumable_identity(db, name, fields)


@router.post("/issue-batch", response_model=StockMovementOut, status_code=201)
def api_issue_batch(payload: BatchIssueRequest, db: Session = Depends(get_db)):
    entries = reconciliation.record_batch_issue(
        db,
        lines=[reconciliation.IssueLine(item.consumable_id, item.quantity) for item in payload.items],
        issued_by_id=payload.issued_by_id,
        issued_to_id=payload.issued_to_id,
        reference_number=payload.reference_number,
        transaction_date=payload.transaction_date,
    )
    return _movement(db, entries)


@router.get("/{consumable_id}", response_model=ConsumableOut)
def api_get_consumable(consumable_id: int, db: Session = Depends(get_db)):
    return inventory.get_consumable(db, consumable_id)


@router.patch("/{consumable_id}", response_model=ConsumableOut)
def api_update_consumable(consumable_id: int, payload: ConsumableUpdate, db: Session = Depends(get_db)):
    consumable = inventory.get_consumable(db, consumable_id)
    data = payload.model_dump(exclude_none=True)
    if not data:
        return consumable
    return inventory.update_consumable_details(db, consumable, data)


@router.delete("/{consumable_id}")
def api_delete_consumable(consumable_id: int, db: Session = Depends(get_db)):
    inventory.delete_consumable(db, inventory.get_consumable(db, consumable_id))
    return {"status": "deleted"}


@router.post("/{consumable_id}/issue", response_model=StockMovementOut, status_code=201)
def api_issue(consumable_id: int, payload: IssueRequest, db: Session = Depends(get_db)):
    entry = reconciliation.record_issue(db, consumable_id=consumable_id, **payload.model_dump())
    return _movement(db, [entry])


@router.post("/{consumable_id}/reconcile", response_model=ReconcileOut)
def api_reconcile(consumable_id: int, db: Session = Depends(get_db)):
    result = reconciliation.reconcile(db, consumable_id)
    return ReconcileOut(
        consumable_id=result.consumable_id,
        add_total=result.add_total,
        issue_total=result.issue_total,
        available=result.available,
        updated_entries=result.updated_entries,
    )
