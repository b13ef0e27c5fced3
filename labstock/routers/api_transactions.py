from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..crud import transactions as ledger
from ..crud.people import get_person
from ..db.session import get_db
from ..deps.auth import require_api_or_jwt
from ..schemas.transaction import DeleteOut, TransactionEdit, TransactionOut
from ..services import reconciliation

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"], dependencies=[Depends(require_api_or_jwt)])


@router.get("/history", response_model=list[TransactionOut])
def api_history(
    limit: int = Query(default=200, le=1000),
    offset: int = 0,
    include_deleted: bool = True,
    db: Session = Depends(get_db),
):
    return ledger.list_history(db, limit=limit, offset=offset, include_deleted=include_deleted)


@router.get("/person/{person_id}", response_model=list[TransactionOut])
def api_person_transactions(person_id: int, db: Session = Depends(get_db)):
    get_person(db, person_id)
    return ledger.list_for_person(db, person_id)


@router.get("/{entry_id}", response_model=TransactionOut)
def api_get_transaction(entry_id: int, db: Session = Depends(get_db)):
    return ledger.get_entry(db, entry_id)


@router.put("/{entry_id}", response_model=TransactionOut)
def api_edit_transaction(entry_id: int, payload: TransactionEdit, db: Session = Depends(get_db)):
    return reconciliation.edit_transaction(
        db,
        entry_id,
        payload.transaction_quantity,
        payload.reference_fields(),
    )


@router.delete("/{entry_id}", response_model=DeleteOut)
def api_delete_transaction(entry_id: int, db: Session = Depends(get_db)):
    deleted = reconciliation.delete_transaction(db, entry_id)
    message = "Transaction deleted successfully" if len(deleted) == 1 else "Transactions deleted successfully"
    return {"message": message, "deleted": deleted}
