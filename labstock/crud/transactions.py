"""Transaction ledger queries and low-level mutations.

Mutating helpers (``append``, ``soft_delete``, ``edit``) only flush; the
reconciliation service owns the surrounding database transaction and decides
when to commit or roll back.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Iterable

from sqlalchemy import desc, or_, select
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import AlreadyDeletedError, DuplicateReferenceError, EditConflictError, NotFoundError, ValidationError
from ..core.references import (
    financial_year,
    format_reference_number,
    generate_transaction_id,
    is_batch_transaction_id,
    reference_sequence,
)
from ..models.transaction import TRANSACTION_ADD, TRANSACTION_ISSUE, TRANSACTION_TYPES, ConsumableTransaction

REPLAY_ORDER = (
    ConsumableTransaction.transaction_date,
    ConsumableTransaction.created_at,
    ConsumableTransaction.id,
)


def _active(stmt):
    return stmt.where(ConsumableTransaction.is_deleted.is_(False))


def get_entry(db: Session, entry_id: int) -> ConsumableTransaction:
    entry = db.get(ConsumableTransaction, entry_id)
    if not entry:
        raise NotFoundError("Transaction not found", details={"transaction_id": entry_id})
    return entry


def append(db: Session, entry: ConsumableTransaction) -> ConsumableTransaction:
    """Validate and add a new ledger entry."""

    if entry.transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type: {entry.transaction_type}")
    if not entry.transaction_quantity or entry.transaction_quantity <= 0:
        raise ValidationError("Transaction quantity must be greater than zero")
    if not (entry.added_by_id or entry.issued_by_id or entry.issued_to_id):
        raise ValidationError("A transaction needs addedBy, issuedBy or issuedTo")
    if not entry.transaction_id:
        entry.transaction_id = generate_transaction_id(entry.transaction_type)
    if entry.transaction_type == TRANSACTION_ADD:
        if not entry.added_by_id:
            raise ValidationError("Added by is required for add transactions")
        if not (entry.entry_reference_number or "").strip():
            raise ValidationError("Entry reference number is required for add transactions")
        entry.entry_reference_number = entry.entry_reference_number.strip()
        ensure_reference_available(db, TRANSACTION_ADD, entry.entry_reference_number)
    else:
        if not entry.issued_by_id or not entry.issued_to_id:
            raise ValidationError("Issuer and recipient are required for issue transactions")
        if not (entry.reference_number or "").strip():
            raise ValidationError("Reference number is required for issue transactions")
        entry.reference_number = entry.reference_number.strip()
        batch = entry.transaction_id if is_batch_transaction_id(entry.transaction_id) else None
        ensure_reference_available(db, TRANSACTION_ISSUE, entry.reference_number, exclude_group=batch)

    now = datetime.utcnow()
    entry.transaction_date = entry.transaction_date or now
    entry.created_at = entry.created_at or now
    entry.is_deleted = False
    if entry.remaining_quantity is None:
        entry.remaining_quantity = 0
    db.add(entry)
    db.flush()
    return entry


def soft_delete(db: Session, entry_id: int) -> ConsumableTransaction:
    entry = get_entry(db, entry_id)
    if entry.is_deleted:
        raise AlreadyDeletedError("Transaction is already deleted", details={"transaction_id": entry_id})
    entry.is_deleted = True
    db.flush()
    return entry


def ensure_reference_available(
    db: Session,
    transaction_type: str,
    reference: str,
    *,
    exclude_ids: Iterable[int] = (),
    exclude_group: str | None = None,
) -> None:
    """Raise ``DuplicateReferenceError`` if an active entry already uses ``reference``.

    ADD entries are keyed by ``entry_reference_number`` and ISSUE entries by
    ``reference_number``. Entries of the batch ``exclude_group`` share their
    reference number legitimately and are ignored.
    """

    column = (
        ConsumableTransaction.entry_reference_number
        if transaction_type == TRANSACTION_ADD
        else ConsumableTransaction.reference_number
    )
    stmt = _active(
        select(ConsumableTransaction.id).where(
            ConsumableTransaction.transaction_type == transaction_type,
            column == reference,
        )
    )
    exclude_ids = list(exclude_ids)
    if exclude_ids:
        stmt = stmt.where(ConsumableTransaction.id.not_in(exclude_ids))
    if exclude_group:
        stmt = stmt.where(ConsumableTransaction.transaction_id != exclude_group)
    clash = db.execute(stmt).scalars().first()
    if clash:
        raise DuplicateReferenceError(
            f"Reference number {reference} is already used by another transaction",
            details={"reference": reference, "conflicting_transaction": clash},
        )


def edit(
    db: Session,
    entry_id: int,
    new_quantity: int,
    new_reference_fields: dict[str, Any] | None = None,
) -> ConsumableTransaction:
    """Rewrite an entry's quantity and reference numbers.

    Only the ledger row (plus its batch siblings when a shared issue reference
    changes) is written; applying the quantity delta to the consumable is the
    caller's job.
    """

    entry = get_entry(db, entry_id)
    if entry.is_deleted:
        raise EditConflictError("Cannot edit a deleted transaction", details={"transaction_id": entry_id})
    if new_quantity is None or new_quantity <= 0:
        raise ValidationError("Quantity must be greater than zero")

    fields = new_reference_fields or {}
    if entry.transaction_type == TRANSACTION_ADD:
        reference = (fields.get("entry_reference_number") or entry.entry_reference_number or "").strip()
        if not reference:
            raise ValidationError("Entry reference number is required for ADD transactions")
        if reference != entry.entry_reference_number:
            ensure_reference_available(db, TRANSACTION_ADD, reference, exclude_ids=[entry.id])
        entry.entry_reference_number = reference
    else:
        reference = (fields.get("reference_number") or entry.reference_number or "").strip()
        if not reference:
            raise ValidationError("Reference number is required for ISSUE transactions")
        if reference != entry.reference_number:
            batch = entry.transaction_id if is_batch_transaction_id(entry.transaction_id) else None
            ensure_reference_available(
                db, TRANSACTION_ISSUE, reference, exclude_ids=[entry.id], exclude_group=batch
            )
            siblings = list_batch(db, entry.transaction_id) if batch else []
            for sibling in siblings:
                sibling.reference_number = reference
        entry.reference_number = reference

    if entry.total_consumable_cost is not None and entry.transaction_quantity:
        unit_cost = entry.total_consumable_cost / entry.transaction_quantity
        entry.total_consumable_cost = unit_cost * new_quantity
    entry.transaction_quantity = new_quantity
    db.flush()
    return entry


def list_active(db: Session, consumable_id: int) -> list[ConsumableTransaction]:
    """Active entries of one consumable in replay order."""

    stmt = _active(
        select(ConsumableTransaction).where(ConsumableTransaction.consumable_id == consumable_id)
    ).order_by(*REPLAY_ORDER)
    return db.execute(stmt).scalars().all()


def list_batch(db: Session, transaction_id: str, transaction_type: str = TRANSACTION_ISSUE) -> list[ConsumableTransaction]:
    """Active entries sharing a group identifier."""

    stmt = _active(
        select(ConsumableTransaction).where(
            ConsumableTransaction.transaction_id == transaction_id,
            ConsumableTransaction.transaction_type == transaction_type,
        )
    ).order_by(ConsumableTransaction.id)
    return db.execute(stmt).scalars().all()


def list_history(db: Session, limit: int = 200, offset: int = 0, include_deleted: bool = True) -> list[ConsumableTransaction]:
    stmt = select(ConsumableTransaction)
    if not include_deleted:
        stmt = _active(stmt)
    stmt = (
        stmt.order_by(desc(ConsumableTransaction.transaction_date), desc(ConsumableTransaction.id))
        .limit(limit)
        .offset(offset)
    )
    return db.execute(stmt).scalars().all()


def list_for_person(db: Session, person_id: int) -> list[ConsumableTransaction]:
    stmt = (
        select(ConsumableTransaction)
        .where(
            or_(
                ConsumableTransaction.added_by_id == person_id,
                ConsumableTransaction.issued_by_id == person_id,
                ConsumableTransaction.issued_to_id == person_id,
            )
        )
        .order_by(desc(ConsumableTransaction.transaction_date), desc(ConsumableTransaction.id))
    )
    return db.execute(stmt).scalars().all()


def list_for_consumable_identity(
    db: Session, name: str, category_fields: dict[str, Any] | None = None
) -> list[ConsumableTransaction]:
    """Active entries for a consumable name, optionally narrowed by attributes."""

    stmt = _active(
        select(ConsumableTransaction).where(ConsumableTransaction.consumable_name == name.strip())
    ).order_by(desc(ConsumableTransaction.transaction_date), desc(ConsumableTransaction.id))
    rows = db.execute(stmt).scalars().all()
    if not category_fields:
        return rows
    return [
        row
        for row in rows
        if all((row.category_fields or {}).get(key) == value for key, value in category_fields.items())
    ]


def list_in_range(
    db: Session, start: date, end: date, transaction_type: str | None = None
) -> list[ConsumableTransaction]:
    """Active entries dated between ``start`` and ``end`` (both days inclusive)."""

    stmt = _active(
        select(ConsumableTransaction).where(
            ConsumableTransaction.transaction_date >= datetime.combine(start, time.min),
            ConsumableTransaction.transaction_date <= datetime.combine(end, time.max),
        )
    )
    if transaction_type in TRANSACTION_TYPES:
        stmt = stmt.where(ConsumableTransaction.transaction_type == transaction_type)
    stmt = stmt.order_by(ConsumableTransaction.transaction_date, ConsumableTransaction.id)
    return db.execute(stmt).scalars().all()


def next_reference_number(db: Session, on: date | datetime | None = None) -> str:
    """Next free issue reference number for the financial year of ``on``."""

    on = on or datetime.utcnow()
    fiscal_year = financial_year(on, settings.FINANCIAL_YEAR_START_MONTH)
    prefix = f"{settings.REFERENCE_PREFIX}/{fiscal_year}/"
    stmt = select(ConsumableTransaction.reference_number).where(
        ConsumableTransaction.reference_number.like(f"{prefix}%")
    )
    highest = max((reference_sequence(ref) for ref in db.execute(stmt).scalars()), default=0)
    return format_reference_number(settings.REFERENCE_PREFIX, fiscal_year, highest + 1)
