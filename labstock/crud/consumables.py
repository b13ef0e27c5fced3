"""Inventory record store.

Reads are free to use anywhere. The two quantity columns are only changed via
``increment``, and ``increment`` is only called from
``services.reconciliation`` inside its transaction, so nothing here commits
on its behalf.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import desc, select, update
from sqlalchemy.orm import Session

from ..core.errors import InvalidStateError, NotFoundError
from ..models.consumable import Consumable
from ..models.transaction import ConsumableTransaction

QUANTITY = "quantity"
CLAIMED_QUANTITY = "claimed_quantity"
AGGREGATE_FIELDS = (QUANTITY, CLAIMED_QUANTITY)


def normalize_category_fields(values: dict[str, Any] | None) -> dict[str, Any]:
    """Strip keys/values so ``{" Size ": "M "}`` and ``{"Size": "M"}`` match."""

    cleaned: dict[str, Any] = {}
    for key, value in (values or {}).items():
        key = str(key).strip()
        if not key:
            continue
        if isinstance(value, str):
            value = value.strip()
        if value is None or value == "":
            continue
        cleaned[key] = value
    return cleaned


def get_consumable(db: Session, consumable_id: int) -> Consumable:
    consumable = db.get(Consumable, consumable_id)
    if not consumable:
        raise NotFoundError("Consumable not found", details={"consumable_id": consumable_id})
    return consumable


def list_consumables(db: Session, limit: int = 100, offset: int = 0) -> list[Consumable]:
    stmt = (
        select(Consumable)
        .order_by(Consumable.name, Consumable.id)
        .limit(limit)
        .offset(offset)
    )
    return db.execute(stmt).scalars().all()


def list_consumables_for_vendor(db: Session, vendor_id: int) -> list[Consumable]:
    stmt = select(Consumable).where(Consumable.vendor_id == vendor_id).order_by(desc(Consumable.date), desc(Consumable.id))
    return db.execute(stmt).scalars().all()


def find_by_identity(
    db: Session,
    name: str,
    category_id: int,
    category_fields: dict[str, Any] | None = None,
) -> Consumable | None:
    """Legacy lookup by name + category + attribute values.

    Stock-in requests that do not carry a ``consumable_id`` are matched to an
    existing record this way. JSON equality is not portable across engines, so
    the attribute comparison happens in Python.
    """

    wanted = normalize_category_fields(category_fields)
    stmt = (
        select(Consumable)
        .where(Consumable.name == name.strip(), Consumable.category_id == category_id)
        .order_by(Consumable.id)
    )
    for candidate in db.execute(stmt).scalars():
        if normalize_category_fields(candidate.category_fields) == wanted:
            return candidate
    return None


def create_consumable(
    db: Session,
    *,
    name: str,
    category_id: int,
    vendor_id: int,
    unit_price: float,
    category_fields: dict[str, Any] | None = None,
    date: datetime | None = None,
) -> Consumable:
    """Insert an empty record; quantities arrive through the first ADD."""

    consumable = Consumable(
        name=name.strip(),
        category_id=category_id,
        category_fields=normalize_category_fields(category_fields),
        vendor_id=vendor_id,
        unit_price=float(unit_price),
        quantity=0,
        claimed_quantity=0,
        date=date or datetime.utcnow(),
    )
    db.add(consumable)
    db.flush()
    return consumable


def lock_consumable(db: Session, consumable_id: int) -> Consumable:
    """Load the record ``FOR UPDATE`` with fresh column values."""

    stmt = (
        select(Consumable)
        .where(Consumable.id == consumable_id)
        .with_for_update(of=Consumable)
        .execution_options(populate_existing=True)
    )
    consumable = db.execute(stmt).scalars().first()
    if not consumable:
        raise NotFoundError("Consumable not found", details={"consumable_id": consumable_id})
    return consumable


def increment(db: Session, consumable_id: int, field: str, delta: int) -> Consumable:
    """Add ``delta`` to ``quantity`` or ``claimed_quantity``.

    Raises ``InvalidStateError`` and leaves the row untouched when the result
    would be negative or would put ``claimed_quantity`` above ``quantity``.
    """

    if field not in AGGREGATE_FIELDS:
        raise ValueError(f"unsupported aggregate field: {field!r}")
    consumable = lock_consumable(db, consumable_id)
    quantity = consumable.quantity
    claimed = consumable.claimed_quantity
    details = {"consumable_id": consumable.id, "field": field, "delta": delta}

    if field == QUANTITY:
        quantity += delta
        if quantity < 0:
            raise InvalidStateError("Cannot reduce quantity below 0", details=details)
        if quantity < claimed:
            raise InvalidStateError("Cannot reduce quantity below claimed amount", details=details)
    else:
        claimed += delta
        if claimed < 0:
            raise InvalidStateError(f"Invalid claimed quantity for {consumable.name}", details=details)
        if claimed > quantity:
            raise InvalidStateError(f"Not enough available quantity for {consumable.name}", details=details)

    consumable.quantity = quantity
    consumable.claimed_quantity = claimed
    db.flush()
    return consumable


def update_consumable_details(db: Session, consumable: Consumable, payload: dict) -> Consumable:
    """Change descriptive fields; quantities are never touched here."""

    if payload.get("name"):
        consumable.name = payload["name"].strip()
        # Ledger rows carry a name snapshot that detail lookups search by.
        db.execute(
            update(ConsumableTransaction)
            .where(ConsumableTransaction.consumable_id == consumable.id)
            .values(consumable_name=consumable.name)
        )
    if payload.get("unit_price") is not None:
        consumable.unit_price = float(payload["unit_price"])
    if payload.get("vendor_id") is not None:
        consumable.vendor_id = payload["vendor_id"]
    if payload.get("category_fields") is not None:
        consumable.category_fields = normalize_category_fields(payload["category_fields"])
    db.commit()
    db.refresh(consumable)
    return consumable


def delete_consumable(db: Session, consumable: Consumable) -> None:
    """Remove a record whose ledger has no active entries left.

    Soft-deleted history is kept for audit, detached from the record but still
    carrying its name and attribute snapshots.
    """

    active = db.execute(
        select(ConsumableTransaction.id).where(
            ConsumableTransaction.consumable_id == consumable.id,
            ConsumableTransaction.is_deleted.is_(False),
        )
    ).first()
    if active:
        raise InvalidStateError(
            "Consumable has active transactions; delete them first",
            details={"consumable_id": consumable.id},
        )
    db.execute(
        update(ConsumableTransaction)
        .where(ConsumableTransaction.consumable_id == consumable.id)
        .values(consumable_id=None)
    )
    db.delete(consumable)
    db.commit()
