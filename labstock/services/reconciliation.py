"""Single writer path for consumable quantities and their ledger.

Every operation here follows the same shape:

1. work out which consumables are involved and take their locks;
2. inside one database transaction, change the aggregate and the ledger;
3. replay ``remaining_quantity`` over the surviving ledger of each touched
   consumable and check the totals against the aggregate;
4. commit, or roll everything back and re-raise.

Callers get either the committed result or a ``LedgerError`` with the
database exactly as it was before the call.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Iterator, Sequence

from sqlalchemy.orm import Session

from ..core.errors import AlreadyDeletedError, EditConflictError, ReconciliationError, ValidationError
from ..core.references import generate_transaction_id, is_batch_transaction_id
from ..crud import consumables as inventory
from ..crud import transactions as ledger
from ..crud.categories import get_category
from ..crud.vendors import get_vendor
from ..models.consumable import Consumable
from ..models.people import Person
from ..models.transaction import TRANSACTION_ADD, TRANSACTION_ISSUE, ConsumableTransaction
from ..core.logging import ledger_operation_ctx_var
from .locks import REFERENCE_NUMBERS, consumable_locks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplayResult:
    consumable_id: int
    add_total: int
    issue_total: int
    updated_entries: int

    @property
    def available(self) -> int:
        return self.add_total - self.issue_total


@dataclass(frozen=True)
class IssueLine:
    consumable_id: int
    quantity: int


@contextmanager
def _atomic(db: Session, operation: str, **context: Any) -> Iterator[None]:
    """Commit on success; roll back, log and re-raise on any error."""

    token = ledger_operation_ctx_var.set(operation)
    try:
        yield
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning(
            "ledger.rolled_back",
            extra={"extra_data": {"operation": operation, "error": type(exc).__name__, "reason": str(exc), **context}},
        )
        raise
    finally:
        ledger_operation_ctx_var.reset(token)
    logger.info("ledger.committed", extra={"extra_data": {"operation": operation, **context}})


def _require_people(db: Session, *person_ids: int | None) -> None:
    for person_id in person_ids:
        if person_id is None:
            continue
        if db.get(Person, person_id) is None:
            raise ValidationError("Invalid person reference", details={"person_id": person_id})


def _aggregate_field(entry: ConsumableTransaction) -> str:
    return inventory.QUANTITY if entry.transaction_type == TRANSACTION_ADD else inventory.CLAIMED_QUANTITY


def replay(db: Session, consumable_id: int) -> ReplayResult:
    """Recompute ``remaining_quantity`` for every active entry from scratch.

    Entries are walked in ``(transaction_date, created_at, id)`` order keeping
    running ADD and ISSUE sums; only rows whose snapshot changed are written.
    Running it twice in a row changes nothing the second time.
    """

    add_total = 0
    issue_total = 0
    updated = 0
    for entry in ledger.list_active(db, consumable_id):
        if entry.transaction_type == TRANSACTION_ADD:
            add_total += entry.transaction_quantity
        else:
            issue_total += entry.transaction_quantity
        remaining = add_total - issue_total
        if entry.remaining_quantity != remaining:
            entry.remaining_quantity = remaining
            updated += 1
    db.flush()
    return ReplayResult(consumable_id, add_total, issue_total, updated)


def verify(consumable: Consumable, result: ReplayResult) -> None:
    """Raise ``ReconciliationError`` unless ledger totals match the aggregate."""

    if result.add_total == consumable.quantity and result.issue_total == consumable.claimed_quantity:
        return
    raise ReconciliationError(
        f"Ledger and stock totals for {consumable.name} have diverged",
        details={
            "consumable_id": consumable.id,
            "quantity": consumable.quantity,
            "ledger_added": result.add_total,
            "claimed_quantity": consumable.claimed_quantity,
            "ledger_issued": result.issue_total,
        },
    )


def _replay_and_verify(db: Session, consumable_ids: Iterable[int]) -> list[ReplayResult]:
    results = []
    for consumable_id in sorted(set(consumable_ids)):
        result = replay(db, consumable_id)
        verify(inventory.lock_consumable(db, consumable_id), result)
        results.append(result)
    return results


def reconcile(db: Session, consumable_id: int) -> ReplayResult:
    """Stand-alone replay and check, e.g. for an audit."""

    inventory.get_consumable(db, consumable_id)
    with consumable_locks.hold(consumable_id):
        db.expire_all()
        with _atomic(db, "reconcile", consumable_id=consumable_id):
            (result,) = _replay_and_verify(db, [consumable_id])
    return result


def record_addition(
    db: Session,
    *,
    quantity: int,
    added_by_id: int,
    entry_reference_number: str,
    consumable_id: int | None = None,
    name: str | None = None,
    category_id: int | None = None,
    category_fields: dict[str, Any] | None = None,
    vendor_id: int | None = None,
    unit_price: float | None = None,
    transaction_date: datetime | None = None,
) -> ConsumableTransaction:
    """Stock in ``quantity`` units and write the matching ADD entry.

    With ``consumable_id`` the units go to that record. Without it the record
    is found by name + category + attribute values, and created when no match
    exists.
    """

    if consumable_id is None:
        if not (name and name.strip()) or category_id is None:
            raise ValidationError("consumable_id or name and category are required")
        lock_keys: tuple = (("identity", name.strip().lower(), category_id),)
        existing = inventory.find_by_identity(db, name, category_id, category_fields)
        if existing is not None:
            lock_keys += (existing.id,)
    else:
        inventory.get_consumable(db, consumable_id)
        lock_keys = (consumable_id,)

    with consumable_locks.hold(REFERENCE_NUMBERS, *lock_keys):
        db.expire_all()
        with _atomic(db, "add", consumable_id=consumable_id, quantity=quantity):
            _require_people(db, added_by_id)
            if consumable_id is not None:
                consumable = inventory.get_consumable(db, consumable_id)
            else:
                consumable = inventory.find_by_identity(db, name, category_id, category_fields)
                if consumable is None:
                    if vendor_id is None or unit_price is None:
                        raise ValidationError("vendor and unit price are required for a new consumable")
                    get_category(db, category_id)
                    get_vendor(db, vendor_id)
                    consumable = inventory.create_consumable(
                        db,
                        name=name,
                        category_id=category_id,
                        category_fields=category_fields,
                        vendor_id=vendor_id,
                        unit_price=unit_price,
                        date=transaction_date,
                    )
            if quantity is None or quantity <= 0:
                raise ValidationError("Quantity must be greater than zero")

            consumable = inventory.increment(db, consumable.id, inventory.QUANTITY, quantity)
            # ``increment`` reloads the row, so the price change goes in after it.
            if unit_price is not None:
                consumable.unit_price = float(unit_price)
            entry = ledger.append(
                db,
                ConsumableTransaction(
                    transaction_type=TRANSACTION_ADD,
                    consumable_id=consumable.id,
                    consumable_name=consumable.name,
                    category_fields=dict(consumable.category_fields or {}),
                    transaction_quantity=quantity,
                    total_consumable_cost=quantity * consumable.unit_price,
                    entry_reference_number=entry_reference_number,
                    added_by_id=added_by_id,
                    transaction_date=transaction_date,
                ),
            )
            _replay_and_verify(db, [consumable.id])
    return entry


def record_issue(
    db: Session,
    *,
    consumable_id: int,
    quantity: int,
    issued_by_id: int,
    issued_to_id: int,
    reference_number: str | None = None,
    transaction_date: datetime | None = None,
) -> ConsumableTransaction:
    """Check out ``quantity`` units of one consumable to a person."""

    (entry,) = _issue(
        db,
        [IssueLine(consumable_id, quantity)],
        group_id=generate_transaction_id("ISSUE"),
        issued_by_id=issued_by_id,
        issued_to_id=issued_to_id,
        reference_number=reference_number,
        transaction_date=transaction_date,
    )
    return entry


def record_batch_issue(
    db: Session,
    *,
    lines: Sequence[IssueLine],
    issued_by_id: int,
    issued_to_id: int,
    reference_number: str | None = None,
    transaction_date: datetime | None = None,
) -> list[ConsumableTransaction]:
    """Issue several consumables under one group id and reference number."""

    if not lines:
        raise ValidationError("At least one item is required")
    ids = [line.consumable_id for line in lines]
    if len(set(ids)) != len(ids):
        raise ValidationError("Each consumable may appear only once in a batch")
    return _issue(
        db,
        lines,
        group_id=generate_transaction_id("BATCH"),
        issued_by_id=issued_by_id,
        issued_to_id=issued_to_id,
        reference_number=reference_number,
        transaction_date=transaction_date,
    )


def _issue(
    db: Session,
    lines: Sequence[IssueLine],
    *,
    group_id: str,
    issued_by_id: int,
    issued_to_id: int,
    reference_number: str | None,
    transaction_date: datetime | None,
) -> list[ConsumableTransaction]:
    for line in lines:
        if line.quantity is None or line.quantity <= 0:
            raise ValidationError("Invalid quantity specified", details={"consumable_id": line.consumable_id})
        inventory.get_consumable(db, line.consumable_id)

    consumable_ids = [line.consumable_id for line in lines]
    with consumable_locks.hold(REFERENCE_NUMBERS, *consumable_ids):
        db.expire_all()
        with _atomic(db, "issue", transaction_id=group_id, consumable_ids=consumable_ids):
            _require_people(db, issued_by_id, issued_to_id)
            reference = (reference_number or "").strip() or ledger.next_reference_number(db, transaction_date)
            entries = []
            for line in lines:
                consumable = inventory.increment(db, line.consumable_id, inventory.CLAIMED_QUANTITY, line.quantity)
                entries.append(
                    ledger.append(
                        db,
                        ConsumableTransaction(
                            transaction_id=group_id,
                            transaction_type=TRANSACTION_ISSUE,
                            consumable_id=consumable.id,
                            consumable_name=consumable.name,
                            category_fields=dict(consumable.category_fields or {}),
                            transaction_quantity=line.quantity,
                            reference_number=reference,
                            issued_by_id=issued_by_id,
                            issued_to_id=issued_to_id,
                            transaction_date=transaction_date,
                        ),
                    )
                )
            _replay_and_verify(db, consumable_ids)
    return entries


def delete_transaction(db: Session, entry_id: int) -> list[ConsumableTransaction]:
    """Soft-delete a ledger entry and take its quantity back out of the aggregate.

    Deleting an entry of a batch issue deletes every active entry of that batch,
    so a batch is always reverted as a whole. Returns the deleted entries.
    """

    entry = ledger.get_entry(db, entry_id)
    if entry.is_deleted:
        raise AlreadyDeletedError("Transaction is already deleted", details={"transaction_id": entry_id})
    if entry.transaction_type == TRANSACTION_ISSUE and is_batch_transaction_id(entry.transaction_id):
        targets = ledger.list_batch(db, entry.transaction_id)
    else:
        targets = [entry]
    consumable_ids = [target.consumable_id for target in targets]
    target_ids = [target.id for target in targets]

    with consumable_locks.hold(*consumable_ids):
        db.expire_all()
        with _atomic(db, "delete", transaction_id=entry.transaction_id, entries=target_ids):
            deleted = []
            for target_id in target_ids:
                target = ledger.soft_delete(db, target_id)
                inventory.increment(db, target.consumable_id, _aggregate_field(target), -target.transaction_quantity)
                deleted.append(target)
            _replay_and_verify(db, consumable_ids)
    return deleted


def edit_transaction(
    db: Session,
    entry_id: int,
    new_quantity: int,
    reference_fields: dict[str, Any] | None = None,
) -> ConsumableTransaction:
    """Change a historical entry's quantity and/or reference numbers.

    The quantity difference is applied to ``quantity`` (ADD) or
    ``claimed_quantity`` (ISSUE), then the consumable's ledger is replayed and
    checked before anything is committed.
    """

    entry = ledger.get_entry(db, entry_id)
    if entry.is_deleted:
        raise EditConflictError("Cannot edit a deleted transaction", details={"transaction_id": entry_id})
    consumable_id = entry.consumable_id
    lock_keys = (consumable_id, REFERENCE_NUMBERS) if reference_fields else (consumable_id,)

    with consumable_locks.hold(*lock_keys):
        db.expire_all()
        with _atomic(
            db,
            "edit",
            transaction_id=entry.transaction_id,
            entry=entry_id,
            batch=is_batch_transaction_id(entry.transaction_id),
        ):
            old_quantity = ledger.get_entry(db, entry_id).transaction_quantity
            entry = ledger.edit(db, entry_id, new_quantity, reference_fields)
            delta = new_quantity - old_quantity
            if delta:
                inventory.increment(db, consumable_id, _aggregate_field(entry), delta)
            _replay_and_verify(db, [consumable_id])
    return entry

