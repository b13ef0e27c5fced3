from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict

from sqlalchemy.orm import Session

from ..core.errors import NotFoundError, ValidationError
from ..crud import consumables as inventory
from ..crud import transactions as ledger
from ..crud.vendors import get_vendor_by_name
from ..models.transaction import TRANSACTION_ADD, TRANSACTION_ISSUE, TRANSACTION_TYPES

TWOPLACES = Decimal("0.01")


def _quantize_currency(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP) if value else Decimal("0.00")


def transaction_report(
    db: Session, start: date, end: date, transaction_type: str | None = None
) -> Dict[str, Any]:
    """Active ledger entries in a date range plus per-type quantity totals.

    ``transaction_type`` of ``None`` or ``"BOTH"`` keeps both ADD and ISSUE.
    """

    if end < start:
        raise ValidationError("End date must not be before start date")
    wanted = transaction_type.upper() if transaction_type else None
    if wanted and wanted != "BOTH" and wanted not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type: {transaction_type}")

    entries = ledger.list_in_range(db, start, end, wanted)
    totals = {TRANSACTION_ADD: 0, TRANSACTION_ISSUE: 0}
    added_cost = Decimal("0")
    for entry in entries:
        totals[entry.transaction_type] += entry.transaction_quantity
        if entry.transaction_type == TRANSACTION_ADD and entry.total_consumable_cost is not None:
            added_cost += Decimal(str(entry.total_consumable_cost))

    return {
        "start_date": start,
        "end_date": end,
        "transaction_type": wanted if wanted in TRANSACTION_TYPES else "BOTH",
        "added_quantity": totals[TRANSACTION_ADD],
        "issued_quantity": totals[TRANSACTION_ISSUE],
        "added_cost": float(_quantize_currency(added_cost)),
        "transactions": entries,
    }


def vendor_summary(db: Session, vendor_name: str) -> Dict[str, Any]:
    """Consumables supplied by one vendor, newest first, with spend statistics."""

    name = (vendor_name or "").strip()
    if not name:
        raise ValidationError("Vendor name is required")
    vendor = get_vendor_by_name(db, name)
    consumables = inventory.list_consumables_for_vendor(db, vendor.id) if vendor else []
    if not consumables:
        raise NotFoundError(f'No consumables found for vendor "{name}"')

    total_spent = sum((Decimal(str(item.total_cost or 0)) for item in consumables), Decimal("0"))
    return {
        "vendor_name": vendor.name,
        "stats": {
            "total_transactions": len(consumables),
            "total_spent": float(_quantize_currency(total_spent)),
            "unique_items": len({item.name for item in consumables}),
            "most_recent_transaction": consumables[0].date,
            "oldest_transaction": consumables[-1].date,
        },
        "consumables": consumables,
    }
