from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from .transaction import TransactionOut


class StockIn(BaseModel):
    """Payload for adding stock.

    Either ``consumable_id`` names an existing record, or ``name`` +
    ``category_id`` (+ ``category_fields``) identify one; a new record is
    created when nothing matches, which then also needs ``vendor_id`` and
    ``unit_price``.
    """

    consumable_id: Optional[int] = None
    name: Optional[str] = None
    category_id: Optional[int] = None
    category_fields: dict[str, Any] = Field(default_factory=dict)
    vendor_id: Optional[int] = None
    unit_price: Optional[float] = Field(default=None, ge=0)
    quantity: int = Field(gt=0)
    added_by_id: int
    entry_reference_number: str = Field(min_length=1)
    transaction_date: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_target(self) -> "StockIn":
        if not self.consumable_id and not ((self.name and self.name.strip()) and self.category_id):
            raise ValueError("consumable_id or name and category_id are required")
        return self


class ConsumableUpdate(BaseModel):
    name: Optional[str] = None
    unit_price: Optional[float] = Field(default=None, ge=0)
    vendor_id: Optional[int] = None
    category_fields: Optional[dict[str, Any]] = None


class ConsumableOut(BaseModel):
    id: int
    name: str
    category_id: int
    category_name: Optional[str] = None
    category_fields: dict[str, Any] = Field(default_factory=dict)
    vendor_id: int
    vendor_name: Optional[str] = None
    quantity: int
    claimed_quantity: int
    available_quantity: int
    unit_price: float
    total_cost: float
    date: datetime
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class IssueRequest(BaseModel):
    quantity: int = Field(gt=0)
    issued_by_id: int
    issued_to_id: int
    reference_number: Optional[str] = None
    transaction_date: Optional[datetime] = None


class IssueItem(BaseModel):
    consumable_id: int
    quantity: int = Field(gt=0)


class BatchIssueRequest(BaseModel):
    items: list[IssueItem] = Field(min_length=1)
    issued_by_id: int
    issued_to_id: int
    reference_number: Optional[str] = None
    transaction_date: Optional[datetime] = None


class ReconcileOut(BaseModel):
    consumable_id: int
    add_total: int
    issue_total: int
    available: int
    updated_entries: int


class StockMovementOut(BaseModel):
    """Result of a stock-in or issue: the touched records and the new entries."""

    consumables: list[ConsumableOut]
    transactions: list[TransactionOut]
