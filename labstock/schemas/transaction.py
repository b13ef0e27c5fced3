from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class TransactionOut(BaseModel):
    id: int
    transaction_id: str
    transaction_type: Literal["ADD", "ISSUE"]
    consumable_id: Optional[int] = None
    consumable_name: str
    category_fields: dict[str, Any] = Field(default_factory=dict)
    transaction_quantity: int
    remaining_quantity: int
    total_consumable_cost: Optional[float] = None
    reference_number: Optional[str] = None
    entry_reference_number: Optional[str] = None
    added_by_id: Optional[int] = None
    added_by_name: Optional[str] = None
    issued_by_id: Optional[int] = None
    issued_by_name: Optional[str] = None
    issued_to_id: Optional[int] = None
    issued_to_name: Optional[str] = None
    transaction_date: datetime
    created_at: datetime
    is_deleted: bool

    class Config:
        from_attributes = True


class TransactionEdit(BaseModel):
    transaction_quantity: int = Field(gt=0)
    entry_reference_number: Optional[str] = None
    reference_number: Optional[str] = None

    def reference_fields(self) -> dict[str, str]:
        return self.model_dump(include={"entry_reference_number", "reference_number"}, exclude_none=True)


class DeleteOut(BaseModel):
    message: str
    deleted: list[TransactionOut]


class TransactionReport(BaseModel):
    start_date: date
    end_date: date
    transaction_type: Literal["ADD", "ISSUE", "BOTH"]
    added_quantity: int
    issued_quantity: int
    added_cost: float
    transactions: list[TransactionOut]
