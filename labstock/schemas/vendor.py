from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class VendorCreate(BaseModel):
    name: str = Field(min_length=1)
    comment: Optional[str] = None


class VendorUpdate(BaseModel):
    name: Optional[str] = None
    comment: Optional[str] = None


class VendorOut(BaseModel):
    id: int
    name: str
    comment: Optional[str] = None

    class Config:
        from_attributes = True


class VendorConsumable(BaseModel):
    id: int
    name: str
    quantity: int
    total_cost: float
    date: datetime
    category_fields: dict = Field(default_factory=dict)

    class Config:
        from_attributes = True


class VendorStats(BaseModel):
    total_transactions: int
    total_spent: float
    unique_items: int
    most_recent_transaction: datetime
    oldest_transaction: datetime


class VendorSummaryOut(BaseModel):
    vendor_name: str
    stats: VendorStats
    consumables: list[VendorConsumable]
