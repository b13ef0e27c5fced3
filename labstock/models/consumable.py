"""Inventory record for one consumable.

WHAT: The current aggregate state of a consumable: how many units were ever
added (``quantity``) and how many are checked out (``claimed_quantity``).
WHEN: Created by the first stock-in and rewritten by every ledger mutation.
HOW: Only ``services.reconciliation`` changes the two quantity columns; the
hooks at the bottom keep ``total_cost`` and ``updated_at`` in step.
"""


from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, Text, event
from sqlalchemy.orm import relationship

from ..db.session import Base


class Consumable(Base):
    __tablename__ = "consumables"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_consumables_quantity_non_negative"),
        CheckConstraint("claimed_quantity >= 0", name="ck_consumables_claimed_non_negative"),
        CheckConstraint("claimed_quantity <= quantity", name="ck_consumables_claimed_within_quantity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("consumable_categories.id"), nullable=False, index=True)
    category_fields = Column(JSON, nullable=False, default=dict)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=0)
    claimed_quantity = Column(Integer, nullable=False, default=0)
    unit_price = Column(Float, nullable=False, default=0.0)
    total_cost = Column(Float, nullable=False, default=0.0)
    date = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    category = relationship("ConsumableCategory", lazy="joined")
    vendor = relationship("Vendor", lazy="joined")

    @property
    def available_quantity(self) -> int:
        return (self.quantity or 0) - (self.claimed_quantity or 0)

    @property
    def category_name(self) -> str | None:
        return self.category.name if self.category else None

    @property
    def vendor_name(self) -> str | None:
        return self.vendor.name if self.vendor else None


@event.listens_for(Consumable, "before_insert")
@event.listens_for(Consumable, "before_update")
def _derive_totals(mapper, connection, target: Consumable) -> None:
    target.updated_at = datetime.utcnow()
    target.total_cost = (target.quantity or 0) * (target.unit_price or 0.0)
