"""Ledger entries recorded against a consumable.

WHAT: One ADD (stock in) or ISSUE (stock out to a person) event.
WHEN: Appended by the reconciliation service; edited or soft-deleted later
through the same service, never removed.
WHY: The ledger is the history the consumable aggregate is checked against.
HOW: ``transaction_quantity`` is always positive, the type gives the sign.
``remaining_quantity`` is the available stock right after this entry in
replay order ``(transaction_date, created_at, id)``.
"""


from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import relationship

from ..db.session import Base

TRANSACTION_ADD = "ADD"
TRANSACTION_ISSUE = "ISSUE"
TRANSACTION_TYPES = (TRANSACTION_ADD, TRANSACTION_ISSUE)


class ConsumableTransaction(Base):
    __tablename__ = "consumable_transactions"
    __table_args__ = (
        CheckConstraint("transaction_quantity > 0", name="ck_consumable_transactions_quantity_positive"),
        CheckConstraint("transaction_type IN ('ADD', 'ISSUE')", name="ck_consumable_transactions_type"),
        Index("ix_consumable_transactions_replay", "consumable_id", "transaction_date", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    # Group identifier; every entry of a batch issue shares one value.
    transaction_id = Column(Text, nullable=False, index=True)
    transaction_type = Column(Text, nullable=False)
    # Cleared when the consumable is removed; the name and attribute snapshots stay.
    consumable_id = Column(Integer, ForeignKey("consumables.id", ondelete="SET NULL"), nullable=True, index=True)
    consumable_name = Column(Text, nullable=False)
    category_fields = Column(JSON, nullable=False, default=dict)
    transaction_quantity = Column(Integer, nullable=False)
    remaining_quantity = Column(Integer, nullable=False, default=0)
    total_consumable_cost = Column(Float, nullable=True)
    reference_number = Column(Text, nullable=True, index=True)
    entry_reference_number = Column(Text, nullable=True, index=True)
    added_by_id = Column(Integer, ForeignKey("people.id"), nullable=True, index=True)
    issued_by_id = Column(Integer, ForeignKey("people.id"), nullable=True, index=True)
    issued_to_id = Column(Integer, ForeignKey("people.id"), nullable=True, index=True)
    transaction_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    is_deleted = Column(Boolean, nullable=False, default=False)

    consumable = relationship("Consumable", lazy="select")
    added_by = relationship("Person", foreign_keys=[added_by_id], lazy="joined")
    issued_by = relationship("Person", foreign_keys=[issued_by_id], lazy="joined")
    issued_to = relationship("Person", foreign_keys=[issued_to_id], lazy="joined")

    @property
    def added_by_name(self) -> str | None:
        return self.added_by.name if self.added_by else None

    @property
    def issued_by_name(self) -> str | None:
        return self.issued_by.name if self.issued_by else None

    @property
    def issued_to_name(self) -> str | None:
        return self.issued_to.name if self.issued_to else None

