from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, Text

from ..db.session import Base


class ConsumableCategory(Base):
    """A kind of consumable and the attribute fields its items carry.

    ``fields`` is a list of ``{"name": ..., "type": ...}`` dicts, e.g. a
    "Resistor" category with ``resistance`` and ``wattage`` fields.
    """

    __tablename__ = "consumable_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False, unique=True)
    fields = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
