from __future__ import annotations

from sqlalchemy import Column, Integer, Text

from ..db.session import Base


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False, unique=True)
    comment = Column(Text, nullable=True)
