from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class CategoryField(BaseModel):
    name: str
    type: str = "string"


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1)
    fields: list[CategoryField] = Field(default_factory=list)


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    fields: Optional[list[CategoryField]] = None


class CategoryOut(BaseModel):
    id: int
    name: str
    fields: list[CategoryField] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
