from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.errors import InvalidStateError, NotFoundError, ValidationError
from ..models.category import ConsumableCategory
from ..models.consumable import Consumable


def _normalize_fields(fields: list | None) -> list[dict[str, str]]:
    """Drop blank field definitions and reject duplicated field names."""

    cleaned: list[dict[str, str]] = []
    seen: set[str] = set()
    for field in fields or []:
        name = (field.get("name") or "").strip()
        if not name:
            continue
        if name in seen:
            raise ValidationError(f"Duplicate field name: {name}")
        seen.add(name)
        cleaned.append({"name": name, "type": (field.get("type") or "string").strip() or "string"})
    return cleaned


def list_categories(db: Session) -> list[ConsumableCategory]:
    return db.execute(select(ConsumableCategory).order_by(ConsumableCategory.name)).scalars().all()


def get_category(db: Session, category_id: int) -> ConsumableCategory:
    category = db.get(ConsumableCategory, category_id)
    if not category:
        raise NotFoundError("Consumable category not found", details={"category_id": category_id})
    return category


def _name_taken(db: Session, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(ConsumableCategory.id).where(ConsumableCategory.name == name)
    if exclude_id is not None:
        stmt = stmt.where(ConsumableCategory.id != exclude_id)
    return db.execute(stmt).first() is not None


def create_category(db: Session, payload: dict) -> ConsumableCategory:
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if _name_taken(db, name):
        raise ValidationError("Consumable category already exists")
    category = ConsumableCategory(name=name, fields=_normalize_fields(payload.get("fields")))
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def update_category(db: Session, category: ConsumableCategory, payload: dict) -> ConsumableCategory:
    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            raise ValidationError("Name is required")
        if _name_taken(db, name, exclude_id=category.id):
            raise ValidationError("Consumable category already exists")
        category.name = name
    if "fields" in payload:
        category.fields = _normalize_fields(payload.get("fields"))
    db.commit()
    db.refresh(category)
    return category


def delete_category(db: Session, category: ConsumableCategory) -> None:
    in_use = db.execute(select(Consumable.id).where(Consumable.category_id == category.id)).first()
    if in_use:
        raise InvalidStateError("Category is used by consumables", details={"category_id": category.id})
    db.delete(category)
    db.commit()
