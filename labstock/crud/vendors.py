from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.errors import InvalidStateError, NotFoundError, ValidationError
from ..models.consumable import Consumable
from ..models.vendor import Vendor


def list_vendors(db: Session) -> list[Vendor]:
    return db.execute(select(Vendor).order_by(Vendor.name)).scalars().all()


def get_vendor(db: Session, vendor_id: int) -> Vendor:
    vendor = db.get(Vendor, vendor_id)
    if not vendor:
        raise NotFoundError("Vendor not found", details={"vendor_id": vendor_id})
    return vendor


def get_vendor_by_name(db: Session, name: str) -> Vendor | None:
    return db.execute(select(Vendor).where(Vendor.name == name.strip())).scalars().first()


def create_vendor(db: Session, payload: dict) -> Vendor:
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if get_vendor_by_name(db, name):
        raise ValidationError("Vendor already exists")
    vendor = Vendor(name=name, comment=(payload.get("comment") or "").strip() or None)
    db.add(vendor)
    db.commit()
    db.refresh(vendor)
    return vendor


def update_vendor(db: Session, vendor: Vendor, payload: dict) -> Vendor:
    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            raise ValidationError("Name is required")
        existing = get_vendor_by_name(db, name)
        if existing and existing.id != vendor.id:
            raise ValidationError("Vendor already exists")
        vendor.name = name
    if "comment" in payload:
        vendor.comment = (payload.get("comment") or "").strip() or None
    db.commit()
    db.refresh(vendor)
    return vendor


def delete_vendor(db: Session, vendor: Vendor) -> None:
    in_use = db.execute(select(Consumable.id).where(Consumable.vendor_id == vendor.id)).first()
    if in_use:
        raise InvalidStateError("Vendor still supplies consumables", details={"vendor_id": vendor.id})
    db.delete(vendor)
    db.commit()
