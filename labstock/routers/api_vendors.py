from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..crud.vendors import create_vendor, delete_vendor, get_vendor, list_vendors, update_vendor
from ..db.session import get_db
from ..deps.auth import require_api_or_jwt
from ..schemas.vendor import VendorCreate, VendorOut, VendorSummaryOut, VendorUpdate
from ..services.reporting import vendor_summary

router = APIRouter(prefix="/api/v1/vendors", tags=["vendors"], dependencies=[Depends(require_api_or_jwt)])


@router.get("", response_model=list[VendorOut])
def api_list_vendors(db: Session = Depends(get_db)):
    return list_vendors(db)


@router.post("", response_model=VendorOut, status_code=201)
def api_create_vendor(payload: VendorCreate, db: Session = Depends(get_db)):
    return create_vendor(db, payload.model_dump())


@router.get("/{vendor_name}/consumables", response_model=VendorSummaryOut)
def api_vendor_consumables(vendor_name: str, db: Session = Depends(get_db)):
    return vendor_summary(db, vendor_name)


@router.put("/{vendor_id}", response_model=VendorOut)
def api_update_vendor(vendor_id: int, payload: VendorUpdate, db: Session = Depends(get_db)):
    return update_vendor(db, get_vendor(db, vendor_id), payload.model_dump(exclude_unset=True))


@router.delete("/{vendor_id}")
def api_delete_vendor(vendor_id: int, db: Session = Depends(get_db)):
    delete_vendor(db, get_vendor(db, vendor_id))
    return {"status": "deleted"}
