from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..crud.people import create_person, delete_person, get_person, list_people, update_person
from ..db.session import get_db
from ..deps.auth import require_api_or_jwt
from ..schemas.people import PersonCreate, PersonOut, PersonUpdate

router = APIRouter(prefix="/api/v1/people", tags=["people"], dependencies=[Depends(require_api_or_jwt)])


@router.get("", response_model=list[PersonOut])
def api_list_people(db: Session = Depends(get_db)):
    return list_people(db)


@router.post("", response_model=PersonOut, status_code=201)
def api_create_person(payload: PersonCreate, db: Session = Depends(get_db)):
    return create_person(db, payload.model_dump())


@router.put("/{person_id}", response_model=PersonOut)
def api_update_person(person_id: int, payload: PersonUpdate, db: Session = Depends(get_db)):
    return update_person(db, get_person(db, person_id), payload.model_dump(exclude_unset=True))


@router.delete("/{person_id}")
def api_delete_person(person_id: int, db: Session = Depends(get_db)):
    delete_person(db, get_person(db, person_id))
    return {"message": "Person deleted successfully"}
