"""CRUD helpers for people."""

from __future__ import annotations

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..core.errors import InvalidStateError, NotFoundError, ValidationError
from ..models.people import Person
from ..models.transaction import ConsumableTransaction


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def list_people(db: Session) -> list[Person]:
    """Every person, alphabetically."""

    return db.execute(select(Person).order_by(Person.name)).scalars().all()


def get_person(db: Session, person_id: int) -> Person:
    person = db.get(Person, person_id)
    if not person:
        raise NotFoundError("Person not found", details={"person_id": person_id})
    return person


def _check_unique(db: Session, name: str, email: str | None, exclude_id: int | None = None) -> None:
    stmt = select(Person.id).where(Person.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Person.id != exclude_id)
    if db.execute(stmt).first():
        raise ValidationError("Another person with the same name already exists" if exclude_id else "Person already exists")
    if email:
        stmt = select(Person.id).where(Person.email == email)
        if exclude_id is not None:
            stmt = stmt.where(Person.id != exclude_id)
        if db.execute(stmt).first():
            raise ValidationError("Email already exists")


def create_person(db: Session, payload: dict) -> Person:
    name = _clean(payload.get("name"))
    if not name:
        raise ValidationError("Name is required")
    email = _clean(payload.get("email"))
    _check_unique(db, name, email)
    person = Person(name=name, email=email, phone=_clean(payload.get("phone")))
    db.add(person)
    db.commit()
    db.refresh(person)
    return person


def update_person(db: Session, person: Person, payload: dict) -> Person:
    """Rename a person or change their contact details.

    Keys missing from ``payload`` are left alone; an empty email or phone
    clears the stored value.
    """

    name = _clean(payload.get("name"))
    if not name:
        raise ValidationError("Name is required")
    email = _clean(payload.get("email")) if "email" in payload else person.email
    _check_unique(db, name, email, exclude_id=person.id)
    person.name = name
    if "email" in payload:
        person.email = email
    if "phone" in payload:
        person.phone = _clean(payload.get("phone"))
    db.commit()
    db.refresh(person)
    return person


def delete_person(db: Session, person: Person) -> None:
    stmt = select(ConsumableTransaction.id).where(
        or_(
            ConsumableTransaction.added_by_id == person.id,
            ConsumableTransaction.issued_by_id == person.id,
            ConsumableTransaction.issued_to_id == person.id,
        )
    )
    if db.execute(stmt).first():
        raise InvalidStateError("Person is referenced by ledger entries", details={"person_id": person.id})
    db.delete(person)
    db.commit()
