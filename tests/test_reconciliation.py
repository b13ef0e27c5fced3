"""Ledger edits and deletes keep the consumable aggregate and snapshots in step."""

import os
import random
import sys
import threading
from pathlib import Path

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from labstock.core.errors import (
    AlreadyDeletedError,
    DuplicateReferenceError,
    EditConflictError,
    InvalidStateError,
    LedgerError,
    NotFoundError,
    ReconciliationError,
    ValidationError,
)
from labstock.crud import transactions as ledger
from labstock.crud.categories import create_category
from labstock.crud.people import create_person
from labstock.crud.vendors import create_vendor
from labstock.db.session import Base
from labstock.models import Consumable, ConsumableTransaction
from labstock.services import reconciliation
from labstock.services.reconciliation import IssueLine


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def lab(db_session):
    return {
        "adder": create_person(db_session, {"name": "Asha", "email": "asha@lab.test"}),
        "issuer": create_person(db_session, {"name": "Ben"}),
        "recipient": create_person(db_session, {"name": "Chen"}),
        "vendor": create_vendor(db_session, {"name": "Sigma Supplies"}),
        "category": create_category(
            db_session, {"name": "Gloves", "fields": [{"name": "size", "type": "string"}]}
        ),
    }


def _add_new(db, lab, quantity, reference, name="Nitrile gloves", fields=None, unit_price=2.5):
    return reconciliation.record_addition(
        db,
        name=name,
        category_id=lab["category"].id,
        category_fields=fields if fields is not None else {"size": "M"},
        vendor_id=lab["vendor"].id,
        unit_price=unit_price,
        quantity=quantity,
        added_by_id=lab["adder"].id,
        entry_reference_number=reference,
    )


def _add_more(db, lab, consumable_id, quantity, reference):
    return reconciliation.record_addition(
        db,
        consumable_id=consumable_id,
        quantity=quantity,
        added_by_id=lab["adder"].id,
        entry_reference_number=reference,
    )


def _issue(db, lab, consumable_id, quantity, reference=None):
    return reconciliation.record_issue(
        db,
        consumable_id=consumable_id,
        quantity=quantity,
        issued_by_id=lab["issuer"].id,
        issued_to_id=lab["recipient"].id,
        reference_number=reference,
    )


def _assert_consistent(db, consumable_id):
    consumable = db.get(Consumable, consumable_id)
    running_add = running_issue = 0
    for entry in ledger.list_active(db, consumable_id):
        if entry.transaction_type == "ADD":
            running_add += entry.transaction_quantity
        else:
            running_issue += entry.transaction_quantity
        assert entry.remaining_quantity == running_add - running_issue
    assert running_add == consumable.quantity
    assert running_issue == consumable.claimed_quantity
    assert 0 <= consumable.claimed_quantity <= consumable.quantity
    assert consumable.available_quantity == consumable.quantity - consumable.claimed_quantity


@pytest.fixture()
def abc(db_session, lab):
    """ADD 10 (A), ADD 5 (B), ISSUE 8 (C) against one consumable."""

    a = _add_new(db_session, lab, 10, "ENT-001")
    b = _add_more(db_session, lab, a.consumable_id, 5, "ENT-002")
    c = _issue(db_session, lab, a.consumable_id, 8)
    return a, b, c


def test_additions_and_issue_build_running_snapshots(db_session, abc):
    a, b, c = abc
    consumable = db_session.get(Consumable, a.consumable_id)

    assert consumable.quantity == 15
    assert consumable.claimed_quantity == 8
    assert consumable.total_cost == pytest.approx(37.5)
    assert [a.remaining_quantity, b.remaining_quantity, c.remaining_quantity] == [10, 15, 7]
    assert a.transaction_id.startswith("TRX-ADD-")
    assert c.transaction_id.startswith("TRX-ISS-")
    assert a.total_consumable_cost == pytest.approx(25.0)
    _assert_consistent(db_session, a.consumable_id)


def test_edit_add_quantity_replays_snapshots(db_session, abc):
    a, b, c = abc

    reconciliation.edit_transaction(db_session, a.id, 6)

    consumable = db_session.get(Consumable, a.consumable_id)
    assert consumable.quantity == 11
    assert consumable.claimed_quantity == 8
    assert consumable.total_cost == pytest.approx(27.5)
    assert db_session.get(ConsumableTransaction, a.id).remaining_quantity == 6
    assert db_session.get(ConsumableTransaction, b.id).remaining_quantity == 11
    assert db_session.get(ConsumableTransaction, c.id).remaining_quantity == 3
    assert db_session.get(ConsumableTransaction, a.id).total_consumable_cost == pytest.approx(15.0)
    _assert_consistent(db_session, a.consumable_id)


def test_edit_issue_quantity_moves_claimed(db_session, abc):
    a, b, c = abc

    reconciliation.edit_transaction(db_session, c.id, 12)

    consumable = db_session.get(Consumable, a.consumable_id)
    assert consumable.claimed_quantity == 12
    assert db_session.get(ConsumableTransaction, c.id).remaining_quantity == 3
    _assert_consistent(db_session, a.consumable_id)


def test_delete_issue_restores_claimed_and_replays(db_session, abc):
    a, b, c = abc

    deleted = reconciliation.delete_transaction(db_session, c.id)

    assert [entry.id for entry in deleted] == [c.id]
    consumable = db_session.get(Consumable, a.consumable_id)
    assert consumable.claimed_quantity == 0
    assert consumable.quantity == 15
    assert db_session.get(ConsumableTransaction, c.id).is_deleted is True
    assert [e.id for e in ledger.list_active(db_session, a.consumable_id)] == [a.id, b.id]
    _assert_consistent(db_session, a.consumable_id)


def test_delete_add_reduces_quantity(db_session, abc):
    a, b, c = abc

    reconciliation.delete_transaction(db_session, b.id)

    consumable = db_session.get(Consumable, a.consumable_id)
    assert consumable.quantity == 10
    assert db_session.get(ConsumableTransaction, c.id).remaining_quantity == 2
    _assert_consistent(db_session, a.consumable_id)


def test_delete_add_below_claimed_is_rejected_without_changes(db_session, abc):
    a, b, c = abc

    with pytest.raises(InvalidStateError):
        reconciliation.delete_transaction(db_session, a.id)

    consumable = db_session.get(Consumable, a.consumable_id)
    assert consumable.quantity == 15
    assert db_session.get(ConsumableTransaction, a.id).is_deleted is False
    _assert_consistent(db_session, a.consumable_id)


def test_edit_that_would_overdraw_is_rejected_without_changes(db_session, abc):
    a, b, c = abc

    with pytest.raises(InvalidStateError):
        reconciliation.edit_transaction(db_session, a.id, 2)

    consumable = db_session.get(Consumable, a.consumable_id)
    assert consumable.quantity == 15
    assert consumable.claimed_quantity == 8
    entry = db_session.get(ConsumableTransaction, a.id)
    assert entry.transaction_quantity == 10
    assert entry.remaining_quantity == 10
    assert db_session.get(ConsumableTransaction, c.id).remaining_quantity == 7


def test_issue_beyond_available_is_rejected(db_session, lab, abc):
    a, b, c = abc
    before = len(ledger.list_active(db_session, a.consumable_id))

    with pytest.raises(InvalidStateError):
        _issue(db_session, lab, a.consumable_id, 8)

    assert db_session.get(Consumable, a.consumable_id).claimed_quantity == 8
    assert len(ledger.list_active(db_session, a.consumable_id)) == before


def test_deleting_twice_reports_already_deleted(db_session, abc):
    a, b, c = abc
    reconciliation.delete_transaction(db_session, c.id)

    with pytest.raises(AlreadyDeletedError):
        reconciliation.delete_transaction(db_session, c.id)

    consumable = db_session.get(Consumable, a.consumable_id)
    assert consumable.claimed_quantity == 0
    assert consumable.quantity == 15


def test_editing_deleted_entry_is_a_conflict(db_session, abc):
    a, b, c = abc
    reconciliation.delete_transaction(db_session, b.id)

    with pytest.raises(EditConflictError):
        reconciliation.edit_transaction(db_session, b.id, 7)
    assert db_session.get(Consumable, a.consumable_id).quantity == 10


def test_edit_rejects_reference_used_by_another_entry(db_session, abc):
    a, b, c = abc

    with pytest.raises(DuplicateReferenceError):
        reconciliation.edit_transaction(db_session, b.id, 6, {"entry_reference_number": "ENT-001"})

    entry = db_session.get(ConsumableTransaction, b.id)
    assert entry.entry_reference_number == "ENT-002"
    assert entry.transaction_quantity == 5
    assert db_session.get(Consumable, a.consumable_id).quantity == 15


def test_reference_of_deleted_entry_can_be_reused(db_session, lab, abc):
    a, b, c = abc
    reconciliation.delete_transaction(db_session, c.id)
    reconciliation.delete_transaction(db_session, b.id)

    again = _add_more(db_session, lab, a.consumable_id, 1, "ENT-002")

    assert again.entry_reference_number == "ENT-002"
    _assert_consistent(db_session, a.consumable_id)


def test_missing_entry_is_not_found(db_session):
    with pytest.raises(NotFoundError):
        reconciliation.delete_transaction(db_session, 404)
    with pytest.raises(NotFoundError):
        reconciliation.edit_transaction(db_session, 404, 1)


def test_replay_is_idempotent(db_session, abc):
    a, b, c = abc

    first = reconciliation.replay(db_session, a.consumable_id)
    snapshots = [e.remaining_quantity for e in ledger.list_active(db_session, a.consumable_id)]
    second = reconciliation.replay(db_session, a.consumable_id)

    assert second.updated_entries == 0
    assert (first.add_total, first.issue_total) == (second.add_total, second.issue_total) == (15, 8)
    assert [e.remaining_quantity for e in ledger.list_active(db_session, a.consumable_id)] == snapshots


def test_drift_between_aggregate_and_ledger_is_reported_and_rolled_back(db_session, abc):
    a, b, c = abc
    db_session.execute(update(Consumable).where(Consumable.id == a.consumable_id).values(quantity=20))
    db_session.commit()

    with pytest.raises(ReconciliationError) as excinfo:
        reconciliation.edit_transaction(db_session, a.id, 11)
    assert excinfo.value.details["ledger_added"] == 16
    assert excinfo.value.details["quantity"] == 21

    assert db_session.get(Consumable, a.consumable_id).quantity == 20
    assert db_session.get(ConsumableTransaction, a.id).transaction_quantity == 10
    with pytest.raises(ReconciliationError):
        reconciliation.reconcile(db_session, a.consumable_id)


def test_reconcile_repairs_stale_snapshots(db_session, abc):
    a, b, c = abc
    db_session.execute(
        update(ConsumableTransaction).where(ConsumableTransaction.id == b.id).values(remaining_quantity=99)
    )
    db_session.commit()

    result = reconciliation.reconcile(db_session, a.consumable_id)

    assert result.updated_entries == 1
    assert result.available == 7
    assert db_session.get(ConsumableTransaction, b.id).remaining_quantity == 15


def test_batch_issue_is_deleted_as_a_whole(db_session, lab):
    gloves = _add_new(db_session, lab, 10, "ENT-010")
    tips = _add_new(db_session, lab, 4, "ENT-011", name="Pipette tips", fields={})

    entries = reconciliation.record_batch_issue(
        db_session,
        lines=[IssueLine(gloves.consumable_id, 3), IssueLine(tips.consumable_id, 2)],
        issued_by_id=lab["issuer"].id,
        issued_to_id=lab["recipient"].id,
        reference_number="REF-BATCH-1",
    )

    assert len({entry.transaction_id for entry in entries}) == 1
    assert entries[0].transaction_id.startswith("TRX-BAT-")
    assert {entry.reference_number for entry in entries} == {"REF-BATCH-1"}
    assert db_session.get(Consumable, tips.consumable_id).claimed_quantity == 2

    deleted = reconciliation.delete_transaction(db_session, entries[1].id)

    assert sorted(entry.id for entry in deleted) == sorted(entry.id for entry in entries)
    assert db_session.get(Consumable, gloves.consumable_id).claimed_quantity == 0
    assert db_session.get(Consumable, tips.consumable_id).claimed_quantity == 0
    _assert_consistent(db_session, gloves.consumable_id)
    _assert_consistent(db_session, tips.consumable_id)


def test_batch_issue_rolls_back_every_line_when_one_fails(db_session, lab):
    gloves = _add_new(db_session, lab, 10, "ENT-020")
    tips = _add_new(db_session, lab, 1, "ENT-021", name="Pipette tips", fields={})

    with pytest.raises(InvalidStateError):
        reconciliation.record_batch_issue(
            db_session,
            lines=[IssueLine(gloves.consumable_id, 3), IssueLine(tips.consumable_id, 2)],
            issued_by_id=lab["issuer"].id,
            issued_to_id=lab["recipient"].id,
        )

    assert db_session.get(Consumable, gloves.consumable_id).claimed_quantity == 0
    assert ledger.list_active(db_session, gloves.consumable_id)[-1].transaction_type == "ADD"


def test_editing_batch_reference_updates_siblings(db_session, lab):
    gloves = _add_new(db_session, lab, 10, "ENT-030")
    tips = _add_new(db_session, lab, 10, "ENT-031", name="Pipette tips", fields={})
    entries = reconciliation.record_batch_issue(
        db_session,
        lines=[IssueLine(gloves.consumable_id, 1), IssueLine(tips.consumable_id, 1)],
        issued_by_id=lab["issuer"].id,
        issued_to_id=lab["recipient"].id,
        reference_number="REF-OLD",
    )

    reconciliation.edit_transaction(db_session, entries[0].id, 2, {"reference_number": "REF-NEW"})

    assert db_session.get(ConsumableTransaction, entries[0].id).reference_number == "REF-NEW"
    assert db_session.get(ConsumableTransaction, entries[1].id).reference_number == "REF-NEW"
    assert db_session.get(Consumable, gloves.consumable_id).claimed_quantity == 2
    assert db_session.get(Consumable, tips.consumable_id).claimed_quantity == 1


def test_single_issue_cannot_reuse_a_batch_reference(db_session, lab):
    gloves = _add_new(db_session, lab, 10, "ENT-040")
    reconciliation.record_batch_issue(
        db_session,
        lines=[IssueLine(gloves.consumable_id, 1)],
        issued_by_id=lab["issuer"].id,
        issued_to_id=lab["recipient"].id,
        reference_number="REF-SHARED",
    )

    with pytest.raises(DuplicateReferenceError):
        _issue(db_session, lab, gloves.consumable_id, 1, reference="REF-SHARED")
    assert db_session.get(Consumable, gloves.consumable_id).claimed_quantity == 1


def test_stock_in_matches_existing_record_by_identity(db_session, lab):
    first = _add_new(db_session, lab, 4, "ENT-050", fields={"size": " M "})
    second = _add_new(db_session, lab, 6, "ENT-051", unit_price=3.0)
    other_size = _add_new(db_session, lab, 1, "ENT-052", fields={"size": "L"})

    assert second.consumable_id == first.consumable_id
    assert other_size.consumable_id != first.consumable_id
    consumable = db_session.get(Consumable, first.consumable_id)
    assert consumable.quantity == 10
    assert consumable.unit_price == pytest.approx(3.0)
    assert consumable.total_cost == pytest.approx(30.0)


def test_stock_in_requires_a_known_person(db_session, lab):
    with pytest.raises(ValidationError):
        reconciliation.record_addition(
            db_session,
            name="Ethanol",
            category_id=lab["category"].id,
            vendor_id=lab["vendor"].id,
            unit_price=1.0,
            quantity=1,
            added_by_id=999,
            entry_reference_number="ENT-060",
        )
    assert db_session.query(Consumable).count() == 0


def test_random_operation_sequences_keep_ledger_and_aggregate_in_step(db_session, lab):
    rng = random.Random(7)
    first = _add_new(db_session, lab, 20, "ENT-R-0")
    consumable_id = first.consumable_id
    counter = 1

    for _ in range(60):
        action = rng.choice(["add", "issue", "edit", "delete"])
        try:
            if action == "add":
                _add_more(db_session, lab, consumable_id, rng.randint(1, 8), f"ENT-R-{counter}")
                counter += 1
            elif action == "issue":
                _issue(db_session, lab, consumable_id, rng.randint(1, 8))
            else:
                active = ledger.list_active(db_session, consumable_id)
                if not active:
                    continue
                target = rng.choice(active)
                if action == "edit":
                    reconciliation.edit_transaction(db_session, target.id, rng.randint(1, 12))
                else:
                    reconciliation.delete_transaction(db_session, target.id)
        except LedgerError:
            pass
        _assert_consistent(db_session, consumable_id)


def test_single_issues_sharing_a_group_id_are_deleted_separately(db_session, lab, monkeypatch):
    tips = _add_new(db_session, lab, 5, "ENT-070", name="Pipette tips", fields={})
    beakers = _add_new(db_session, lab, 5, "ENT-071", name="Beaker", fields={})
    monkeypatch.setattr(reconciliation, "generate_transaction_id", lambda kind: "TRX-ISS-1700000000000-007")
    first = _issue(db_session, lab, tips.consumable_id, 3)
    second = _issue(db_session, lab, beakers.consumable_id, 4)

    deleted = reconciliation.delete_transaction(db_session, first.id)

    assert [entry.id for entry in deleted] == [first.id]
    assert db_session.get(ConsumableTransaction, second.id).is_deleted is False
    assert db_session.get(Consumable, tips.consumable_id).claimed_quantity == 0
    assert db_session.get(Consumable, beakers.consumable_id).claimed_quantity == 4
    _assert_consistent(db_session, beakers.consumable_id)


def test_concurrent_issues_without_reference_get_distinct_numbers(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'stock.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SessionFactory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)

    setup = SessionFactory()
    lab = {
        "adder": create_person(setup, {"name": "Asha"}),
        "issuer": create_person(setup, {"name": "Ben"}),
        "recipient": create_person(setup, {"name": "Chen"}),
        "vendor": create_vendor(setup, {"name": "Sigma Supplies"}),
        "category": create_category(setup, {"name": "Gloves"}),
    }
    consumable_ids = [
        _add_new(setup, lab, 5, "ENT-T1").consumable_id,
        _add_new(setup, lab, 5, "ENT-T2", name="Pipette tips", fields={}).consumable_id,
    ]
    issuer_id, recipient_id = lab["issuer"].id, lab["recipient"].id
    setup.close()

    barrier = threading.Barrier(len(consumable_ids))
    results = {}

    def issue_one(consumable_id):
        db = SessionFactory()
        try:
            barrier.wait()
            entry = reconciliation.record_issue(
                db,
                consumable_id=consumable_id,
                quantity=1,
                issued_by_id=issuer_id,
                issued_to_id=recipient_id,
            )
            results[consumable_id] = entry.reference_number
        except Exception as exc:
            results[consumable_id] = exc
        finally:
            db.close()

    workers = [threading.Thread(target=issue_one, args=(consumable_id,)) for consumable_id in consumable_ids]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=30)

    assert all(isinstance(reference, str) for reference in results.values()), results
    assert len(set(results.values())) == 2
    engine.dispose()
