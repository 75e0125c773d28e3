from sqlalchemy import select

import audit
import crud
import reputation
import reservations
from helpers import NOW, days
from models import CancelIn, ItemIn, ReservationIn
from orm import AuditLogORM, ReputationEntryORM, ReservationORM


def _body(item_id, start=NOW + days(3), end=NOW + days(5)):
    return ReservationIn(item_id=item_id, start_date=start, end_date=end)


def test_create_item_commit_false_requires_manual_commit(db_session, staff):
    created = crud.create_item(db_session, staff, ItemIn(name="Tablet", serial_number="T-001"), commit=False)

    db_session.commit()
    db_session.expire_all()

    loaded = crud.get_item(db_session, created.id)
    assert loaded is not None
    assert loaded.serial_number == "T-001"


def test_create_item_commit_false_rollback_discards_item_and_audit(db_session, staff):
    created = crud.create_item(db_session, staff, ItemIn(name="Tablet", serial_number="T-002"), commit=False)
    item_id = created.id

    db_session.rollback()
    db_session.expire_all()

    assert crud.get_item(db_session, item_id) is None
    assert audit.list_entries(db_session, entity_type="Item", entity_id=item_id) == []


def test_create_reservation_commit_false_rollback_discards_reservation(db_session, make_item, borrower):
    item = make_item()
    r = reservations.create_reservation(db_session, borrower, _body(item.id), now=NOW, commit=False)
    reservation_id = r.id

    db_session.rollback()
    db_session.expire_all()

    assert db_session.get(ReservationORM, reservation_id) is None
    rows = db_session.execute(
        select(AuditLogORM).where(AuditLogORM.entity_id == reservation_id)
    ).scalars().all()
    assert rows == []


def test_cancel_commit_false_rollback_discards_penalty_and_status(db_session, make_item, borrower):
    item = make_item()
    r = reservations.create_reservation(db_session, borrower, _body(item.id, NOW + days(1), NOW + days(2)), now=NOW)

    # 12h before start: late cancellation
    result = reservations.cancel_reservation(
        db_session, borrower, r.id, CancelIn(reason="plans changed"), now=NOW + days(0.5), commit=False
    )
    assert result.trust_score_impact == -5

    db_session.rollback()
    db_session.expire_all()

    loaded = db_session.get(ReservationORM, r.id)
    assert loaded.status.value == "PENDING"
    assert reputation.current_score(db_session, borrower.user_id) == 100
    entries = db_session.execute(select(ReputationEntryORM)).scalars().all()
    assert entries == []


def test_approve_commit_false_requires_manual_commit(db_session, make_item, borrower, staff):
    item = make_item()
    r = reservations.create_reservation(db_session, borrower, _body(item.id), now=NOW)

    reservations.approve_reservation(db_session, staff, r.id, now=NOW, commit=False)
    db_session.commit()
    db_session.expire_all()

    loaded = db_session.get(ReservationORM, r.id)
    assert loaded.status.value == "APPROVED"
    assert loaded.approved_by_id == staff.user_id
