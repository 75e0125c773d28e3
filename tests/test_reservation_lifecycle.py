import pytest

import audit
import crud
import errors
import pickup
import reputation
import reservations
from helpers import NOW, days, hours
from models import (
    BulkPickupIn,
    BulkReservationActionIn,
    CancelIn,
    ItemStatus,
    ItemUpdate,
    RejectIn,
    ReservationIn,
    ReservationModify,
    ReservationStatus,
)
from orm import ReservationORM


def _reserve(db, actor, item_id, start=NOW + days(2), end=NOW + days(4)):
    return reservations.create_reservation(
        db, actor, ReservationIn(item_id=item_id, start_date=start, end_date=end, purpose="field trip"), now=NOW
    )


def _actions(db, reservation_id):
    return [e.action for e in audit.list_entries(db, entity_type="Reservation", entity_id=reservation_id)]


# ---------- create ----------
def test_create_starts_pending_and_leaves_item_status(db_session, make_item, borrower):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)

    assert r.status == ReservationStatus.PENDING
    assert r.user_id == borrower.user_id
    db_session.refresh(item)
    assert item.status == ItemStatus.AVAILABLE
    assert _actions(db_session, r.id) == ["CREATE_RESERVATION"]


def test_create_rejects_end_before_start(db_session, make_item, borrower):
    item = make_item()
    with pytest.raises(errors.ValidationError):
        _reserve(db_session, borrower, item.id, start=NOW + days(4), end=NOW + days(2))
    with pytest.raises(errors.ValidationError):
        _reserve(db_session, borrower, item.id, start=NOW + days(4), end=NOW + days(4))


def test_create_rejects_past_start(db_session, make_item, borrower):
    item = make_item()
    with pytest.raises(errors.ValidationError):
        _reserve(db_session, borrower, item.id, start=NOW - hours(1), end=NOW + days(1))


def test_create_rejects_retired_item(db_session, make_item, borrower, staff):
    item = make_item()
    crud.update_item(db_session, staff, item.id, ItemUpdate(status=ItemStatus.RETIRED), now=NOW)
    with pytest.raises(errors.ValidationError):
        _reserve(db_session, borrower, item.id)


def test_create_unknown_item_is_not_found(db_session, borrower):
    with pytest.raises(errors.NotFoundError):
        _reserve(db_session, borrower, "missing")


# ---------- approve / reject ----------
def test_approve_sets_approver_and_reserves_item(db_session, make_item, borrower, staff):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    r = reservations.approve_reservation(db_session, staff, r.id, now=NOW + hours(1))

    assert r.status == ReservationStatus.APPROVED
    assert r.approved_by_id == staff.user_id
    assert r.approved_at == NOW + hours(1)
    db_session.refresh(item)
    assert item.status == ItemStatus.RESERVED


def test_borrower_cannot_approve(db_session, make_item, borrower):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    with pytest.raises(errors.PermissionDeniedError):
        reservations.approve_reservation(db_session, borrower, r.id, now=NOW)


def test_approve_twice_is_state_error(db_session, make_item, borrower, staff):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    reservations.approve_reservation(db_session, staff, r.id, now=NOW)
    with pytest.raises(errors.StateError):
        reservations.approve_reservation(db_session, staff, r.id, now=NOW)


def test_reject_requires_pending(db_session, make_item, borrower, staff):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    r = reservations.reject_reservation(db_session, staff, r.id, RejectIn(reason="item needed in-house"), now=NOW)
    assert r.status == ReservationStatus.REJECTED
    assert r.rejection_reason == "item needed in-house"

    with pytest.raises(errors.StateError):
        reservations.reject_reservation(db_session, staff, r.id, RejectIn(reason="again"), now=NOW)


def test_rejected_reservation_frees_the_range(db_session, make_item, borrower, other_borrower, staff):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    reservations.reject_reservation(db_session, staff, r.id, RejectIn(reason="no"), now=NOW)
    again = _reserve(db_session, other_borrower, item.id)
    assert again.status == ReservationStatus.PENDING


# ---------- modify ----------
def test_owner_significant_change_on_approved_forces_reapproval(db_session, make_item, borrower, staff):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    reservations.approve_reservation(db_session, staff, r.id, now=NOW)

    result = reservations.modify_reservation(
        db_session,
        borrower,
        r.id,
        ReservationModify(start_date=NOW + days(5), end_date=NOW + days(7), reason="trip moved"),
        now=NOW + hours(1),
    )

    assert result.requires_reapproval is True
    assert result.reservation.status == ReservationStatus.PENDING
    assert result.reservation.approved_by_id is None
    assert result.reservation.approved_at is None
    db_session.refresh(item)
    assert item.status == ItemStatus.AVAILABLE

    entries = audit.list_entries(db_session, entity_type="Reservation", entity_id=r.id, action="MODIFY_RESERVATION")
    payload = audit.parse_payload(entries[-1])
    assert payload.requires_reapproval is True
    assert payload.previous_start_date == NOW + days(2)
    assert payload.new_start_date == NOW + days(5)


def test_small_change_keeps_approval(db_session, make_item, borrower, staff):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    reservations.approve_reservation(db_session, staff, r.id, now=NOW)

    result = reservations.modify_reservation(
        db_session,
        borrower,
        r.id,
        ReservationModify(start_date=NOW + days(2) + hours(3), end_date=NOW + days(4) + hours(3), reason="later"),
        now=NOW,
    )
    assert result.requires_reapproval is False
    assert result.reservation.status == ReservationStatus.APPROVED


def test_staff_significant_change_keeps_approval(db_session, make_item, borrower, staff):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    reservations.approve_reservation(db_session, staff, r.id, now=NOW)

    result = reservations.modify_reservation(
        db_session,
        staff,
        r.id,
        ReservationModify(start_date=NOW + days(10), end_date=NOW + days(12), reason="rescheduled by desk"),
        now=NOW,
    )
    assert result.requires_reapproval is False
    assert result.reservation.status == ReservationStatus.APPROVED


def test_modify_into_conflict_is_rejected(db_session, make_item, borrower, other_borrower):
    item = make_item()
    mine = _reserve(db_session, borrower, item.id, NOW + days(1), NOW + days(2))
    theirs = _reserve(db_session, other_borrower, item.id, NOW + days(5), NOW + days(6))

    with pytest.raises(errors.ConflictError) as exc:
        reservations.modify_reservation(
            db_session,
            borrower,
            mine.id,
            ReservationModify(start_date=NOW + days(4), end_date=NOW + days(6), reason="longer"),
            now=NOW,
        )
    assert [c["id"] for c in exc.value.extra["conflicts"]] == [theirs.id]


def test_modify_may_overlap_its_own_range(db_session, make_item, borrower):
    item = make_item()
    r = _reserve(db_session, borrower, item.id, NOW + days(1), NOW + days(3))
    result = reservations.modify_reservation(
        db_session,
        borrower,
        r.id,
        ReservationModify(start_date=NOW + days(2), end_date=NOW + days(4), reason="shift"),
        now=NOW,
    )
    assert result.reservation.start_date == NOW + days(2)


def test_stranger_cannot_modify(db_session, make_item, borrower, other_borrower):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    with pytest.raises(errors.PermissionDeniedError):
        reservations.modify_reservation(
            db_session,
            other_borrower,
            r.id,
            ReservationModify(start_date=NOW + days(3), end_date=NOW + days(4), reason="mine now"),
            now=NOW,
        )


# ---------- cancel ----------
@pytest.mark.parametrize(
    "cancel_at, expected_delta",
    [
        (NOW + days(3) - hours(48), 0),
        (NOW + days(3) - hours(12), -5),
        (NOW + days(3) + hours(2), -10),
    ],
)
def test_owner_cancellation_penalty_depends_on_time_to_start(
    db_session, make_item, borrower, cancel_at, expected_delta
):
    item = make_item()
    r = _reserve(db_session, borrower, item.id, NOW + days(3), NOW + days(5))

    result = reservations.cancel_reservation(db_session, borrower, r.id, CancelIn(reason="sick"), now=cancel_at)

    assert result.trust_score_impact == expected_delta
    assert result.reservation.status == ReservationStatus.CANCELLED
    assert reputation.current_score(db_session, borrower.user_id) == max(0, 100 + expected_delta)
    entries = reputation.list_entries(db_session, borrower.user_id)
    if expected_delta:
        assert len(entries) == 1
        assert (entries[0].previous_score, entries[0].new_score) == (100, 100 + expected_delta)
    else:
        assert entries == []


def test_staff_cancellation_never_penalises(db_session, make_item, borrower, staff):
    item = make_item()
    r = _reserve(db_session, borrower, item.id, NOW + days(3), NOW + days(5))
    result = reservations.cancel_reservation(
        db_session, staff, r.id, CancelIn(reason="item broke"), now=NOW + days(3) + hours(1)
    )
    assert result.trust_score_impact == 0
    assert reputation.list_entries(db_session, borrower.user_id) == []


def test_cancel_completed_or_cancelled_is_state_error(db_session, make_item, borrower):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    reservations.cancel_reservation(db_session, borrower, r.id, CancelIn(reason="x"), now=NOW)
    with pytest.raises(errors.StateError):
        reservations.cancel_reservation(db_session, borrower, r.id, CancelIn(reason="x"), now=NOW)


def test_cancel_requires_reason(db_session, make_item, borrower):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    with pytest.raises(errors.ValidationError):
        reservations.cancel_reservation(db_session, borrower, r.id, CancelIn(reason="   "), now=NOW)


def test_penalty_score_never_goes_below_zero(db_session, make_item, borrower):
    reputation.apply_delta(db_session, borrower.user_id, -97, "history", acting_user_id=None, now=NOW)
    db_session.commit()

    item = make_item()
    r = _reserve(db_session, borrower, item.id, NOW + days(3), NOW + days(5))
    reservations.cancel_reservation(db_session, borrower, r.id, CancelIn(reason="late"), now=NOW + days(4))

    assert reputation.current_score(db_session, borrower.user_id) == 0


def test_cancel_writes_reservation_and_ledger_audit(db_session, make_item, borrower):
    item = make_item()
    r = _reserve(db_session, borrower, item.id, NOW + days(1), NOW + days(2))
    reservations.cancel_reservation(db_session, borrower, r.id, CancelIn(reason="late"), now=NOW + hours(20))

    entries = audit.list_entries(db_session, entity_type="Reservation", entity_id=r.id, action="CANCEL_RESERVATION")
    payload = audit.parse_payload(entries[0])
    assert isinstance(payload, audit.CancelReservationPayload)
    assert payload.trust_score_impact == -5
    assert payload.cancelled_by == "owner"
    assert audit.list_entries(db_session, entity_type="User", entity_id=borrower.user_id)[0].action == "REPUTATION_CHANGE"


# ---------- delete ----------
def test_owner_may_delete_pending(db_session, make_item, borrower):
    item = make_item()
    reservation_id = _reserve(db_session, borrower, item.id).id
    reservations.delete_reservation(db_session, borrower, reservation_id, now=NOW)
    assert db_session.get(ReservationORM, reservation_id) is None
    assert _actions(db_session, reservation_id)[-1] == "DELETE_RESERVATION"


def test_plain_staff_cannot_delete_others(db_session, make_item, borrower, staff, manager):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    with pytest.raises(errors.PermissionDeniedError):
        reservations.delete_reservation(db_session, staff, r.id, now=NOW)
    reservations.delete_reservation(db_session, manager, r.id, now=NOW)


def test_nobody_deletes_active(db_session, make_item, borrower, staff, admin):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    reservations.approve_reservation(db_session, staff, r.id, now=NOW)
    pickup.bulk_confirm_pickup(db_session, staff, BulkPickupIn(reservation_ids=[r.id]), now=NOW + days(2))

    for actor in (borrower, admin):
        with pytest.raises(errors.StateError):
            reservations.delete_reservation(db_session, actor, r.id, now=NOW + days(2))


# ---------- read ----------
def test_borrowers_only_list_their_own(db_session, make_item, borrower, other_borrower, staff):
    a = make_item()
    b = make_item()
    _reserve(db_session, borrower, a.id)
    _reserve(db_session, other_borrower, b.id)

    mine = reservations.list_reservations(db_session, borrower, user_id=other_borrower.user_id)
    assert {r.user_id for r in mine} == {borrower.user_id}
    everyone = reservations.list_reservations(db_session, staff)
    assert len(everyone) == 2


def test_stranger_cannot_read_reservation(db_session, make_item, borrower, other_borrower):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    with pytest.raises(errors.PermissionDeniedError):
        reservations.get_reservation(db_session, other_borrower, r.id)


def test_history_is_typed_and_ordered(db_session, make_item, borrower, staff):
    item = make_item()
    r = _reserve(db_session, borrower, item.id)
    reservations.approve_reservation(db_session, staff, r.id, now=NOW)

    history = reservations.history(db_session, borrower, r.id)
    assert [h.action for h in history] == ["CREATE_RESERVATION", "APPROVE_RESERVATION"]
    assert isinstance(history[1].payload, audit.ApproveReservationPayload)


# ---------- bulk staff actions ----------
def _bulk(db, actor, action, ids, reason=None):
    return reservations.bulk_action(
        db, actor, BulkReservationActionIn(action=action, reservation_ids=ids, reason=reason), now=NOW
    )


def _stored(db, reservation_id):
    db.expire_all()
    return db.get(ReservationORM, reservation_id)


def test_bulk_approve_reports_each_row(db_session, make_item, borrower, other_borrower, staff):
    first = _reserve(db_session, borrower, make_item().id)
    second = _reserve(db_session, other_borrower, make_item().id)
    already = _reserve(db_session, borrower, make_item().id)
    reservations.approve_reservation(db_session, staff, already.id, now=NOW)
    ids = [first.id, second.id, already.id, "missing"]

    result = _bulk(db_session, staff, "approve", ids)

    assert (result.summary.total, result.summary.successful, result.summary.failed) == (4, 2, 2)
    rows = {row.id: row for row in result.results}
    assert rows[already.id].error == "cannot approve a reservation with status APPROVED"
    assert rows["missing"].error == "reservation not found"
    assert _stored(db_session, first.id).status == ReservationStatus.APPROVED
    assert _stored(db_session, second.id).status == ReservationStatus.APPROVED
    assert _actions(db_session, first.id) == ["CREATE_RESERVATION", "APPROVE_RESERVATION"]


def test_bulk_reject_falls_back_to_default_reason(db_session, make_item, borrower, staff):
    plain = _reserve(db_session, borrower, make_item().id)
    explained = _reserve(db_session, borrower, make_item().id)

    _bulk(db_session, staff, "reject", [plain.id])
    _bulk(db_session, staff, "reject", [explained.id], reason="lab closed that week")

    assert _stored(db_session, plain.id).rejection_reason == reservations.BULK_REJECT_REASON
    assert _stored(db_session, explained.id).rejection_reason == "lab closed that week"
    assert _stored(db_session, explained.id).status == ReservationStatus.REJECTED


def test_bulk_cancel_by_staff_never_penalises(db_session, make_item, borrower, staff):
    soon = _reserve(db_session, borrower, make_item().id, start=NOW + hours(2), end=NOW + days(1))
    reservations.approve_reservation(db_session, staff, soon.id, now=NOW)

    result = _bulk(db_session, staff, "cancel", [soon.id])

    assert result.summary.successful == 1
    cancelled = _stored(db_session, soon.id)
    assert cancelled.status == ReservationStatus.CANCELLED
    assert cancelled.cancellation_reason == reservations.BULK_CANCEL_REASON
    assert reputation.current_score(db_session, "alice") == 100


def test_bulk_delete_needs_elevated_role_and_skips_active(db_session, make_item, borrower, staff, manager):
    rejected = _reserve(db_session, borrower, make_item().id)
    reservations.reject_reservation(db_session, staff, rejected.id, RejectIn(reason="no"), now=NOW)
    active = _reserve(db_session, borrower, make_item().id)
    reservations.approve_reservation(db_session, staff, active.id, now=NOW)
    pickup.bulk_confirm_pickup(db_session, staff, BulkPickupIn(reservation_ids=[active.id]), now=NOW + days(2))
    rejected_id, active_id = rejected.id, active.id

    with pytest.raises(errors.PermissionDeniedError):
        _bulk(db_session, staff, "delete", [rejected_id])

    result = _bulk(db_session, manager, "delete", [rejected_id, active_id])

    rows = {row.id: row for row in result.results}
    assert rows[rejected_id].success is True
    assert rows[active_id].success is False
    assert _stored(db_session, rejected_id) is None
    assert _stored(db_session, active_id).status == ReservationStatus.ACTIVE


def test_bulk_action_is_staff_only(db_session, make_item, borrower):
    r = _reserve(db_session, borrower, make_item().id)
    with pytest.raises(errors.PermissionDeniedError):
        _bulk(db_session, borrower, "cancel", [r.id])
    assert _stored(db_session, r.id).status == ReservationStatus.PENDING
