#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_borrow_engine
    ~~~~~~~~~~~~~~~~~~~~~~~~

    State transitions of single borrows and bulk operations.
"""

from datetime import timedelta

import pytest

from lendlab.core.borrows import BorrowEngine
from lendlab.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from lendlab.core.utils import utcnow
from lendlab.models import Borrow, BorrowGroupMate, BorrowStatus, EquipmentStatus


@pytest.fixture
def engine(db_session):
    return BorrowEngine(db_session)


# RequestReturn

def test_request_return_moves_active_to_pending_return(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.ACTIVE)

    result = engine.request_return(borrow.id, actors["student"])

    assert result.borrow_status == BorrowStatus.PENDING_RETURN
    assert result.data_requested is False
    assert result.requested_equipment_ids == []

def test_request_return_twice_is_idempotent(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.ACTIVE)

    first = engine.request_return(borrow.id, actors["student"])
    updated_at = first.updated_at
    second = engine.request_return(borrow.id, actors["student"])

    assert second.borrow_status == BorrowStatus.PENDING_RETURN
    assert second.updated_at == updated_at

def test_request_return_accepts_overdue(engine, users, actors, equipment, make_borrow):
    past = utcnow() - timedelta(days=1)
    borrow = make_borrow(
        users["student"], equipment, status=BorrowStatus.ACTIVE,
        approved_start_time=past - timedelta(hours=2), approved_end_time=past)
    assert borrow.effective_status == BorrowStatus.OVERDUE

    result = engine.request_return(borrow.id, actors["student"])
    assert result.borrow_status == BorrowStatus.PENDING_RETURN

def test_request_return_accepts_persisted_overdue(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.OVERDUE)
    assert engine.request_return(borrow.id, actors["student"]).borrow_status == BorrowStatus.PENDING_RETURN

def test_request_return_on_rejected_is_invalid_and_unchanged(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.REJECTED_STAFF)

    with pytest.raises(InvalidTransitionError) as excinfo:
        engine.request_return(borrow.id, actors["student"], {"requestData": True})

    assert "REJECTED_STAFF" in excinfo.value.message
    assert borrow.borrow_status == BorrowStatus.REJECTED_STAFF
    assert borrow.data_requested is False

def test_request_return_checks_existence_then_owner(engine, users, actors, equipment, make_borrow):
    with pytest.raises(NotFoundError):
        engine.request_return("doesnotexist", actors["student"])

    # Ownership is checked before status
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.REJECTED_STAFF)
    with pytest.raises(ForbiddenError):
        engine.request_return(borrow.id, actors["outsider"])

def test_request_return_is_for_the_borrower_only(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.ACTIVE)
    with pytest.raises(ForbiddenError):
        engine.request_return(borrow.id, actors["staff"])
    assert borrow.borrow_status == BorrowStatus.ACTIVE

def test_request_return_with_data_request(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.ACTIVE)

    result = engine.request_return(borrow.id, actors["student"], {
        "requestData": True,
        "dataRequestRemarks": "Need the CSV export",
        "requestedEquipmentIds": [equipment.id],
    })

    assert result.data_requested is True
    assert result.data_request_status == "Pending"
    assert result.data_request_remarks == "Need the CSV export"
    assert result.requested_equipment_ids == [equipment.id]

def test_request_return_without_remarks_keeps_existing_remarks(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.ACTIVE,
                         data_request_remarks="Export channel 2 only")

    result = engine.request_return(borrow.id, actors["student"], {"requestData": True})

    assert result.data_request_status == "Pending"
    assert result.data_request_remarks == "Export channel 2 only"

def test_request_return_sanitizes_equipment_ids(engine, users, actors, equipment, make_borrow):
    first = make_borrow(users["student"], equipment, status=BorrowStatus.ACTIVE)
    second = make_borrow(users["student"], equipment, status=BorrowStatus.ACTIVE)

    mixed = engine.request_return(first.id, actors["student"], {
        "requestData": True, "requestedEquipmentIds": ["a", 3, None, "b"]})
    not_a_list = engine.request_return(second.id, actors["student"], {
        "requestData": True, "requestedEquipmentIds": "a,b"})

    assert mixed.requested_equipment_ids == ["a", "b"]
    assert not_a_list.requested_equipment_ids == []
    assert not_a_list.data_requested is True

def test_request_return_without_data_clears_fields(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(
        users["student"], equipment, status=BorrowStatus.ACTIVE,
        data_requested=True, data_request_status="Pending",
        data_request_remarks="old", requested_equipment_ids=["x"])

    result = engine.request_return(borrow.id, actors["student"], {"requestData": False})

    assert result.data_requested is False
    assert result.data_request_status is None
    assert result.data_request_remarks is None
    assert result.requested_equipment_ids == []

# BulkApprove

def test_bulk_approve_only_touches_pending(engine, db_session, users, actors, equipment, make_borrow):
    a = make_borrow(users["student"], equipment, status=BorrowStatus.PENDING)
    b = make_borrow(users["student"], equipment, status=BorrowStatus.APPROVED)
    b_start = b.approved_start_time

    result = engine.bulk_approve([a.id, b.id, "missingid"], actors["staff"])

    assert result.count == 1
    assert result.skipped_ids == [b.id, "missingid"]
    db_session.refresh(a)
    db_session.refresh(b)
    assert a.borrow_status == BorrowStatus.APPROVED
    assert a.approved_start_time == a.requested_start_time
    assert a.approved_by_id == users["staff"].id
    assert b.borrow_status == BorrowStatus.APPROVED
    assert b.approved_start_time == b_start
    assert db_session.get(Borrow, "missingid") is None
    db_session.refresh(equipment)
    assert equipment.status == EquipmentStatus.RESERVED

def test_bulk_approve_twice_approves_nothing_new(engine, users, actors, equipment, make_borrow):
    a = make_borrow(users["student"], equipment)
    assert engine.bulk_approve([a.id], actors["faculty"]).count == 1
    assert engine.bulk_approve([a.id], actors["faculty"]).count == 0

def test_bulk_approve_requires_staff_or_faculty(engine, users, actors, equipment, make_borrow):
    a = make_borrow(users["student"], equipment)
    with pytest.raises(ForbiddenError):
        engine.bulk_approve([a.id], actors["student"])
    assert a.borrow_status == BorrowStatus.PENDING

@pytest.mark.parametrize("borrow_ids", [[], None, "abc", ["UPPER"], ["has-dash"], [12]])
def test_bulk_approve_validates_ids(engine, actors, borrow_ids):
    with pytest.raises(ValidationError):
        engine.bulk_approve(borrow_ids, actors["staff"])

# Submit & approve

def test_submit_group_records_mates(engine, db_session, users, actors, make_equipment):
    scope, meter = make_equipment("Scope"), make_equipment("Meter")
    start = utcnow() + timedelta(days=1)

    borrows = engine.submit(
        actors["student"], [scope.id, meter.id], start, start + timedelta(hours=2),
        group_mate_ids=[users["mate"].id])

    assert len(borrows) == 2
    group_ids = {b.borrow_group_id for b in borrows}
    assert len(group_ids) == 1 and None not in group_ids
    mates = db_session.query(BorrowGroupMate).filter_by(borrow_group_id=group_ids.pop()).all()
    assert {m.user_id for m in mates} == {users["student"].id, users["mate"].id}
    assert all(b.borrow_status == BorrowStatus.PENDING for b in borrows)

def test_submit_single_item_has_no_group(engine, actors, equipment):
    start = utcnow() + timedelta(days=1)
    [borrow] = engine.submit(actors["student"], [equipment.id], start, start + timedelta(hours=1))
    assert borrow.borrow_group_id is None

def test_submit_validates_window_and_equipment(engine, actors, make_equipment):
    start = utcnow() + timedelta(days=1)
    active = make_equipment("Scope")
    archived = make_equipment("Old scope", status=EquipmentStatus.ARCHIVED)

    with pytest.raises(ValidationError):
        engine.submit(actors["student"], [active.id], start, start)
    with pytest.raises(NotFoundError):
        engine.submit(actors["student"], ["nosuchthing"], start, start + timedelta(hours=1))
    with pytest.raises(InvalidTransitionError):
        engine.submit(actors["student"], [archived.id], start, start + timedelta(hours=1))

def test_approve_reserves_equipment_and_rejects_overlaps(engine, db_session, users, actors, equipment, make_borrow):
    first = make_borrow(users["student"], equipment)
    overlapping = make_borrow(users["mate"], equipment)
    later = make_borrow(
        users["mate"], equipment,
        requested_start_time=first.requested_end_time + timedelta(hours=1),
        requested_end_time=first.requested_end_time + timedelta(hours=2))

    approved = engine.approve(first.id, actors["faculty"])

    assert approved.borrow_status == BorrowStatus.APPROVED
    assert approved.approved_end_time == approved.requested_end_time
    assert approved.accepted_at is not None
    db_session.refresh(equipment)
    db_session.refresh(overlapping)
    db_session.refresh(later)
    assert equipment.status == EquipmentStatus.RESERVED
    assert overlapping.borrow_status == BorrowStatus.REJECTED_FIC
    assert later.borrow_status == BorrowStatus.PENDING

def test_approve_keeps_overlaps_while_stock_remains(engine, db_session, users, actors, make_equipment, make_borrow):
    equipment = make_equipment(stock_count=2)
    first = make_borrow(users["student"], equipment)
    overlapping = make_borrow(users["mate"], equipment)

    engine.approve(first.id, actors["staff"])

    db_session.refresh(overlapping)
    assert overlapping.borrow_status == BorrowStatus.PENDING

def test_approve_requires_pending(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.ACTIVE)
    with pytest.raises(InvalidTransitionError):
        engine.approve(borrow.id, actors["staff"])
    with pytest.raises(ForbiddenError):
        engine.approve(borrow.id, actors["student"])

def test_update_approved_window(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.APPROVED)
    new_end = borrow.approved_end_time + timedelta(hours=1)

    result = engine.update_approved_window(borrow.id, actors["staff"], approved_end_time=new_end)
    assert result.approved_end_time == new_end

    with pytest.raises(ValidationError):
        engine.update_approved_window(
            borrow.id, actors["staff"], approved_end_time=borrow.approved_start_time)

# Reject & cancel

def test_reject_status_follows_role(engine, users, actors, equipment, make_borrow):
    by_staff = make_borrow(users["student"], equipment)
    by_faculty = make_borrow(users["student"], equipment)

    assert engine.reject(by_staff.id, actors["staff"]).borrow_status == BorrowStatus.REJECTED_STAFF
    assert engine.reject(by_faculty.id, actors["faculty"]).borrow_status == BorrowStatus.REJECTED_FIC

def test_reject_approved_clears_window_and_releases_equipment(engine, db_session, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment)
    engine.approve(borrow.id, actors["staff"])
    db_session.refresh(equipment)
    assert equipment.status == EquipmentStatus.RESERVED

    result = engine.reject(borrow.id, actors["staff"])

    assert result.approved_start_time is None
    assert result.approved_end_time is None
    assert result.approved_by_id is None
    db_session.refresh(equipment)
    assert equipment.status == EquipmentStatus.AVAILABLE

def test_reject_group(engine, users, actors, make_equipment, make_group):
    group_id, borrows = make_group(
        users["student"], [make_equipment("A"), make_equipment("B")], status=BorrowStatus.PENDING)

    result = engine.reject_group(group_id, actors["faculty"])

    assert result.count == 2
    assert all(b.borrow_status == BorrowStatus.REJECTED_FIC for b in borrows)
    with pytest.raises(NotFoundError):
        engine.reject_group("nosuchgroup", actors["faculty"])

def test_cancel_by_owner_not_outsider(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment)
    with pytest.raises(ForbiddenError):
        engine.cancel(borrow.id, actors["outsider"])

    result = engine.cancel(borrow.id, actors["student"])
    assert result.borrow_status == BorrowStatus.CANCELLED

    with pytest.raises(InvalidTransitionError):
        engine.cancel(borrow.id, actors["student"])

# Checkout & return

def test_checkout_marks_equipment_borrowed(engine, db_session, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.APPROVED)

    result = engine.checkout(borrow.id, actors["staff"])

    assert result.borrow_status == BorrowStatus.ACTIVE
    assert result.checkout_time is not None
    db_session.refresh(equipment)
    assert equipment.status == EquipmentStatus.BORROWED

def test_checkout_leaves_unusual_equipment_status(engine, db_session, users, actors, make_equipment, make_borrow):
    equipment = make_equipment(status=EquipmentStatus.UNDER_MAINTENANCE)
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.APPROVED)

    engine.checkout(borrow.id, actors["staff"])

    db_session.refresh(equipment)
    assert equipment.status == EquipmentStatus.UNDER_MAINTENANCE

def test_bulk_checkout(engine, users, actors, make_equipment, make_group):
    group_id, borrows = make_group(
        users["student"], [make_equipment("A"), make_equipment("B")], status=BorrowStatus.APPROVED)

    result = engine.bulk_checkout(group_id, actors["staff"])

    assert result.count == 2
    assert all(b.borrow_status == BorrowStatus.ACTIVE for b in borrows)
    assert all(b.checkout_time is not None for b in borrows)

def test_full_lifecycle_keeps_return_after_checkout(engine, db_session, users, actors, equipment):
    start = utcnow() + timedelta(hours=1)
    [borrow] = engine.submit(actors["student"], [equipment.id], start, start + timedelta(hours=4))

    engine.approve(borrow.id, actors["staff"])
    engine.checkout(borrow.id, actors["staff"])
    engine.request_return(borrow.id, actors["student"])
    returned = engine.confirm_return(borrow.id, actors["staff"], "Good", "No issues")

    assert returned.borrow_status == BorrowStatus.RETURNED
    assert returned.return_condition == "Good"
    assert returned.actual_return_time >= returned.checkout_time
    db_session.refresh(equipment)
    assert equipment.status == EquipmentStatus.AVAILABLE

    completed = engine.complete(borrow.id, actors["staff"])
    assert completed.borrow_status == BorrowStatus.COMPLETED

    for row in db_session.query(Borrow).all():
        if row.actual_return_time is not None:
            assert row.checkout_time is not None

def test_confirm_return_keeps_equipment_borrowed_while_units_are_out(engine, db_session, users, actors, make_equipment, make_borrow):
    equipment = make_equipment(status=EquipmentStatus.BORROWED, stock_count=1)
    returning = make_borrow(users["student"], equipment, status=BorrowStatus.PENDING_RETURN)
    make_borrow(users["mate"], equipment, status=BorrowStatus.ACTIVE)

    engine.confirm_return(returning.id, actors["staff"])

    db_session.refresh(equipment)
    assert equipment.status == EquipmentStatus.BORROWED

def test_confirm_return_requires_pending_return(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment, status=BorrowStatus.ACTIVE)
    with pytest.raises(InvalidTransitionError):
        engine.confirm_return(borrow.id, actors["staff"])
    assert borrow.actual_return_time is None

# Group return & reads

def test_group_return_by_mate(engine, users, actors, make_equipment, make_group):
    scope, meter = make_equipment("Scope"), make_equipment("Meter")
    group_id, borrows = make_group(users["student"], [scope, meter], mates=[users["mate"]])

    result = engine.request_group_return(group_id, actors["mate"], {
        "requestData": True, "requestedEquipmentIds": [meter.id]})

    assert result.count == 2
    by_equipment = {b.equipment_id: b for b in borrows}
    assert all(b.borrow_status == BorrowStatus.PENDING_RETURN for b in borrows)
    assert by_equipment[meter.id].data_requested is True
    assert by_equipment[scope.id].data_requested is False

    again = engine.request_group_return(group_id, actors["mate"])
    assert again.count == 0

def test_group_return_rejects_outsider(engine, users, actors, make_equipment, make_group):
    group_id, _ = make_group(users["student"], [make_equipment()])
    with pytest.raises(ForbiddenError):
        engine.request_group_return(group_id, actors["outsider"])

def test_pending_returns_lists_oldest_first(engine, users, actors, make_equipment, make_borrow):
    older = make_borrow(users["student"], make_equipment("A"), status=BorrowStatus.PENDING_RETURN)
    newer = make_borrow(users["mate"], make_equipment("B"), status=BorrowStatus.PENDING_RETURN)
    make_borrow(users["mate"], make_equipment("C"), status=BorrowStatus.ACTIVE)

    rows = engine.pending_returns(actors["staff"])

    assert [b.id for b, _ in rows] == [older.id, newer.id]
    assert [count for _, count in rows] == [0, 0]
    with pytest.raises(ForbiddenError):
        engine.pending_returns(actors["student"])

def test_get_enforces_visibility(engine, users, actors, equipment, make_borrow):
    borrow = make_borrow(users["student"], equipment)
    assert engine.get(borrow.id, actors["student"]).id == borrow.id
    assert engine.get(borrow.id, actors["staff"]).id == borrow.id
    with pytest.raises(ForbiddenError):
        engine.get(borrow.id, actors["outsider"])
