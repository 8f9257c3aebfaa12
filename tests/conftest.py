import os

os.environ["TESTING"] = "true"

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from lendlab.core.auth import Actor
from lendlab.core.db import Database
from lendlab.core.s3 import LendLabS3
from lendlab.core.utils import new_id, utcnow
from lendlab.models import (
    Borrow,
    BorrowGroupMate,
    BorrowStatus,
    Equipment,
    EquipmentStatus,
    Role,
    User,
)


@pytest.fixture
def db():
    database = Database("sqlite:///:memory:", echo=False).init()
    try:
        yield database
    finally:
        database.drop()
        database.dispose()

@pytest.fixture
def db_session(db):
    session = db.Session()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def users(db_session):
    people = {
        "student": User(name="Bea Student", email="bea@lab.edu", role=Role.REGULAR),
        "mate": User(name="Ari Mate", email="ari@lab.edu", role=Role.REGULAR),
        "outsider": User(name="Oz Outsider", email="oz@lab.edu", role=Role.REGULAR),
        "staff": User(name="Sam Staff", email="sam@lab.edu", role=Role.STAFF),
        "faculty": User(name="Fay Faculty", email="fay@lab.edu", role=Role.FACULTY),
    }
    db_session.add_all(people.values())
    db_session.commit()
    return people

@pytest.fixture
def actors(users):
    return {key: Actor(user_id=user.id, role=user.role) for key, user in users.items()}

@pytest.fixture
def make_equipment(db_session):
    def factory(name="Oscilloscope", status=EquipmentStatus.AVAILABLE, stock_count=1, **kwargs):
        equipment = Equipment(
            name=name,
            equipment_code=kwargs.pop("equipment_code", f"EQ-{new_id()[:6]}"),
            status=status,
            stock_count=stock_count,
            maintenance_log=kwargs.pop("maintenance_log", []),
            custom_notes_log=[],
            **kwargs,
        )
        db_session.add(equipment)
        db_session.commit()
        return equipment
    return factory

@pytest.fixture
def equipment(make_equipment):
    return make_equipment()

@pytest.fixture
def make_borrow(db_session):
    """Creates a borrow directly in the given status, bypassing the engine."""
    def factory(borrower, equipment, status=BorrowStatus.PENDING, **kwargs):
        now = utcnow()
        fields = {
            "requested_start_time": now + timedelta(hours=1),
            "requested_end_time": now + timedelta(hours=3),
            "request_submission_time": now,
        }
        if status not in (BorrowStatus.PENDING, BorrowStatus.REJECTED_FIC,
                          BorrowStatus.REJECTED_STAFF, BorrowStatus.CANCELLED):
            fields["approved_start_time"] = fields["requested_start_time"]
            fields["approved_end_time"] = fields["requested_end_time"]
        if status in (BorrowStatus.ACTIVE, BorrowStatus.OVERDUE, BorrowStatus.PENDING_RETURN,
                      BorrowStatus.RETURNED, BorrowStatus.COMPLETED):
            fields["checkout_time"] = now
        if status in (BorrowStatus.RETURNED, BorrowStatus.COMPLETED):
            fields["actual_return_time"] = now + timedelta(hours=2)
        fields.update(kwargs)
        borrow = Borrow(
            borrower_id=borrower.id,
            equipment_id=equipment.id,
            borrow_status=status,
            data_files=fields.pop("data_files", []),
            requested_equipment_ids=fields.pop("requested_equipment_ids", []),
            **fields,
        )
        db_session.add(borrow)
        db_session.commit()
        return borrow
    return factory

@pytest.fixture
def make_group(db_session, make_borrow):
    def factory(owner, equipment_list, mates=(), status=BorrowStatus.ACTIVE, **kwargs):
        group_id = new_id()
        borrows = [
            make_borrow(owner, e, status=status, borrow_group_id=group_id, **kwargs)
            for e in equipment_list
        ]
        for user in [owner, *mates]:
            db_session.add(BorrowGroupMate(borrow_group_id=group_id, user_id=user.id))
        db_session.commit()
        return group_id, borrows
    return factory

@pytest.fixture
def s3_client():
    return MagicMock()

@pytest.fixture
def storage(s3_client):
    return LendLabS3(client=s3_client, bucket="data-requests")
