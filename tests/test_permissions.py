#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_permissions
    ~~~~~~~~~~~~~~~~~~~~~~

    The pure capability checks, exercised without a database.
"""

from types import SimpleNamespace

import pytest

from lendlab.core.auth import Actor
from lendlab.core.permissions import (
    ALLOWED_TRANSITIONS,
    can_request_group_return,
    can_transition,
    can_view_group,
    is_valid_transition,
    rejection_status_for,
)
from lendlab.models import BorrowStatus as S, Role

OWNER = Actor(user_id="owner", role=Role.REGULAR)
OTHER = Actor(user_id="other", role=Role.REGULAR)
STAFF = Actor(user_id="staff", role=Role.STAFF)
FACULTY = Actor(user_id="faculty", role=Role.FACULTY)
BORROW = SimpleNamespace(borrower_id="owner", borrow_group_id="g1")


@pytest.mark.parametrize("source,target", [
    (S.PENDING, S.APPROVED),
    (S.PENDING, S.CANCELLED),
    (S.APPROVED, S.ACTIVE),
    (S.APPROVED, S.REJECTED_FIC),
    (S.ACTIVE, S.PENDING_RETURN),
    (S.OVERDUE, S.PENDING_RETURN),
    (S.PENDING_RETURN, S.RETURNED),
    (S.RETURNED, S.COMPLETED),
])
def test_valid_edges(source, target):
    assert is_valid_transition(source, target)

@pytest.mark.parametrize("source,target", [
    (S.PENDING, S.ACTIVE),
    (S.REJECTED_STAFF, S.PENDING_RETURN),
    (S.COMPLETED, S.RETURNED),
    (S.PENDING_RETURN, S.PENDING_RETURN),
    (S.CANCELLED, S.APPROVED),
])
def test_invalid_edges(source, target):
    assert not is_valid_transition(source, target)

def test_terminal_states_have_no_exits():
    for status in (S.REJECTED_FIC, S.REJECTED_STAFF, S.CANCELLED, S.COMPLETED):
        assert ALLOWED_TRANSITIONS[status] == set()

def test_every_status_is_in_the_graph():
    assert set(ALLOWED_TRANSITIONS) == set(S)

def test_can_transition_by_role():
    assert can_transition(OWNER, BORROW, S.PENDING_RETURN)
    assert not can_transition(STAFF, BORROW, S.PENDING_RETURN)
    assert not can_transition(OTHER, BORROW, S.CANCELLED)
    assert can_transition(OWNER, BORROW, S.CANCELLED)
    assert can_transition(STAFF, BORROW, S.CANCELLED)
    for target in (S.APPROVED, S.ACTIVE, S.RETURNED, S.COMPLETED, S.REJECTED_FIC):
        assert can_transition(FACULTY, BORROW, target)
        assert not can_transition(OWNER, BORROW, target)
    assert not can_transition(STAFF, BORROW, S.PENDING)

def test_rejection_status_for():
    assert rejection_status_for(FACULTY) == S.REJECTED_FIC
    assert rejection_status_for(STAFF) == S.REJECTED_STAFF

def test_can_view_group():
    borrows = [BORROW]
    assert can_view_group(OWNER, borrows, [])
    assert can_view_group(OTHER, borrows, ["other"])
    assert can_view_group(STAFF, borrows, [])
    assert not can_view_group(OTHER, borrows, ["someone"])

def test_group_return_ignores_role():
    assert can_request_group_return(OTHER, [BORROW], ["other"])
    assert not can_request_group_return(STAFF, [BORROW], [])
