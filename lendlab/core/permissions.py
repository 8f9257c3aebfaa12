#!/usr/bin/env python

"""
    Capability checks for LendLab.

    Every function here is pure: it looks only at the actor and the
    records handed in, never at the database, so the engines can ask
    the same questions in one place.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from typing import Iterable
from lendlab.models.borrows import BorrowStatus
from lendlab.models.users import Role

S = BorrowStatus

ALLOWED_TRANSITIONS = {
    S.PENDING: {S.APPROVED, S.REJECTED_FIC, S.REJECTED_STAFF, S.CANCELLED},
    S.APPROVED: {S.ACTIVE, S.REJECTED_FIC, S.REJECTED_STAFF, S.CANCELLED},
    S.ACTIVE: {S.PENDING_RETURN, S.OVERDUE},
    S.OVERDUE: {S.PENDING_RETURN},
    S.PENDING_RETURN: {S.RETURNED},
    S.RETURNED: {S.COMPLETED},
    S.REJECTED_FIC: set(),
    S.REJECTED_STAFF: set(),
    S.CANCELLED: set(),
    S.COMPLETED: set(),
}

# Targets only staff or faculty may drive a borrow into
PRIVILEGED_TARGETS = {
    S.APPROVED, S.REJECTED_FIC, S.REJECTED_STAFF, S.ACTIVE,
    S.OVERDUE, S.RETURNED, S.COMPLETED,
}


def is_valid_transition(source: BorrowStatus, target: BorrowStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(source, set())

def rejection_status_for(actor) -> BorrowStatus:
    """Faculty rejections are recorded as REJECTED_FIC, everyone else as staff."""
    if actor.role == Role.FACULTY:
        return S.REJECTED_FIC
    return S.REJECTED_STAFF

def can_transition(actor, borrow, target: BorrowStatus) -> bool:
    """Whether `actor` is allowed to move `borrow` into `target`.

    This is the who-may question only; whether the edge exists from the
    borrow's current status is `is_valid_transition`.
    """
    is_owner = actor.user_id == borrow.borrower_id
    if target in PRIVILEGED_TARGETS:
        return actor.is_privileged
    if target == S.CANCELLED:
        return is_owner or actor.is_privileged
    if target == S.PENDING_RETURN:
        return is_owner
    return False

def can_view_group(actor, borrows: Iterable, mate_ids: Iterable[str]) -> bool:
    if actor.is_privileged:
        return True
    if any(b.borrower_id == actor.user_id for b in borrows):
        return True
    return actor.user_id in set(mate_ids)

def can_request_group_return(actor, borrows: Iterable, mate_ids: Iterable[str]) -> bool:
    """Borrow owners and group mates may hand a group back; roles do not matter."""
    if any(b.borrower_id == actor.user_id for b in borrows):
        return True
    return actor.user_id in set(mate_ids)

def can_view_borrow(actor, borrow, mate_ids: Iterable[str] = ()) -> bool:
    if actor.is_privileged or borrow.borrower_id == actor.user_id:
        return True
    return borrow.borrow_group_id is not None and actor.user_id in set(mate_ids)

def can_manage(actor) -> bool:
    """Staff and faculty manage approvals, data requests, deficiencies and reports."""
    return actor.is_privileged
