#!/usr/bin/env python

"""
    Borrow groups for LendLab.

    A group is the set of borrows submitted together under one borrow
    group id, plus the mates recorded for it. Reads here are gated by
    can_view_group.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from dataclasses import dataclass
from typing import List
from sqlalchemy import or_
from lendlab.core.exceptions import ForbiddenError, NotFoundError
from lendlab.core.permissions import can_view_group
from lendlab.models.borrows import Borrow, BorrowGroupMate
from lendlab.models.users import User

logger = logging.getLogger(__name__)


@dataclass
class GroupView:
    borrow_group_id: str
    borrows: List[Borrow]
    participants: List[User]


class GroupCoordinator:
    """Reads across the borrows that share a borrow group id."""

    def __init__(self, session):
        self.session = session

    def fetch_group(self, group_id: str, actor) -> GroupView:
        borrows = self.session.query(Borrow).filter(
            Borrow.borrow_group_id == group_id
        ).order_by(Borrow.request_submission_time, Borrow.id).all()
        if not borrows:
            raise NotFoundError(f"Borrow group {group_id} not found.")

        mates = self.session.query(BorrowGroupMate).join(
            User, BorrowGroupMate.user_id == User.id
        ).filter(
            BorrowGroupMate.borrow_group_id == group_id
        ).order_by(User.name, User.id).all()
        if not can_view_group(actor, borrows, [m.user_id for m in mates]):
            logger.warning(f"User {actor.user_id} denied access to group {group_id}")
            raise ForbiddenError(f"Not allowed to view group {group_id}.")

        participants, seen = [], set()
        for mate in mates:
            if mate.user_id not in seen:
                seen.add(mate.user_id)
                participants.append(mate.user)
        return GroupView(borrow_group_id=group_id, borrows=borrows, participants=participants)

    def member_emails(self, group_id: str, actor) -> List[str]:
        view = self.fetch_group(group_id, actor)
        return list(dict.fromkeys(u.email for u in view.participants if u.email))

    def list_groups(self, actor) -> List[dict]:
        """Groups visible to the actor, newest first."""
        query = self.session.query(Borrow).filter(Borrow.borrow_group_id.isnot(None))
        if not actor.is_privileged:
            mate_groups = self.session.query(BorrowGroupMate.borrow_group_id).filter(
                BorrowGroupMate.user_id == actor.user_id)
            query = query.filter(or_(
                Borrow.borrower_id == actor.user_id,
                Borrow.borrow_group_id.in_(mate_groups),
            ))
        groups = {}
        for borrow in query.order_by(Borrow.request_submission_time, Borrow.id):
            group = groups.setdefault(borrow.borrow_group_id, {
                "borrow_group_id": borrow.borrow_group_id,
                "borrow_count": 0,
                "statuses": [],
                "request_submission_time": borrow.request_submission_time,
            })
            group["borrow_count"] += 1
            if borrow.effective_status not in group["statuses"]:
                group["statuses"].append(borrow.effective_status)
        return sorted(groups.values(), key=lambda g: g["request_submission_time"], reverse=True)
