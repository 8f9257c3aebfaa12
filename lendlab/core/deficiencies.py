#!/usr/bin/env python

"""
    The deficiency ledger for LendLab.

    Incidents recorded against borrows. Any
    signed-in user may log one; only staff and faculty may change or
    remove them.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from typing import Dict, Iterable, List, Optional
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from lendlab.core.exceptions import (
    DatabaseError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from lendlab.core.permissions import can_manage
from lendlab.models.borrows import Borrow
from lendlab.models.deficiencies import Deficiency, DeficiencyStatus, DeficiencyType
from lendlab.models.users import User

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("status", "description", "resolution")


def _enum_value(enum_cls, value, label):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {label} {value!r}; expected one of {allowed}.")


class DeficiencyLedger:
    """Append-mostly record of incidents raised against borrows."""

    def __init__(self, session):
        self.session = session

    def _commit(self, action: str):
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise DatabaseError(f"Failed to {action}.") from e

    def _require_manager(self, actor, action: str):
        if not can_manage(actor):
            raise ForbiddenError(f"Only staff or faculty may {action}.")

    def _get(self, deficiency_id: str) -> Deficiency:
        if deficiency := self.session.get(Deficiency, deficiency_id):
            return deficiency
        raise NotFoundError(f"Deficiency {deficiency_id} not found.")

    def log(self, actor, borrow_id: str, type, description: Optional[str] = None,
            user_id: Optional[str] = None, fic_to_notify_id: Optional[str] = None) -> Deficiency:
        """Records an incident against a borrow in any status.

        Any signed-in user may log one. The responsible user defaults to
        the borrower.
        """
        deficiency_type = _enum_value(DeficiencyType, type, "deficiency type")
        borrow = self.session.get(Borrow, borrow_id)
        if not borrow:
            raise NotFoundError(f"Borrow {borrow_id} not found.")
        for label, ref in (("user", user_id), ("faculty to notify", fic_to_notify_id)):
            if ref and not self.session.get(User, ref):
                raise NotFoundError(f"The {label} {ref} was not found.")

        deficiency = Deficiency(
            type=deficiency_type,
            status=DeficiencyStatus.OPEN,
            description=description,
            borrow_id=borrow.id,
            user_id=user_id or borrow.borrower_id,
            tagged_by_id=actor.user_id,
            fic_to_notify_id=fic_to_notify_id,
        )
        self.session.add(deficiency)
        self._commit(f"log deficiency on {borrow_id}")
        logger.info(f"{deficiency_type.value} deficiency logged on borrow {borrow_id} by {actor.user_id}")
        return deficiency

    def update(self, deficiency_id: str, actor, changes: Dict) -> Deficiency:
        """Applies only the fields present in `changes`. Any status may follow any other."""
        self._require_manager(actor, "update deficiencies")
        if unknown := set(changes) - set(UPDATABLE_FIELDS):
            raise ValidationError(f"Cannot update {', '.join(sorted(unknown))}.")
        deficiency = self._get(deficiency_id)
        if "status" in changes:
            if changes["status"] is None:
                raise ValidationError("status cannot be null.")
            deficiency.status = _enum_value(DeficiencyStatus, changes["status"], "status")
        if "description" in changes:
            deficiency.description = changes["description"]
        if "resolution" in changes:
            deficiency.resolution = changes["resolution"]
        self._commit(f"update deficiency {deficiency_id}")
        return deficiency

    def delete(self, deficiency_id: str, actor):
        self._require_manager(actor, "delete deficiencies")
        deficiency = self._get(deficiency_id)
        self.session.delete(deficiency)
        self._commit(f"delete deficiency {deficiency_id}")
        logger.info(f"Deficiency {deficiency_id} deleted by {actor.user_id}")

    def list(self, actor, status=None) -> List[Deficiency]:
        query = self.session.query(Deficiency)
        if not actor.is_privileged:
            query = query.filter(Deficiency.user_id == actor.user_id)
        if status is not None:
            query = query.filter(Deficiency.status == _enum_value(DeficiencyStatus, status, "status"))
        return query.order_by(Deficiency.created_at.desc(), Deficiency.id).all()

    def open_count(self, borrow_id: str) -> int:
        return self.session.query(func.count(Deficiency.id)).filter(
            Deficiency.borrow_id == borrow_id,
            Deficiency.status != DeficiencyStatus.RESOLVED,
        ).scalar()

    def open_counts(self, borrow_ids: Iterable[str]) -> Dict[str, int]:
        borrow_ids = list(borrow_ids)
        if not borrow_ids:
            return {}
        rows = self.session.query(Deficiency.borrow_id, func.count(Deficiency.id)).filter(
            Deficiency.borrow_id.in_(borrow_ids),
            Deficiency.status != DeficiencyStatus.RESOLVED,
        ).group_by(Deficiency.borrow_id).all()
        counts = dict(rows)
        return {borrow_id: counts.get(borrow_id, 0) for borrow_id in borrow_ids}
