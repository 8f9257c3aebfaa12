#!/usr/bin/env python

"""
    Equipment registry for LendLab.

    Registration, the maintenance and notes logs, and the booking
    calendar that shows which days every unit is already held.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from lendlab.core.exceptions import DatabaseError, ForbiddenError, NotFoundError, ValidationError
from lendlab.core.permissions import can_manage
from lendlab.core.utils import parse_datetime, utcnow
from lendlab.models.borrows import Borrow, HOLDING_STATUSES
from lendlab.models.equipment import Equipment, EquipmentStatus

logger = logging.getLogger(__name__)

BOOKING_HORIZON_DAYS = 90


class EquipmentRegistry:

    def __init__(self, session):
        self.session = session

    def _commit(self, action: str):
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise ValidationError(f"Could not {action}: duplicate equipment code.") from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise DatabaseError(f"Failed to {action}.") from e

    def _get(self, equipment_id: str) -> Equipment:
        if equipment := self.session.get(Equipment, equipment_id):
            return equipment
        raise NotFoundError(f"Equipment {equipment_id} not found.")

    def list(self, include_retired: bool = True) -> List[Equipment]:
        query = self.session.query(Equipment)
        if not include_retired:
            query = query.filter(Equipment.status.notin_(
                (EquipmentStatus.ARCHIVED, EquipmentStatus.OUT_OF_COMMISSION)))
        return query.order_by(Equipment.name, Equipment.id).all()

    def register(self, actor, name: str, equipment_code: Optional[str] = None,
                 stock_count: int = 1, status=EquipmentStatus.AVAILABLE) -> Equipment:
        if not can_manage(actor):
            raise ForbiddenError("Only staff or faculty may register equipment.")
        if not name or not name.strip():
            raise ValidationError("Equipment needs a name.")
        if stock_count < 1:
            raise ValidationError("stockCount must be at least 1.")
        try:
            status = EquipmentStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid equipment status {status!r}.")
        equipment = Equipment(
            name=name.strip(),
            equipment_code=equipment_code,
            stock_count=stock_count,
            status=status,
            maintenance_log=[],
            custom_notes_log=[],
        )
        self.session.add(equipment)
        self._commit(f"register equipment {name}")
        logger.info(f"Registered equipment {equipment.id} ({equipment.name})")
        return equipment

    def log_maintenance(self, equipment_id: str, actor, start_date, end_date=None,
                        notes: Optional[str] = None) -> Equipment:
        """Appends a maintenance interval; an entry without an end is still open."""
        if not can_manage(actor):
            raise ForbiddenError("Only staff or faculty may log maintenance.")
        start = parse_datetime(start_date)
        end = parse_datetime(end_date) if end_date else None
        if start is None:
            raise ValidationError(f"Invalid startDate: {start_date!r}")
        if end_date and (end is None or end < start):
            raise ValidationError(f"Invalid endDate: {end_date!r}")
        equipment = self._get(equipment_id)
        entry = {
            "startDate": start.isoformat(),
            "endDate": end.isoformat() if end else None,
            "notes": notes,
        }
        equipment.maintenance_log = list(equipment.maintenance_log or []) + [entry]
        self._commit(f"log maintenance for {equipment_id}")
        return equipment

    def add_note(self, equipment_id: str, actor, text: str) -> Equipment:
        if not can_manage(actor):
            raise ForbiddenError("Only staff or faculty may annotate equipment.")
        if not text or not text.strip():
            raise ValidationError("A note needs text.")
        equipment = self._get(equipment_id)
        note = {"text": text.strip(), "addedBy": actor.user_id, "addedAt": utcnow().isoformat()}
        equipment.custom_notes_log = list(equipment.custom_notes_log or []) + [note]
        self._commit(f"annotate equipment {equipment_id}")
        return equipment

    def bookings(self, equipment_id: str, today: Optional[date] = None) -> List[date]:
        """Days, from today over the booking horizon, on which every unit
        is already held by an approved or checked out borrow.

        A hold covers each calendar day from its start to its end
        inclusive; the approved window is used where one exists.
        """
        equipment = self._get(equipment_id)
        first = today or utcnow().date()
        last = first + timedelta(days=BOOKING_HORIZON_DAYS)
        starts = func.coalesce(Borrow.approved_start_time, Borrow.requested_start_time)
        ends = func.coalesce(Borrow.approved_end_time, Borrow.requested_end_time)
        holds = self.session.query(starts, ends).filter(
            Borrow.equipment_id == equipment.id,
            Borrow.borrow_status.in_(HOLDING_STATUSES),
            starts < datetime.combine(last + timedelta(days=1), datetime.min.time()),
            ends >= datetime.combine(first, datetime.min.time()),
        ).all()

        stock = equipment.stock_count or 1
        days = (first + timedelta(days=offset) for offset in range(BOOKING_HORIZON_DAYS + 1))
        return [
            day for day in days
            if sum(1 for start, end in holds if start.date() <= day <= end.date()) >= stock
        ]
