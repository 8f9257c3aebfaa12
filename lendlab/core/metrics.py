#!/usr/bin/env python

"""
    Reliability and usage reports for LendLab.

    Everything here is read-only. Hours are fractional and rounded to one
    decimal place for presentation; means are computed before rounding.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from collections import OrderedDict
from datetime import datetime, time, timedelta
from typing import List, Optional
from sqlalchemy import func
from lendlab.core.exceptions import ValidationError
from lendlab.core.utils import hours_between, parse_datetime, round1, utcnow
from lendlab.models.borrows import Borrow, BorrowStatus
from lendlab.models.deficiencies import Deficiency, DeficiencyType
from lendlab.models.equipment import Equipment, EquipmentStatus, RETIRED_STATUSES
from lendlab.models.users import User

logger = logging.getLogger(__name__)

S = BorrowStatus

UTILIZATION_STATUSES = (S.COMPLETED, S.RETURNED, S.OVERDUE)
FINISHED_STATUSES = (S.COMPLETED, S.RETURNED)
# Requests that never turned into a borrow don't count toward popularity
NOT_BORROWED_STATUSES = (S.PENDING, S.REJECTED_FIC, S.REJECTED_STAFF, S.CANCELLED)

MAINTENANCE_ONGOING = "Ongoing"
MAINTENANCE_COMPLETED = "Completed"


def _range_bound(value, label) -> Optional[datetime]:
    if value is None or value == "":
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValidationError(f"Invalid {label}: {value!r}")
    return parsed

def _maintenance_entries(maintenance_log):
    """Yields (entry, start, end) for entries with a readable start.

    `end` is None for open entries and for ends that are unreadable or
    precede the start.
    """
    for entry in maintenance_log or []:
        if not isinstance(entry, dict):
            continue
        start = parse_datetime(entry.get("startDate"))
        if start is None:
            continue
        end = parse_datetime(entry.get("endDate"))
        if end is not None and end < start:
            end = None
        yield entry, start, end

def repair_durations(maintenance_log) -> List[float]:
    """Hours of each completed repair; malformed or open entries are skipped."""
    return [hours_between(start, end)
            for _, start, end in _maintenance_entries(maintenance_log) if end is not None]


class ReliabilityMetrics:

    def __init__(self, session):
        self.session = session

    def _finished_borrows(self, statuses, start=None, end=None):
        query = self.session.query(Borrow).filter(
            Borrow.borrow_status.in_(statuses),
            Borrow.checkout_time.isnot(None),
            Borrow.actual_return_time.isnot(None),
        )
        if start is not None:
            query = query.filter(Borrow.checkout_time >= start)
        if end is not None:
            query = query.filter(Borrow.actual_return_time <= end)
        return query

    @staticmethod
    def _contact_hours(borrow) -> float:
        if borrow.actual_return_time < borrow.checkout_time:
            logger.warning(f"Borrow {borrow.id} returned before checkout; ignoring its hours")
            return 0.0
        return hours_between(borrow.checkout_time, borrow.actual_return_time)

    def mtbf(self) -> List[dict]:
        """Mean time between MISHANDLING incidents, per responsible user.

        A user needs at least two incidents for an interval to exist;
        otherwise their mtbf is None.
        """
        rows = self.session.query(Deficiency).filter(
            Deficiency.type == DeficiencyType.MISHANDLING
        ).order_by(Deficiency.created_at, Deficiency.id).all()

        incidents = OrderedDict()
        for deficiency in rows:
            incidents.setdefault(deficiency.user_id, []).append(deficiency.created_at)

        names = dict(self.session.query(User.id, User.name).filter(
            User.id.in_(list(incidents))).all()) if incidents else {}
        report = []
        for user_id, times in incidents.items():
            mtbf = None
            if len(times) >= 2:
                mtbf = hours_between(times[0], times[-1]) / (len(times) - 1)
            report.append({
                "user_id": user_id,
                "user_name": names.get(user_id),
                "incident_count": len(times),
                "mtbf_hours": round1(mtbf),
            })
        return report

    def mttr(self) -> List[dict]:
        """Mean time to repair per equipment, from its maintenance log."""
        report = []
        for equipment in self.session.query(Equipment).order_by(Equipment.name, Equipment.id):
            durations = repair_durations(equipment.maintenance_log)
            total = sum(durations)
            report.append({
                "equipment_id": equipment.id,
                "equipment_name": equipment.name,
                "equipment_code": equipment.equipment_code,
                "repair_count": len(durations),
                "mttr_hours": round1(total / len(durations)) if durations else None,
                "total_maintenance_hours": round1(total),
            })
        return report

    def maintenance_activity(self, equipment_id=None, start_date=None, end_date=None) -> List[dict]:
        """Every maintenance entry, newest first.

        Entries are filtered on their start. An entry without a valid end
        is Ongoing and has no duration.
        """
        start = _range_bound(start_date, "startDate")
        end = _range_bound(end_date, "endDate")
        if start and end and end < start:
            raise ValidationError("endDate must not be before startDate.")

        query = self.session.query(Equipment)
        if equipment_id:
            query = query.filter(Equipment.id == equipment_id)
        activity = []
        for equipment in query.order_by(Equipment.name, Equipment.id):
            for entry, began, ended in _maintenance_entries(equipment.maintenance_log):
                if (start and began < start) or (end and began > end):
                    continue
                activity.append({
                    "equipment_id": equipment.id,
                    "equipment_name": equipment.name,
                    "equipment_code": equipment.equipment_code,
                    "maintenance_start_date": began,
                    "maintenance_end_date": ended,
                    "maintenance_notes": entry.get("notes"),
                    "duration_hours": round1(hours_between(began, ended)) if ended else None,
                    "status": MAINTENANCE_COMPLETED if ended else MAINTENANCE_ONGOING,
                })
        return sorted(activity, key=lambda row: row["maintenance_start_date"], reverse=True)

    def utilization_ranking(self, start_date=None, end_date=None) -> List[dict]:
        """Contact hours per active equipment, busiest first.

        A borrow counts only when it was checked out on or after
        `start_date` and returned on or before `end_date`; a borrow that
        straddles a bound is left out entirely.
        """
        start = _range_bound(start_date, "startDate")
        end = _range_bound(end_date, "endDate")
        if start and end and end < start:
            raise ValidationError("endDate must not be before startDate.")

        equipment = self.session.query(Equipment).filter(
            Equipment.status.notin_(RETIRED_STATUSES)
        ).order_by(Equipment.name, Equipment.id).all()
        hours = {e.id: 0.0 for e in equipment}
        counts = {e.id: 0 for e in equipment}
        for borrow in self._finished_borrows(UTILIZATION_STATUSES, start, end).filter(
                Borrow.equipment_id.in_(list(hours))):
            hours[borrow.equipment_id] += self._contact_hours(borrow)
            counts[borrow.equipment_id] += 1

        ranking = [{
            "equipment_id": e.id,
            "name": e.name,
            "equipment_code": e.equipment_code,
            "borrow_count": counts[e.id],
            "total_contact_hours": round1(hours[e.id]),
        } for e in equipment]
        # sorted() is stable, so ties keep enumeration order
        return sorted(ranking, key=lambda row: hours[row["equipment_id"]], reverse=True)

    def weekly_usage(self, now: Optional[datetime] = None) -> List[dict]:
        """Contact hours for each of the last seven days, oldest first."""
        today = (now or utcnow()).date()
        days = [today - timedelta(days=offset) for offset in range(6, -1, -1)]
        window_start = datetime.combine(days[0], time.min)
        window_end = datetime.combine(today + timedelta(days=1), time.min)

        buckets = OrderedDict((day, 0.0) for day in days)
        for borrow in self._finished_borrows(FINISHED_STATUSES).filter(
                Borrow.actual_return_time >= window_start,
                Borrow.actual_return_time < window_end):
            day = borrow.actual_return_time.date()
            if day in buckets:
                buckets[day] += self._contact_hours(borrow)
        return [
            {"day": day.strftime("%a"), "date": day.isoformat(), "hours": round1(total)}
            for day, total in buckets.items()
        ]

    def equipment_status_counts(self) -> List[dict]:
        counts = dict(self.session.query(Equipment.status, func.count(Equipment.id)).group_by(
            Equipment.status).all())
        return [{"name": status.value, "value": counts.get(status, 0)} for status in EquipmentStatus]

    def dashboard_stats(self) -> dict:
        counts = dict(self.session.query(Equipment.status, func.count(Equipment.id)).group_by(
            Equipment.status).all())
        total = sum(counts.values())
        operational = total - counts.get(EquipmentStatus.OUT_OF_COMMISSION, 0)
        borrowed = counts.get(EquipmentStatus.BORROWED, 0)
        available = counts.get(EquipmentStatus.AVAILABLE, 0)

        def rate(part):
            return round1(part / operational * 100) if operational else 0.0

        contact_hours = sum(
            self._contact_hours(b) for b in self._finished_borrows(FINISHED_STATUSES))

        most_borrowed = None
        top = self.session.query(
            Borrow.equipment_id, func.count(Borrow.id).label("borrow_count")
        ).filter(
            Borrow.borrow_status.notin_(NOT_BORROWED_STATUSES)
        ).group_by(Borrow.equipment_id).order_by(
            func.count(Borrow.id).desc(), Borrow.equipment_id
        ).first()
        if top:
            equipment = self.session.get(Equipment, top.equipment_id)
            most_borrowed = {
                "equipment_id": top.equipment_id,
                "name": equipment.name if equipment else None,
                "borrow_count": top.borrow_count,
            }

        return {
            "total_equipment": total,
            "operational_equipment": operational,
            "borrowed_equipment": borrowed,
            "available_equipment": available,
            "usage_rate": rate(borrowed),
            "availability_rate": rate(available),
            "contact_hours": round1(contact_hours),
            "most_borrowed": most_borrowed,
        }
