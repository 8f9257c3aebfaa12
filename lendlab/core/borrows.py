#!/usr/bin/env python

"""
    Borrow state transitions for LendLab.

    BorrowEngine owns every change to a Borrow's status, single and bulk,
    along with the equipment status changes they imply and the data
    request artifacts attached at return time. Each public method is one
    transaction: validation and authorization run first, then the changes
    are committed together or rolled back together.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from lendlab.core.deficiencies import DeficiencyLedger
from lendlab.core.exceptions import (
    DatabaseError,
    ForbiddenError,
    InternalError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from lendlab.core.permissions import (
    can_manage,
    can_request_group_return,
    can_transition,
    can_view_borrow,
    is_valid_transition,
    rejection_status_for,
)
from lendlab.core.utils import ID_PATTERN, new_id, to_naive_utc, utcnow
from lendlab.models.borrows import (
    Borrow,
    BorrowGroupMate,
    BorrowStatus,
    CHECKED_OUT_STATUSES,
    HOLDING_STATUSES,
)
from lendlab.models.equipment import Equipment, EquipmentStatus
from lendlab.models.users import User
from lendlab.schemas.borrow import ReturnRequest

logger = logging.getLogger(__name__)

S = BorrowStatus

DATA_REQUEST_PENDING = "Pending"


@dataclass
class BulkResult:
    count: int
    skipped_ids: List[str] = field(default_factory=list)

    @property
    def skipped_count(self):
        return len(self.skipped_ids)


def validate_borrow_ids(borrow_ids) -> List[str]:
    """Non-empty list of lowercase alphanumeric ids, de-duplicated in order."""
    if not isinstance(borrow_ids, (list, tuple)) or not borrow_ids:
        raise ValidationError("borrowIds must be a non-empty list of ids.")
    for borrow_id in borrow_ids:
        if not isinstance(borrow_id, str) or not re.match(ID_PATTERN, borrow_id):
            raise ValidationError(f"Invalid borrow id: {borrow_id!r}")
    return list(dict.fromkeys(borrow_ids))

def coerce_return_request(payload) -> ReturnRequest:
    if isinstance(payload, ReturnRequest):
        return payload
    try:
        return ReturnRequest.model_validate(payload or {})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid return request: {e.errors()[0]['msg']}") from e


class BorrowEngine:

    def __init__(self, session, storage=None):
        self.session = session
        self.storage = storage

    # Helpers

    def _commit(self, action: str):
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise DatabaseError(f"Failed to {action}.") from e

    def _get_borrow(self, borrow_id: str, lock: bool = False) -> Borrow:
        query = self.session.query(Borrow).filter(Borrow.id == borrow_id)
        if lock:
            query = query.with_for_update()
        if borrow := query.first():
            return borrow
        raise NotFoundError(f"Borrow {borrow_id} not found.")

    def _group_borrows(self, group_id: str, statuses=None, lock: bool = False) -> List[Borrow]:
        query = self.session.query(Borrow).filter(Borrow.borrow_group_id == group_id)
        if statuses:
            query = query.filter(Borrow.borrow_status.in_(statuses))
        if lock:
            query = query.with_for_update()
        return query.order_by(Borrow.request_submission_time, Borrow.id).all()

    def _require_group(self, group_id: str):
        exists = self.session.query(Borrow.id).filter(
            Borrow.borrow_group_id == group_id).first()
        if not exists:
            raise NotFoundError(f"Borrow group {group_id} not found.")

    def _mate_ids(self, group_id: Optional[str]) -> List[str]:
        if not group_id:
            return []
        rows = self.session.query(BorrowGroupMate.user_id).filter(
            BorrowGroupMate.borrow_group_id == group_id).all()
        return [row.user_id for row in rows]

    def _require_manager(self, actor, action: str):
        if not can_manage(actor):
            raise ForbiddenError(f"Only staff or faculty may {action}.")

    def _check_transition(self, actor, borrow: Borrow, target: BorrowStatus):
        if not can_transition(actor, borrow, target):
            raise ForbiddenError(
                f"Not allowed to move borrow {borrow.id} to {target.value}.")
        if not is_valid_transition(borrow.borrow_status, target):
            raise InvalidTransitionError(
                f"Cannot move borrow {borrow.id} from "
                f"{borrow.borrow_status.value} to {target.value}.")

    def _get_data_request(self, request_id: str) -> Borrow:
        borrow = self.session.get(Borrow, request_id)
        if not borrow or not borrow.data_requested:
            raise NotFoundError(f"Data request {request_id} not found.")
        return borrow

    def _require_storage(self):
        if self.storage is None:
            raise InternalError("File storage is not configured.")
        return self.storage

    @staticmethod
    def _clear_approval(borrow: Borrow):
        borrow.approved_start_time = None
        borrow.approved_end_time = None
        borrow.approved_by_id = None
        borrow.accepted_at = None

    def _release_equipment(self, equipment_ids):
        """Returns RESERVED equipment to AVAILABLE once no approved borrow holds it."""
        self.session.flush()
        for equipment in self.session.query(Equipment).filter(
                Equipment.id.in_(set(equipment_ids))).all():
            if equipment.status != EquipmentStatus.RESERVED:
                continue
            holds = self.session.query(func.count(Borrow.id)).filter(
                Borrow.equipment_id == equipment.id,
                Borrow.borrow_status == S.APPROVED).scalar()
            if not holds:
                equipment.status = EquipmentStatus.AVAILABLE

    @staticmethod
    def _mark_borrowed(equipment: Equipment):
        if equipment.status in (EquipmentStatus.AVAILABLE, EquipmentStatus.RESERVED):
            equipment.status = EquipmentStatus.BORROWED
        elif equipment.status != EquipmentStatus.BORROWED:
            logger.warning(
                f"Checked out equipment {equipment.id} while it is "
                f"{equipment.status.value}; leaving its status alone.")

    @staticmethod
    def _apply_return_request(borrow: Borrow, request: ReturnRequest):
        borrow.borrow_status = S.PENDING_RETURN
        if request.request_data:
            borrow.data_requested = True
            borrow.data_request_status = DATA_REQUEST_PENDING
            if request.data_request_remarks is not None:
                borrow.data_request_remarks = request.data_request_remarks
            borrow.requested_equipment_ids = list(request.requested_equipment_ids)
        else:
            borrow.data_requested = False
            borrow.data_request_status = None
            borrow.data_request_remarks = None
            borrow.requested_equipment_ids = []

    # Reads

    def get(self, borrow_id: str, actor) -> Borrow:
        borrow = self._get_borrow(borrow_id)
        if not can_view_borrow(actor, borrow, self._mate_ids(borrow.borrow_group_id)):
            raise ForbiddenError(f"Not allowed to view borrow {borrow_id}.")
        return borrow

    def list_for_borrower(self, actor) -> List[Borrow]:
        return self.session.query(Borrow).filter(
            Borrow.borrower_id == actor.user_id
        ).order_by(Borrow.request_submission_time.desc()).all()

    def pending_returns(self, actor):
        """PENDING_RETURN borrows, oldest first, paired with open deficiency counts."""
        self._require_manager(actor, "review pending returns")
        borrows = self.session.query(Borrow).filter(
            Borrow.borrow_status == S.PENDING_RETURN
        ).order_by(Borrow.request_submission_time, Borrow.id).all()
        counts = DeficiencyLedger(self.session).open_counts(b.id for b in borrows)
        return [(b, counts[b.id]) for b in borrows]

    # Submission & approval

    def submit(self, actor, equipment_ids, requested_start_time: datetime,
               requested_end_time: datetime, class_id=None, reservation_type=None,
               group_mate_ids=()) -> List[Borrow]:
        start = to_naive_utc(requested_start_time)
        end = to_naive_utc(requested_end_time)
        if start is None or end is None or end <= start:
            raise ValidationError("requestedEndTime must be after requestedStartTime.")
        equipment_ids = list(dict.fromkeys(equipment_ids or []))
        if not equipment_ids:
            raise ValidationError("At least one equipment id is required.")

        found = {e.id: e for e in self.session.query(Equipment).filter(
            Equipment.id.in_(equipment_ids)).all()}
        if missing := [eid for eid in equipment_ids if eid not in found]:
            raise NotFoundError(f"Equipment not found: {', '.join(missing)}")
        for equipment in found.values():
            if equipment.is_retired:
                raise InvalidTransitionError(
                    f"Equipment {equipment.name} is {equipment.status.value} "
                    "and cannot be reserved.")

        mate_ids = [m for m in dict.fromkeys(group_mate_ids or []) if m != actor.user_id]
        if mate_ids:
            known = {u.id for u in self.session.query(User.id).filter(User.id.in_(mate_ids))}
            if missing := [m for m in mate_ids if m not in known]:
                raise NotFoundError(f"Group mates not found: {', '.join(missing)}")

        group_id = new_id() if len(equipment_ids) > 1 or mate_ids else None
        now = utcnow()
        borrows = [
            Borrow(
                id=new_id(),
                borrower_id=actor.user_id,
                equipment_id=equipment_id,
                class_id=class_id,
                borrow_group_id=group_id,
                reservation_type=reservation_type,
                requested_start_time=start,
                requested_end_time=end,
                borrow_status=S.PENDING,
                request_submission_time=now,
            ) for equipment_id in equipment_ids
        ]
        self.session.add_all(borrows)
        if group_id:
            self.session.add_all([
                BorrowGroupMate(borrow_group_id=group_id, user_id=user_id)
                for user_id in [actor.user_id] + mate_ids
            ])
        self._commit("submit borrow request")
        logger.info(
            f"User {actor.user_id} requested {len(borrows)} item(s)"
            + (f" as group {group_id}" if group_id else ""))
        return borrows

    def approve(self, borrow_id: str, actor, approved_start_time=None,
                approved_end_time=None) -> Borrow:
        borrow = self._get_borrow(borrow_id, lock=True)
        self._check_transition(actor, borrow, S.APPROVED)
        start = to_naive_utc(approved_start_time) or borrow.requested_start_time
        end = to_naive_utc(approved_end_time) or borrow.requested_end_time
        if end <= start:
            raise ValidationError("approvedEndTime must be after approvedStartTime.")

        borrow.borrow_status = S.APPROVED
        borrow.approved_start_time = start
        borrow.approved_end_time = end
        borrow.approved_by_id = actor.user_id
        borrow.accepted_at = utcnow()
        equipment = borrow.equipment
        if equipment.status == EquipmentStatus.AVAILABLE:
            equipment.status = EquipmentStatus.RESERVED
        self.session.flush()

        # Once every unit is held for this window, competing requests lose
        holds = self.session.query(func.count(Borrow.id)).filter(
            Borrow.equipment_id == equipment.id,
            Borrow.borrow_status.in_(HOLDING_STATUSES),
            Borrow.approved_start_time < end,
            Borrow.approved_end_time > start,
        ).scalar()
        rejected = []
        if holds >= (equipment.stock_count or 1):
            rejection = rejection_status_for(actor)
            for other in self.session.query(Borrow).filter(
                    Borrow.equipment_id == equipment.id,
                    Borrow.id != borrow.id,
                    Borrow.borrow_status == S.PENDING,
                    Borrow.requested_start_time < end,
                    Borrow.requested_end_time > start).all():
                other.borrow_status = rejection
                rejected.append(other.id)
        self._commit(f"approve borrow {borrow_id}")
        logger.info(f"Borrow {borrow_id} approved by {actor.user_id}")
        if rejected:
            logger.info(f"Auto-rejected overlapping requests: {rejected}")
        return borrow

    def bulk_approve(self, borrow_ids, actor) -> BulkResult:
        """Approves the PENDING subset of `borrow_ids` in one transaction.

        Ids that are missing or not PENDING are skipped without error. The
        UPDATE re-checks the PENDING status so a concurrent transition
        between select and update cannot be overwritten.
        """
        self._require_manager(actor, "approve requests")
        ids = validate_borrow_ids(borrow_ids)
        now = utcnow()
        try:
            pending = self.session.query(Borrow.id, Borrow.equipment_id).filter(
                Borrow.id.in_(ids),
                Borrow.borrow_status == S.PENDING,
            ).with_for_update().all()
            pending_ids = [row.id for row in pending]
            count = 0
            if pending_ids:
                count = self.session.query(Borrow).filter(
                    Borrow.id.in_(pending_ids),
                    Borrow.borrow_status == S.PENDING,
                ).update({
                    Borrow.borrow_status: S.APPROVED,
                    Borrow.approved_start_time: Borrow.requested_start_time,
                    Borrow.approved_end_time: Borrow.requested_end_time,
                    Borrow.approved_by_id: actor.user_id,
                    Borrow.accepted_at: now,
                    Borrow.updated_at: now,
                }, synchronize_session=False)
                self.session.query(Equipment).filter(
                    Equipment.id.in_({row.equipment_id for row in pending}),
                    Equipment.status == EquipmentStatus.AVAILABLE,
                ).update({Equipment.status: EquipmentStatus.RESERVED},
                         synchronize_session=False)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Bulk approve failed: {e}")
            raise DatabaseError("Failed to approve requests.") from e

        skipped = [i for i in ids if i not in set(pending_ids)]
        if skipped:
            logger.warning(f"Bulk approve skipped missing or non-pending ids: {skipped}")
        logger.info(f"Bulk approve by {actor.user_id}: {count} approved")
        return BulkResult(count=count, skipped_ids=skipped)

    def update_approved_window(self, borrow_id: str, actor,
                               approved_start_time=None, approved_end_time=None) -> Borrow:
        self._require_manager(actor, "change approved windows")
        borrow = self._get_borrow(borrow_id, lock=True)
        if borrow.borrow_status != S.APPROVED:
            raise InvalidTransitionError(
                f"Approved window can only change while APPROVED, "
                f"not {borrow.borrow_status.value}.")
        start = to_naive_utc(approved_start_time) or borrow.approved_start_time
        end = to_naive_utc(approved_end_time) or borrow.approved_end_time
        if end <= start:
            raise ValidationError("approvedEndTime must be after approvedStartTime.")
        borrow.approved_start_time = start
        borrow.approved_end_time = end
        self._commit(f"update approved window of {borrow_id}")
        return borrow

    # Rejection & cancellation

    def _close(self, borrows: List[Borrow], target: BorrowStatus):
        released = [b.equipment_id for b in borrows if b.borrow_status == S.APPROVED]
        for borrow in borrows:
            borrow.borrow_status = target
            self._clear_approval(borrow)
        if released:
            self._release_equipment(released)

    def reject(self, borrow_id: str, actor) -> Borrow:
        borrow = self._get_borrow(borrow_id, lock=True)
        target = rejection_status_for(actor)
        self._check_transition(actor, borrow, target)
        self._close([borrow], target)
        self._commit(f"reject borrow {borrow_id}")
        logger.info(f"Borrow {borrow_id} rejected ({target.value}) by {actor.user_id}")
        return borrow

    def reject_group(self, group_id: str, actor) -> BulkResult:
        self._require_manager(actor, "reject requests")
        self._require_group(group_id)
        target = rejection_status_for(actor)
        borrows = self._group_borrows(group_id, lock=True)
        rejectable = [b for b in borrows if is_valid_transition(b.borrow_status, target)]
        self._close(rejectable, target)
        self._commit(f"reject group {group_id}")
        skipped = [b.id for b in borrows if b not in rejectable]
        logger.info(f"Group {group_id}: {len(rejectable)} rejected ({target.value}) by {actor.user_id}")
        return BulkResult(count=len(rejectable), skipped_ids=skipped)

    def cancel(self, borrow_id: str, actor) -> Borrow:
        borrow = self._get_borrow(borrow_id, lock=True)
        self._check_transition(actor, borrow, S.CANCELLED)
        self._close([borrow], S.CANCELLED)
        self._commit(f"cancel borrow {borrow_id}")
        logger.info(f"Borrow {borrow_id} cancelled by {actor.user_id}")
        return borrow

    # Checkout

    def checkout(self, borrow_id: str, actor) -> Borrow:
        borrow = self._get_borrow(borrow_id, lock=True)
        self._check_transition(actor, borrow, S.ACTIVE)
        borrow.borrow_status = S.ACTIVE
        borrow.checkout_time = utcnow()
        self._mark_borrowed(borrow.equipment)
        self._commit(f"check out borrow {borrow_id}")
        logger.info(f"Borrow {borrow_id} checked out by {actor.user_id}")
        return borrow

    def bulk_checkout(self, group_id: str, actor) -> BulkResult:
        self._require_manager(actor, "check out equipment")
        self._require_group(group_id)
        borrows = self._group_borrows(group_id, lock=True)
        now = utcnow()
        ready = [b for b in borrows if b.borrow_status == S.APPROVED]
        for borrow in ready:
            borrow.borrow_status = S.ACTIVE
            borrow.checkout_time = now
            self._mark_borrowed(borrow.equipment)
        self._commit(f"check out group {group_id}")
        logger.info(f"Group {group_id}: {len(ready)} checked out by {actor.user_id}")
        return BulkResult(count=len(ready), skipped_ids=[b.id for b in borrows if b not in ready])

    # Returns

    def request_return(self, borrow_id: str, actor, payload=None) -> Borrow:
        """Hands an ACTIVE or OVERDUE borrow back, optionally asking for data.

        Repeating the request on a borrow already PENDING_RETURN returns it
        unchanged.
        """
        request = coerce_return_request(payload)
        borrow = self._get_borrow(borrow_id)
        if not can_transition(actor, borrow, S.PENDING_RETURN):
            raise ForbiddenError(f"Only the borrower may request a return for {borrow_id}.")
        if borrow.borrow_status == S.PENDING_RETURN:
            logger.info(f"Borrow {borrow_id} already pending return; nothing to do")
            return borrow
        if not is_valid_transition(borrow.borrow_status, S.PENDING_RETURN):
            raise InvalidTransitionError(
                f"Cannot request a return for a borrow that is {borrow.borrow_status.value}.")
        self._apply_return_request(borrow, request)
        self._commit(f"request return of {borrow_id}")
        logger.info(f"Borrow {borrow_id} pending return (data requested: {request.request_data})")
        return borrow

    def request_group_return(self, group_id: str, actor, payload=None) -> BulkResult:
        request = coerce_return_request(payload)
        borrows = self._group_borrows(group_id)
        if not borrows:
            raise NotFoundError(f"Borrow group {group_id} not found.")
        if not can_request_group_return(actor, borrows, self._mate_ids(group_id)):
            raise ForbiddenError(f"Not a participant of group {group_id}.")
        returnable = [b for b in borrows if b.borrow_status in (S.ACTIVE, S.OVERDUE)]
        if not returnable:
            if any(b.borrow_status == S.PENDING_RETURN for b in borrows):
                return BulkResult(count=0, skipped_ids=[b.id for b in borrows])
            raise InvalidTransitionError(f"No active borrows in group {group_id}.")

        wanted = set(request.requested_equipment_ids)
        for borrow in returnable:
            if request.request_data and (not wanted or borrow.equipment_id in wanted):
                self._apply_return_request(borrow, request)
            else:
                self._apply_return_request(borrow, ReturnRequest())
        self._commit(f"request return of group {group_id}")
        logger.info(f"Group {group_id}: {len(returnable)} pending return")
        return BulkResult(count=len(returnable),
                          skipped_ids=[b.id for b in borrows if b not in returnable])

    def confirm_return(self, borrow_id: str, actor, return_condition=None,
                       return_remarks=None) -> Borrow:
        borrow = self._get_borrow(borrow_id, lock=True)
        self._check_transition(actor, borrow, S.RETURNED)
        if borrow.checkout_time is None:
            raise InvalidTransitionError(f"Borrow {borrow_id} was never checked out.")
        borrow.borrow_status = S.RETURNED
        borrow.actual_return_time = utcnow()
        borrow.return_condition = return_condition
        borrow.return_remarks = return_remarks
        self.session.flush()

        equipment = borrow.equipment
        if equipment.status == EquipmentStatus.BORROWED:
            still_out = self.session.query(func.count(Borrow.id)).filter(
                Borrow.equipment_id == equipment.id,
                Borrow.borrow_status.in_(CHECKED_OUT_STATUSES),
            ).scalar()
            if still_out < (equipment.stock_count or 1):
                equipment.status = EquipmentStatus.AVAILABLE
        self._commit(f"confirm return of {borrow_id}")
        logger.info(f"Borrow {borrow_id} returned, confirmed by {actor.user_id}")
        return borrow

    def complete(self, borrow_id: str, actor) -> Borrow:
        borrow = self._get_borrow(borrow_id, lock=True)
        self._check_transition(actor, borrow, S.COMPLETED)
        borrow.borrow_status = S.COMPLETED
        self._commit(f"complete borrow {borrow_id}")
        return borrow

    # Data requests

    def update_data_request_status(self, request_id: str, actor, status: str) -> Borrow:
        self._require_manager(actor, "update data requests")
        if not isinstance(status, str) or not status.strip():
            raise ValidationError("dataRequestStatus must be a non-empty string.")
        borrow = self._get_data_request(request_id)
        borrow.data_request_status = status.strip()
        self._commit(f"update data request {request_id}")
        return borrow

    def upload_data_file(self, request_id: str, actor, fileobj, filename: str,
                         content_type: Optional[str] = None, size: Optional[int] = None) -> Borrow:
        self._require_manager(actor, "upload data files")
        name = os.path.basename(filename or "").strip()
        if not name:
            raise ValidationError("An uploaded file needs a name.")
        borrow = self._get_data_request(request_id)
        storage = self._require_storage()
        url = storage.upload_artifact(
            fileobj, storage.data_request_key(request_id, name), content_type)
        entry = {"id": new_id(), "name": name, "url": url, "size": size, "type": content_type}
        # Reassign so the JSON column registers the change
        borrow.data_files = list(borrow.data_files or []) + [entry]
        self._commit(f"record uploaded file for {request_id}")
        logger.info(f"Uploaded {name} to data request {request_id}")
        return borrow

    def delete_data_file(self, request_id: str, file_id: str, actor) -> Borrow:
        """Removes one artifact from a data request.

        The stored object goes first. If storage says it is already gone the
        metadata is still removed; any other storage failure leaves the
        record untouched and surfaces as an internal error.
        """
        self._require_manager(actor, "delete data files")
        borrow = self._get_data_request(request_id)
        files = [f for f in (borrow.data_files or []) if isinstance(f, dict)]
        target = next((f for f in files if f.get("id") == file_id), None)
        if target is None:
            # Entries written before files carried ids are matched by name
            target = next((f for f in files if not f.get("id") and f.get("name") == file_id), None)
        if target is None:
            raise NotFoundError(f"File {file_id} not found on data request {request_id}.")

        storage = self._require_storage()
        key = (storage.key_from_url(target.get("url"))
               or storage.data_request_key(request_id, target.get("name", "")))
        if not storage.delete_artifact(key):
            logger.warning(f"Artifact {key} was already absent; removing its metadata")

        borrow.data_files = [f for f in (borrow.data_files or []) if f is not target]
        self._commit(f"remove file {file_id} from {request_id}")
        logger.info(f"Deleted file {file_id} from data request {request_id}")
        return borrow
