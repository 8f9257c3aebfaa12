import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import Field, field_validator
from lendlab.models.borrows import BorrowStatus, ReservationType
from . import CamelModel

logger = logging.getLogger(__name__)

class ReturnRequest(CamelModel):
    request_data: bool = False
    data_request_remarks: Optional[str] = None
    requested_equipment_ids: List[str] = Field(default_factory=list)

    @field_validator("requested_equipment_ids", mode="before")
    @classmethod
    def sanitize_equipment_ids(cls, value: Any) -> List[str]:
        """Lenient on purpose: anything that is not a list becomes [] and
        non-string entries are dropped. Neither case rejects the request.
        """
        if value is None:
            return []
        if not isinstance(value, list):
            logger.warning(f"Ignoring non-list requestedEquipmentIds: {value!r}")
            return []
        kept = [v for v in value if isinstance(v, str)]
        if len(kept) != len(value):
            dropped = [v for v in value if not isinstance(v, str)]
            logger.warning(f"Dropped non-string requestedEquipmentIds entries: {dropped!r}")
        return kept

class SubmitRequest(CamelModel):
    equipment_ids: List[str] = Field(min_length=1)
    requested_start_time: datetime
    requested_end_time: datetime
    class_id: Optional[str] = None
    reservation_type: Optional[ReservationType] = None
    group_mate_ids: List[str] = Field(default_factory=list)

class ApproveRequest(CamelModel):
    approved_start_time: Optional[datetime] = None
    approved_end_time: Optional[datetime] = None

class BorrowIdsRequest(CamelModel):
    borrow_ids: Any = None

class GroupRequest(CamelModel):
    borrow_group_id: str

class ConfirmReturnRequest(CamelModel):
    return_condition: Optional[str] = None
    return_remarks: Optional[str] = None

class DataRequestStatusUpdate(CamelModel):
    data_request_status: str

class UserSummary(CamelModel):
    id: str
    name: Optional[str] = None
    email: str

class BorrowOut(CamelModel):
    id: str
    borrower_id: str
    equipment_id: str
    class_id: Optional[str] = None
    borrow_group_id: Optional[str] = None
    reservation_type: Optional[ReservationType] = None
    requested_start_time: datetime
    requested_end_time: datetime
    approved_start_time: Optional[datetime] = None
    approved_end_time: Optional[datetime] = None
    checkout_time: Optional[datetime] = None
    actual_return_time: Optional[datetime] = None
    request_submission_time: datetime
    borrow_status: BorrowStatus
    effective_status: BorrowStatus
    approved_by_id: Optional[str] = None
    accepted_at: Optional[datetime] = None
    return_condition: Optional[str] = None
    return_remarks: Optional[str] = None
    data_requested: bool = False
    data_request_status: Optional[str] = None
    data_request_remarks: Optional[str] = None
    requested_equipment_ids: List[str] = Field(default_factory=list)
    data_files: List[Dict[str, Any]] = Field(default_factory=list)

class PendingReturnOut(BorrowOut):
    open_deficiency_count: int = 0

class GroupOut(CamelModel):
    borrow_group_id: str
    borrows: List[BorrowOut]
    participants: List[UserSummary]

class GroupSummaryOut(CamelModel):
    borrow_group_id: str
    borrow_count: int
    statuses: List[BorrowStatus]
    request_submission_time: datetime

class BulkApproveOut(CamelModel):
    approved_count: int
    skipped_count: int

class BulkCountOut(CamelModel):
    count: int
    skipped_count: int = 0

class DataFileDeleteOut(CamelModel):
    updated: BorrowOut

class OpenDeficiencyCountOut(CamelModel):
    borrow_id: str
    open_count: int
