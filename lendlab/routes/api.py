#!/usr/bin/env python

"""
    API routes for LendLab,
    the borrow lifecycle, deficiency ledger and reliability reports.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from datetime import date
from typing import List, Optional
from fastapi import (
    APIRouter,
    Cookie,
    Depends,
    File,
    Query,
    Request,
    UploadFile,
    status,
)
from lendlab.core import auth
from lendlab.core.borrows import BorrowEngine
from lendlab.core.deficiencies import DeficiencyLedger
from lendlab.core.equipment import EquipmentRegistry
from lendlab.core.exceptions import ForbiddenError
from lendlab.core.groups import GroupCoordinator
from lendlab.core.metrics import ReliabilityMetrics
from lendlab.core.permissions import can_manage
from lendlab.schemas.borrow import (
    ApproveRequest,
    BorrowIdsRequest,
    BorrowOut,
    BulkApproveOut,
    BulkCountOut,
    ConfirmReturnRequest,
    DataFileDeleteOut,
    DataRequestStatusUpdate,
    GroupOut,
    GroupRequest,
    GroupSummaryOut,
    OpenDeficiencyCountOut,
    PendingReturnOut,
    ReturnRequest,
    SubmitRequest,
)
from lendlab.schemas.deficiency import DeficiencyCreate, DeficiencyOut, DeficiencyUpdate
from lendlab.schemas.equipment import EquipmentCreate, EquipmentOut, MaintenanceEntry, NoteCreate
from lendlab.schemas.report import (
    DashboardStats,
    MaintenanceActivityRow,
    MtbfRow,
    MttrRow,
    StatusCount,
    UtilizationRow,
    WeeklyUsageRow,
)

router = APIRouter()


# Dependencies

def get_session(request: Request):
    yield from request.app.state.db.session()

def get_actor(request: Request, session: Optional[str] = Cookie(None)) -> auth.Actor:
    # Check for Bearer token
    if not session:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            session = auth_header.split(" ", 1)[1]
    return auth.require_actor(session)

def get_manager(actor: auth.Actor = Depends(get_actor)) -> auth.Actor:
    if not can_manage(actor):
        raise ForbiddenError("Only staff or faculty may view reports.")
    return actor

def get_engine(request: Request, session=Depends(get_session)) -> BorrowEngine:
    return BorrowEngine(session, storage=getattr(request.app.state, "storage", None))

def get_groups(session=Depends(get_session)) -> GroupCoordinator:
    return GroupCoordinator(session)

def get_ledger(session=Depends(get_session)) -> DeficiencyLedger:
    return DeficiencyLedger(session)

def get_registry(session=Depends(get_session)) -> EquipmentRegistry:
    return EquipmentRegistry(session)

def get_metrics(session=Depends(get_session)) -> ReliabilityMetrics:
    return ReliabilityMetrics(session)


# Equipment

@router.get("/equipment", response_model=List[EquipmentOut])
def list_equipment(include_retired: bool = Query(True, alias="includeRetired"),
                   actor=Depends(get_actor), registry=Depends(get_registry)):
    return registry.list(include_retired=include_retired)

@router.post("/equipment", response_model=EquipmentOut, status_code=status.HTTP_201_CREATED)
def register_equipment(payload: EquipmentCreate, actor=Depends(get_actor),
                       registry=Depends(get_registry)):
    return registry.register(
        actor, payload.name, equipment_code=payload.equipment_code,
        stock_count=payload.stock_count, status=payload.status)

@router.post("/equipment/{equipment_id}/maintenance", response_model=EquipmentOut)
def log_maintenance(equipment_id: str, payload: MaintenanceEntry, actor=Depends(get_actor),
                    registry=Depends(get_registry)):
    return registry.log_maintenance(
        equipment_id, actor, payload.start_date, payload.end_date, payload.notes)

@router.post("/equipment/{equipment_id}/notes", response_model=EquipmentOut)
def add_equipment_note(equipment_id: str, payload: NoteCreate, actor=Depends(get_actor),
                       registry=Depends(get_registry)):
    return registry.add_note(equipment_id, actor, payload.text)

@router.get("/equipment/{equipment_id}/bookings", response_model=List[date])
def equipment_bookings(equipment_id: str, actor=Depends(get_actor), registry=Depends(get_registry)):
    return registry.bookings(equipment_id)

# Borrows

@router.post("/borrows", response_model=List[BorrowOut], status_code=status.HTTP_201_CREATED)
def submit_borrow(payload: SubmitRequest, actor=Depends(get_actor), engine=Depends(get_engine)):
    return engine.submit(
        actor,
        payload.equipment_ids,
        payload.requested_start_time,
        payload.requested_end_time,
        class_id=payload.class_id,
        reservation_type=payload.reservation_type,
        group_mate_ids=payload.group_mate_ids,
    )

@router.get("/borrows/mine", response_model=List[BorrowOut])
def my_borrows(actor=Depends(get_actor), engine=Depends(get_engine)):
    return engine.list_for_borrower(actor)

@router.get("/borrows/pending-returns", response_model=List[PendingReturnOut])
def pending_returns(actor=Depends(get_actor), engine=Depends(get_engine)):
    return [
        PendingReturnOut.model_validate(borrow).model_copy(
            update={"open_deficiency_count": count})
        for borrow, count in engine.pending_returns(actor)
    ]

@router.post("/borrows/bulk-approve", response_model=BulkApproveOut)
def bulk_approve(payload: BorrowIdsRequest, actor=Depends(get_actor), engine=Depends(get_engine)):
    result = engine.bulk_approve(payload.borrow_ids, actor)
    return BulkApproveOut(approved_count=result.count, skipped_count=result.skipped_count)

@router.post("/borrows/bulk/checkout", response_model=BulkCountOut)
def bulk_checkout(payload: GroupRequest, actor=Depends(get_actor), engine=Depends(get_engine)):
    result = engine.bulk_checkout(payload.borrow_group_id, actor)
    return BulkCountOut(count=result.count, skipped_count=result.skipped_count)

@router.post("/borrows/bulk/reject", response_model=BulkCountOut)
def bulk_reject(payload: GroupRequest, actor=Depends(get_actor), engine=Depends(get_engine)):
    result = engine.reject_group(payload.borrow_group_id, actor)
    return BulkCountOut(count=result.count, skipped_count=result.skipped_count)

@router.patch("/borrows/bulk/request-return", response_model=BulkCountOut)
def bulk_request_return(group_id: str = Query(..., alias="groupId"),
                        payload: Optional[ReturnRequest] = None,
                        actor=Depends(get_actor), engine=Depends(get_engine)):
    result = engine.request_group_return(group_id, actor, payload)
    return BulkCountOut(count=result.count, skipped_count=result.skipped_count)

@router.get("/borrows/groups", response_model=List[GroupSummaryOut])
def list_groups(actor=Depends(get_actor), groups=Depends(get_groups)):
    return groups.list_groups(actor)

@router.get("/borrows/group/{group_id}", response_model=GroupOut)
def fetch_group(group_id: str, actor=Depends(get_actor), groups=Depends(get_groups)):
    return GroupOut.model_validate(groups.fetch_group(group_id, actor))

@router.get("/borrows/group/{group_id}/member-emails", response_model=List[str])
def group_member_emails(group_id: str, actor=Depends(get_actor), groups=Depends(get_groups)):
    return groups.member_emails(group_id, actor)

# Data requests

@router.patch("/borrows/data-requests/{request_id}", response_model=BorrowOut)
def update_data_request(request_id: str, payload: DataRequestStatusUpdate,
                        actor=Depends(get_actor), engine=Depends(get_engine)):
    return engine.update_data_request_status(request_id, actor, payload.data_request_status)

@router.post("/borrows/data-requests/{request_id}/upload", response_model=BorrowOut)
def upload_data_file(request_id: str, file: UploadFile = File(...),
                     actor=Depends(get_actor), engine=Depends(get_engine)):
    return engine.upload_data_file(
        request_id, actor, file.file, file.filename,
        content_type=file.content_type, size=file.size)

@router.delete("/borrows/data-requests/{request_id}/files/{file_id}", response_model=DataFileDeleteOut)
def delete_data_file(request_id: str, file_id: str,
                     actor=Depends(get_actor), engine=Depends(get_engine)):
    borrow = engine.delete_data_file(request_id, file_id, actor)
    return DataFileDeleteOut(updated=BorrowOut.model_validate(borrow))

# Single borrow transitions

@router.get("/borrows/{borrow_id}", response_model=BorrowOut)
def get_borrow(borrow_id: str, actor=Depends(get_actor), engine=Depends(get_engine)):
    return engine.get(borrow_id, actor)

@router.patch("/borrows/{borrow_id}/approve", response_model=BorrowOut)
def approve_borrow(borrow_id: str, payload: Optional[ApproveRequest] = None,
                   actor=Depends(get_actor), engine=Depends(get_engine)):
    payload = payload or ApproveRequest()
    return engine.approve(
        borrow_id, actor, payload.approved_start_time, payload.approved_end_time)

@router.patch("/borrows/{borrow_id}/approved-window", response_model=BorrowOut)
def update_approved_window(borrow_id: str, payload: ApproveRequest,
                           actor=Depends(get_actor), engine=Depends(get_engine)):
    return engine.update_approved_window(
        borrow_id, actor, payload.approved_start_time, payload.approved_end_time)

@router.patch("/borrows/{borrow_id}/reject", response_model=BorrowOut)
def reject_borrow(borrow_id: str, actor=Depends(get_actor), engine=Depends(get_engine)):
    return engine.reject(borrow_id, actor)

@router.patch("/borrows/{borrow_id}/cancel", response_model=BorrowOut)
def cancel_borrow(borrow_id: str, actor=Depends(get_actor), engine=Depends(get_engine)):
    return engine.cancel(borrow_id, actor)

@router.patch("/borrows/{borrow_id}/checkout", response_model=BorrowOut)
def checkout_borrow(borrow_id: str, actor=Depends(get_actor), engine=Depends(get_engine)):
    return engine.checkout(borrow_id, actor)

@router.patch("/borrows/{borrow_id}/request-return", response_model=BorrowOut)
def request_return(borrow_id: str, payload: Optional[ReturnRequest] = None,
                   actor=Depends(get_actor), engine=Depends(get_engine)):
    return engine.request_return(borrow_id, actor, payload)

@router.patch("/borrows/{borrow_id}/confirm-return", response_model=BorrowOut)
def confirm_return(borrow_id: str, payload: Optional[ConfirmReturnRequest] = None,
                   actor=Depends(get_actor), engine=Depends(get_engine)):
    payload = payload or ConfirmReturnRequest()
    return engine.confirm_return(
        borrow_id, actor, payload.return_condition, payload.return_remarks)

@router.patch("/borrows/{borrow_id}/complete", response_model=BorrowOut)
def complete_borrow(borrow_id: str, actor=Depends(get_actor), engine=Depends(get_engine)):
    return engine.complete(borrow_id, actor)

@router.get("/borrows/{borrow_id}/open-deficiencies", response_model=OpenDeficiencyCountOut)
def open_deficiency_count(borrow_id: str, actor=Depends(get_actor),
                          engine=Depends(get_engine), ledger=Depends(get_ledger)):
    engine.get(borrow_id, actor)
    return OpenDeficiencyCountOut(borrow_id=borrow_id, open_count=ledger.open_count(borrow_id))

# Deficiencies

@router.post("/deficiencies", response_model=DeficiencyOut, status_code=status.HTTP_201_CREATED)
def log_deficiency(payload: DeficiencyCreate, actor=Depends(get_actor), ledger=Depends(get_ledger)):
    return ledger.log(
        actor,
        payload.borrow_id,
        payload.type,
        description=payload.description,
        user_id=payload.user_id,
        fic_to_notify_id=payload.fic_to_notify_id,
    )

@router.get("/deficiencies", response_model=List[DeficiencyOut])
def list_deficiencies(status_filter: Optional[str] = Query(None, alias="status"),
                      actor=Depends(get_actor),
                      ledger=Depends(get_ledger)):
    return ledger.list(actor, status=status_filter)

@router.patch("/deficiencies/{deficiency_id}", response_model=DeficiencyOut)
def update_deficiency(deficiency_id: str, payload: DeficiencyUpdate,
                      actor=Depends(get_actor), ledger=Depends(get_ledger)):
    return ledger.update(deficiency_id, actor, payload.model_dump(exclude_unset=True))

@router.delete("/deficiencies/{deficiency_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_deficiency(deficiency_id: str, actor=Depends(get_actor), ledger=Depends(get_ledger)):
    ledger.delete(deficiency_id, actor)

# Reports

@router.get("/reports/mtbf", response_model=List[MtbfRow])
def report_mtbf(actor=Depends(get_manager), metrics=Depends(get_metrics)):
    return metrics.mtbf()

@router.get("/reports/mttr", response_model=List[MttrRow])
def report_mttr(actor=Depends(get_manager), metrics=Depends(get_metrics)):
    return metrics.mttr()

@router.get("/reports/maintenance-activity", response_model=List[MaintenanceActivityRow])
def report_maintenance_activity(equipment_id: Optional[str] = Query(None, alias="equipmentId"),
                                start_date: Optional[str] = Query(None, alias="startDate"),
                                end_date: Optional[str] = Query(None, alias="endDate"),
                                actor=Depends(get_manager), metrics=Depends(get_metrics)):
    return metrics.maintenance_activity(equipment_id, start_date, end_date)

@router.get("/reports/utilization-ranking", response_model=List[UtilizationRow])
def report_utilization(start_date: Optional[str] = Query(None, alias="startDate"),
                       end_date: Optional[str] = Query(None, alias="endDate"),
                       actor=Depends(get_manager), metrics=Depends(get_metrics)):
    return metrics.utilization_ranking(start_date, end_date)

@router.get("/reports/weekly-usage", response_model=List[WeeklyUsageRow])
def report_weekly_usage(actor=Depends(get_manager), metrics=Depends(get_metrics)):
    return metrics.weekly_usage()

@router.get("/reports/dashboard-stats", response_model=DashboardStats)
def report_dashboard_stats(actor=Depends(get_manager), metrics=Depends(get_metrics)):
    return metrics.dashboard_stats()

@router.get("/reports/equipment-status-counts", response_model=List[StatusCount])
def report_equipment_status_counts(actor=Depends(get_manager), metrics=Depends(get_metrics)):
    return metrics.equipment_status_counts()
