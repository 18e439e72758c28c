from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from treasury.auth import Caller, get_current_user, require_verified
from treasury.db import get_session
from treasury.enums import MovementStatus, MovementType
from treasury.schemas import (
    ApproveRequest,
    BulkApproveRequest,
    BulkRejectRequest,
    BulkResult,
    CommentRequest,
    HistoryEntryOut,
    MovementCreate,
    MovementOut,
    MovementPage,
    MovementUpdate,
    RejectRequest,
    SortBy,
    SortOrder,
    SplitOut,
    SplitRequest,
)
from treasury.services import events
from treasury.services import movements as movement_service
from treasury.services.lifecycle import LifecycleAction
from treasury.services.projection import project_history_entry, project_movement


router = APIRouter()


@router.get("", response_model=MovementPage)
async def list_movements(
    area_id: Optional[int] = None,
    department_id: Optional[int] = None,
    type_: Optional[MovementType] = Query(default=None, alias="type"),
    status_: Optional[MovementStatus] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None, max_length=200),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    min_amount: Optional[int] = Query(default=None, ge=0),
    max_amount: Optional[int] = Query(default=None, ge=0),
    sort_by: SortBy = "date",
    sort_order: SortOrder = "desc",
    limit: int = Query(default=50, ge=1, le=100),
    cursor: Optional[int] = None,
    caller: Caller = Depends(get_current_user),
) -> MovementPage:
    """
    Movements in the caller's areas (all areas for admins), newest first by default.

    Pagination is keyset based: pass the returned ``next_cursor`` (a movement
    id) to get the following page.
    """
    with get_session() as session:
        rows, next_cursor = movement_service.list_movements(
            session,
            caller,
            limit=limit,
            cursor=cursor,
            area_id=area_id,
            department_id=department_id,
            type_filter=type_.value if type_ else None,
            status_filter=status_.value if status_ else None,
            search=search,
            start_date=start_date,
            end_date=end_date,
            min_amount=min_amount,
            max_amount=max_amount,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        items = [project_movement(m) for m in rows]
    return MovementPage(items=items, next_cursor=next_cursor)


@router.get("/{movement_id}", response_model=MovementOut)
async def get_movement(movement_id: int, caller: Caller = Depends(get_current_user)) -> MovementOut:
    with get_session() as session:
        return project_movement(movement_service.get_movement(session, caller, movement_id))


@router.post("", response_model=MovementOut, status_code=status.HTTP_201_CREATED)
async def create_movement(payload: MovementCreate, caller: Caller = Depends(require_verified)) -> MovementOut:
    with get_session() as session:
        movement = movement_service.create_movement(session, caller, payload)
        result = project_movement(movement)
    events.emit(events.MOVEMENT_CREATED, movement_id=result.id, area_id=result.area_id, user_id=caller.id)
    return result


@router.patch("/{movement_id}", response_model=MovementOut)
async def update_movement(
    movement_id: int,
    payload: MovementUpdate,
    caller: Caller = Depends(require_verified),
) -> MovementOut:
    """Only fields present in the body are applied; edits to reviewed movements reset them to PENDING."""
    with get_session() as session:
        movement = movement_service.update_movement(session, caller, movement_id, payload.model_dump(exclude_unset=True))
        result = project_movement(movement)
    events.emit(events.MOVEMENT_UPDATED, movement_id=result.id, area_id=result.area_id, status=result.status.value)
    return result


@router.delete("/{movement_id}")
async def delete_movement(movement_id: int, caller: Caller = Depends(require_verified)) -> dict:
    with get_session() as session:
        movement = movement_service.delete_movement(session, caller, movement_id)
        area_id = movement.area_id
    events.emit(events.MOVEMENT_DELETED, movement_id=movement_id, area_id=area_id)
    return {"success": True}


@router.post("/{movement_id}/approve", response_model=MovementOut)
async def approve_movement(
    movement_id: int,
    payload: Optional[ApproveRequest] = None,
    caller: Caller = Depends(require_verified),
) -> MovementOut:
    payload = payload or ApproveRequest()
    with get_session() as session:
        movement = movement_service.approve_movement(session, caller, movement_id, comment=payload.comment)
        result = project_movement(movement)
    events.emit(events.MOVEMENT_APPROVED, movement_id=result.id, area_id=result.area_id, approved_by=caller.id)
    return result


@router.post("/{movement_id}/reject", response_model=MovementOut)
async def reject_movement(
    movement_id: int,
    payload: Optional[RejectRequest] = None,
    caller: Caller = Depends(require_verified),
) -> MovementOut:
    payload = payload or RejectRequest()
    with get_session() as session:
        movement = movement_service.reject_movement(
            session, caller, movement_id, reason=payload.reason, comment=payload.comment
        )
        result = project_movement(movement)
    events.emit(events.MOVEMENT_REJECTED, movement_id=result.id, area_id=result.area_id, rejected_by=caller.id)
    return result


@router.post("/bulk-approve", response_model=BulkResult)
async def bulk_approve(payload: BulkApproveRequest, caller: Caller = Depends(require_verified)) -> BulkResult:
    """Approve every listed movement or none of them."""
    with get_session() as session:
        approved = movement_service.bulk_review(
            session, caller, payload.ids, LifecycleAction.APPROVE, comment=payload.comment
        )
        ids = [m.id for m in approved]
        area_ids = sorted({m.area_id for m in approved})
    events.emit(events.MOVEMENTS_BULK_APPROVED, movement_ids=ids, area_ids=area_ids, approved_by=caller.id)
    return BulkResult(count=len(ids))


@router.post("/bulk-reject", response_model=BulkResult)
async def bulk_reject(payload: BulkRejectRequest, caller: Caller = Depends(require_verified)) -> BulkResult:
    with get_session() as session:
        rejected = movement_service.bulk_review(
            session,
            caller,
            payload.ids,
            LifecycleAction.REJECT,
            comment=payload.comment,
            reason=payload.reason,
        )
        ids = [m.id for m in rejected]
        area_ids = sorted({m.area_id for m in rejected})
    events.emit(events.MOVEMENTS_BULK_REJECTED, movement_ids=ids, area_ids=area_ids, rejected_by=caller.id)
    return BulkResult(count=len(ids))


@router.post("/{movement_id}/comments", response_model=HistoryEntryOut, status_code=status.HTTP_201_CREATED)
async def add_comment(
    movement_id: int,
    payload: CommentRequest,
    caller: Caller = Depends(require_verified),
) -> HistoryEntryOut:
    with get_session() as session:
        entry = movement_service.add_comment(session, caller, movement_id, payload.comment)
        return project_history_entry(entry)


@router.get("/{movement_id}/history", response_model=List[HistoryEntryOut])
async def get_history(movement_id: int, caller: Caller = Depends(get_current_user)) -> List[HistoryEntryOut]:
    """Audit trail of a movement, oldest entry first."""
    with get_session() as session:
        entries = movement_service.get_history(session, caller, movement_id)
        return [project_history_entry(entry) for entry in entries]


@router.post("/{movement_id}/split", response_model=SplitOut)
async def split_movement(
    movement_id: int,
    payload: SplitRequest,
    caller: Caller = Depends(require_verified),
) -> SplitOut:
    with get_session() as session:
        parent, children = movement_service.split_movement(session, caller, movement_id, payload.allocations)
        return SplitOut(
            parent=project_movement(parent),
            children=[project_movement(child) for child in children],
        )


@router.put("/{movement_id}/split", response_model=SplitOut)
async def update_split(
    movement_id: int,
    payload: SplitRequest,
    caller: Caller = Depends(require_verified),
) -> SplitOut:
    """Replace the allocations of a split movement."""
    with get_session() as session:
        parent, children = movement_service.update_split(session, caller, movement_id, payload.allocations)
        return SplitOut(
            parent=project_movement(parent),
            children=[project_movement(child) for child in children],
        )


@router.post("/{movement_id}/unsplit", response_model=MovementOut)
async def unsplit_movement(movement_id: int, caller: Caller = Depends(require_verified)) -> MovementOut:
    with get_session() as session:
        return project_movement(movement_service.unsplit_movement(session, caller, movement_id))
