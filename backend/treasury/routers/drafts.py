from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from treasury.auth import Caller, get_current_user, require_verified
from treasury.db import get_session
from treasury.schemas import (
    AreaSummary,
    BulkResult,
    DraftAreaCount,
    DraftBulkUpdate,
    DraftIdsRequest,
    DraftPage,
    DraftStatsOut,
    DraftUpdate,
    MovementOut,
)
from treasury.services import drafts as draft_service
from treasury.services import events
from treasury.services.projection import project_movement


router = APIRouter()


@router.get("", response_model=DraftPage)
async def list_drafts(
    area_id: Optional[int] = None,
    needs_categorization: Optional[bool] = None,
    limit: int = Query(default=50, ge=1, le=100),
    cursor: Optional[int] = None,
    caller: Caller = Depends(get_current_user),
) -> DraftPage:
    with get_session() as session:
        rows, next_cursor, total = draft_service.list_drafts(
            session,
            caller,
            area_id=area_id,
            needs_categorization=needs_categorization,
            limit=limit,
            cursor=cursor,
        )
        items = [project_movement(m) for m in rows]
    return DraftPage(items=items, next_cursor=next_cursor, total=total)


@router.get("/stats", response_model=DraftStatsOut)
async def get_draft_stats(caller: Caller = Depends(get_current_user)) -> DraftStatsOut:
    with get_session() as session:
        stats = draft_service.draft_stats(session, caller)
        return DraftStatsOut(
            total=stats["total"],
            needs_categorization=stats["needs_categorization"],
            by_area=[
                DraftAreaCount(area=AreaSummary.model_validate(item["area"]), count=item["count"])
                for item in stats["by_area"]
            ],
        )


@router.get("/{draft_id}", response_model=MovementOut)
async def get_draft(draft_id: int, caller: Caller = Depends(get_current_user)) -> MovementOut:
    with get_session() as session:
        return project_movement(draft_service.get_accessible_draft(session, caller, draft_id))


@router.patch("/{draft_id}", response_model=MovementOut)
async def update_draft(
    draft_id: int,
    payload: DraftUpdate,
    caller: Caller = Depends(require_verified),
) -> MovementOut:
    """
    Categorize one draft.

    Sending a new ``area_id`` without ``department_id`` clears the department.
    """
    with get_session() as session:
        draft = draft_service.update_draft(session, caller, draft_id, payload.model_dump(exclude_unset=True))
        return project_movement(draft)


@router.post("/bulk-update", response_model=BulkResult)
async def bulk_update_drafts(payload: DraftBulkUpdate, caller: Caller = Depends(require_verified)) -> BulkResult:
    changes = payload.model_dump(exclude_unset=True, exclude={"ids"})
    with get_session() as session:
        count = draft_service.bulk_update_drafts(session, caller, payload.ids, changes)
    return BulkResult(count=count)


@router.post("/{draft_id}/finalize", response_model=MovementOut)
async def finalize_draft(draft_id: int, caller: Caller = Depends(require_verified)) -> MovementOut:
    with get_session() as session:
        draft = draft_service.finalize_draft(session, caller, draft_id)
        result = project_movement(draft)
    events.emit(events.DRAFTS_FINALIZED, movement_ids=[result.id], area_ids=[result.area_id])
    return result


@router.post("/bulk-finalize", response_model=BulkResult)
async def bulk_finalize_drafts(payload: DraftIdsRequest, caller: Caller = Depends(require_verified)) -> BulkResult:
    """Move every listed draft to PENDING, or none if any is missing a department."""
    with get_session() as session:
        finalized = draft_service.bulk_finalize_drafts(session, caller, payload.ids)
        ids = [m.id for m in finalized]
        area_ids = sorted({m.area_id for m in finalized})
    events.emit(events.DRAFTS_FINALIZED, movement_ids=ids, area_ids=area_ids)
    return BulkResult(count=len(ids))


@router.delete("/{draft_id}")
async def delete_draft(draft_id: int, caller: Caller = Depends(require_verified)) -> dict:
    with get_session() as session:
        draft_service.delete_draft(session, caller, draft_id)
    return {"success": True}


@router.post("/bulk-delete", response_model=BulkResult)
async def bulk_delete_drafts(payload: DraftIdsRequest, caller: Caller = Depends(require_verified)) -> BulkResult:
    with get_session() as session:
        count = draft_service.bulk_delete_drafts(session, caller, payload.ids)
    return BulkResult(count=count)
