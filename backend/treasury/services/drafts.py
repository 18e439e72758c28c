"""
Draft movements: rows staged by bulk import (status DRAFT) that must be
categorized (given a department) before they enter the approval pipeline.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from treasury.auth import Caller, accessible_area_ids, ensure_area_member
from treasury.enums import HistoryAction, MovementStatus
from treasury.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from treasury.models import Area, Movement
from treasury.services.lifecycle import LifecycleAction, guarded_status_update, record_history, transition
from treasury.services.movements import (
    categorization_metadata,
    get_active_area,
    resolve_categorization,
    unique_ids,
    validate_department,
)


logger = logging.getLogger(__name__)

_DRAFT = MovementStatus.DRAFT


def _draft_query():
    return select(Movement).where(Movement.status == _DRAFT.value, Movement.deleted_at.is_(None))


def get_draft(session: Session, draft_id: int) -> Movement:
    draft = session.execute(_draft_query().where(Movement.id == draft_id)).scalar_one_or_none()
    if not draft:
        raise NotFoundError("Draft not found")
    return draft


def get_accessible_draft(session: Session, caller: Caller, draft_id: int) -> Movement:
    draft = get_draft(session, draft_id)
    ensure_area_member(session, caller, draft.area_id, "You do not have access to this draft")
    return draft


def _load_drafts(session: Session, ids: list[int]) -> list[Movement]:
    return list(session.execute(_draft_query().where(Movement.id.in_(ids)).order_by(Movement.id)).scalars())


def _ensure_all_accessible(session: Session, caller: Caller, drafts: list[Movement]) -> None:
    area_ids = accessible_area_ids(session, caller)
    if area_ids is None:
        return
    allowed = set(area_ids)
    if any(draft.area_id not in allowed for draft in drafts):
        raise ForbiddenError("You do not have access to some of these drafts", reason="not_area_member")


def list_drafts(
    session: Session,
    caller: Caller,
    *,
    area_id: Optional[int] = None,
    needs_categorization: Optional[bool] = None,
    limit: int = 50,
    cursor: Optional[int] = None,
) -> tuple[list[Movement], Optional[int], int]:
    """Newest drafts first; returns (items, next_cursor, total)."""
    stmt = _draft_query()

    area_ids = accessible_area_ids(session, caller)
    if area_ids is not None:
        if not area_ids or (area_id is not None and area_id not in area_ids):
            return [], None, 0
        stmt = stmt.where(Movement.area_id.in_(area_ids))

    if area_id is not None:
        stmt = stmt.where(Movement.area_id == area_id)
    if needs_categorization is True:
        stmt = stmt.where(Movement.department_id.is_(None))
    elif needs_categorization is False:
        stmt = stmt.where(Movement.department_id.is_not(None))

    total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0

    if cursor is not None:
        stmt = stmt.where(Movement.id < cursor)

    rows = list(session.execute(stmt.order_by(Movement.id.desc()).limit(limit + 1)).scalars())
    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = rows[-1].id
    return rows, next_cursor, total


def update_draft(session: Session, caller: Caller, draft_id: int, changes: dict[str, Any]) -> Movement:
    """
    Inline categorization of one draft (area, department, category).

    Changing the area clears the department unless one is supplied in the
    same call, which leaves the draft needing categorization again.
    """
    draft = get_accessible_draft(session, caller, draft_id)
    transition(draft.status, LifecycleAction.EDIT)

    before_area_id, before_department_id = draft.area_id, draft.department_id
    area_id, department_id = resolve_categorization(session, before_area_id, before_department_id, changes)
    if area_id != before_area_id:
        ensure_area_member(session, caller, area_id, "You do not have access to the new area")

    draft.area_id = area_id
    draft.department_id = department_id
    if "category" in changes:
        draft.category = changes["category"]

    metadata = categorization_metadata(before_area_id, before_department_id, area_id, department_id)
    if metadata:
        record_history(session, draft.id, caller.id, HistoryAction.CATEGORIZED, comment="Draft categorized", metadata=metadata)

    session.flush()
    session.refresh(draft)
    return draft


def bulk_update_drafts(session: Session, caller: Caller, ids: list[int], changes: dict[str, Any]) -> int:
    """Admin-only categorization of up to 100 drafts; every id must currently be DRAFT."""
    if not caller.is_admin:
        raise ForbiddenError("Only administrators can perform bulk updates", reason="not_admin")

    ids = unique_ids(ids)
    drafts = _load_drafts(session, ids)
    if len(drafts) != len(ids):
        raise BadRequestError(f"{len(ids) - len(drafts)} draft(s) not found or not in DRAFT status")

    if changes.get("area_id") is not None:
        get_active_area(session, changes["area_id"])
    if changes.get("department_id") is not None and changes.get("area_id") is not None:
        validate_department(session, changes["department_id"], changes["area_id"])

    # Validate every target before touching any row
    targets = [
        (draft, *resolve_categorization(session, draft.area_id, draft.department_id, changes))
        for draft in drafts
    ]

    for draft, area_id, department_id in targets:
        metadata = categorization_metadata(draft.area_id, draft.department_id, area_id, department_id)
        draft.area_id = area_id
        draft.department_id = department_id
        if "category" in changes:
            draft.category = changes["category"]
        if metadata:
            record_history(
                session, draft.id, caller.id, HistoryAction.CATEGORIZED, comment="Bulk categorization", metadata=metadata
            )

    session.flush()
    logger.info("Bulk update of %d draft(s) by user %s", len(drafts), caller.id)
    return len(drafts)


def finalize_draft(session: Session, caller: Caller, draft_id: int) -> Movement:
    """DRAFT -> PENDING; the draft must have a department."""
    draft = get_accessible_draft(session, caller, draft_id)
    if draft.department_id is None:
        raise BadRequestError("Cannot finalize draft without department - please categorize first")
    next_status = transition(draft.status, LifecycleAction.FINALIZE)

    updated = guarded_status_update(session, [draft.id], _DRAFT, {"status": next_status.value})
    if updated != 1:
        raise ConflictError(f"Cannot finalize movement with status {draft.status}")

    logger.info("Draft %s finalized by user %s", draft.id, caller.id)
    return draft


def bulk_finalize_drafts(session: Session, caller: Caller, ids: list[int]) -> list[Movement]:
    ids = unique_ids(ids)
    drafts = _load_drafts(session, ids)
    if len(drafts) != len(ids):
        raise NotFoundError(f"{len(ids) - len(drafts)} draft(s) not found")

    _ensure_all_accessible(session, caller, drafts)

    uncategorized = [draft for draft in drafts if draft.department_id is None]
    if uncategorized:
        raise BadRequestError(f"Cannot finalize {len(uncategorized)} draft(s) without department")

    next_status = transition(_DRAFT, LifecycleAction.FINALIZE)
    updated = guarded_status_update(session, ids, _DRAFT, {"status": next_status.value})
    if updated != len(ids):
        raise ConflictError(f"{len(ids) - updated} draft(s) changed while finalizing")

    logger.info("Bulk finalize of %d draft(s) by user %s", len(ids), caller.id)
    return drafts


def delete_draft(session: Session, caller: Caller, draft_id: int) -> Movement:
    draft = get_accessible_draft(session, caller, draft_id)
    transition(draft.status, LifecycleAction.DELETE)
    draft.deleted_at = datetime.utcnow()
    session.flush()
    return draft


def bulk_delete_drafts(session: Session, caller: Caller, ids: list[int]) -> int:
    ids = unique_ids(ids)
    drafts = _load_drafts(session, ids)
    if len(drafts) != len(ids):
        raise NotFoundError(f"{len(ids) - len(drafts)} draft(s) not found")

    _ensure_all_accessible(session, caller, drafts)

    updated = guarded_status_update(session, ids, _DRAFT, {"deleted_at": datetime.utcnow()})
    if updated != len(ids):
        raise ConflictError(f"{len(ids) - updated} draft(s) changed while deleting")

    logger.info("Bulk delete of %d draft(s) by user %s", len(ids), caller.id)
    return updated


def draft_stats(session: Session, caller: Caller) -> dict:
    conditions = [Movement.status == _DRAFT.value, Movement.deleted_at.is_(None)]

    area_ids = accessible_area_ids(session, caller)
    if area_ids is not None:
        if not area_ids:
            return {"total": 0, "needs_categorization": 0, "by_area": []}
        conditions.append(Movement.area_id.in_(area_ids))

    total = session.execute(select(func.count(Movement.id)).where(*conditions)).scalar() or 0
    needs_categorization = session.execute(
        select(func.count(Movement.id)).where(*conditions, Movement.department_id.is_(None))
    ).scalar() or 0

    rows = session.execute(
        select(Area, func.count(Movement.id))
        .join(Movement, Movement.area_id == Area.id)
        .where(*conditions)
        .group_by(Area.id)
        .order_by(Area.name)
    ).all()

    return {
        "total": total,
        "needs_categorization": needs_categorization,
        "by_area": [{"area": area, "count": count} for area, count in rows],
    }
