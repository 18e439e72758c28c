"""
Movement operations: creation, edits, soft delete, review (approve/reject,
single and bulk), comments, approval history, splits and listing.

Functions take an open session and a ``Caller``; they validate everything
before writing and raise ``TreasuryError`` subclasses, so the surrounding
``get_session()`` block either commits the whole operation or nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from treasury.auth import (
    Caller,
    accessible_area_ids,
    ensure_area_manager,
    ensure_area_member,
    ensure_manager_of_all,
)
from treasury.enums import HistoryAction, MovementStatus
from treasury.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from treasury.models import Area, BankAccount, Department, Movement, MovementApproval
from treasury.schemas import MovementCreate, SplitAllocation
from treasury.services.lifecycle import (
    LifecycleAction,
    guarded_status_update,
    is_allowed,
    record_history,
    transition,
)


logger = logging.getLogger(__name__)

# Fields a creator may change on an existing movement
EDITABLE_FIELDS = ("description", "category", "reference", "amount", "type", "transaction_date", "area_id", "department_id")
_NON_NULLABLE_FIELDS = {"description", "amount", "type", "transaction_date", "area_id"}

_APPROVAL_RESET = {
    "approved_by_user_id": None,
    "approved_at": None,
    "rejected_by_user_id": None,
    "rejected_at": None,
    "rejection_reason": None,
}


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def unique_ids(ids: list[int]) -> list[int]:
    return list(dict.fromkeys(ids))


# ---------------------------------------------------------------------------
# Lookups and access
# ---------------------------------------------------------------------------

def get_active_movement(session: Session, movement_id: int) -> Movement:
    """Non-deleted movement or ``NotFoundError``; soft-deleted rows are invisible."""
    movement = session.execute(
        select(Movement).where(Movement.id == movement_id, Movement.deleted_at.is_(None))
    ).scalar_one_or_none()
    if not movement:
        raise NotFoundError("Movement not found")
    return movement


def get_active_area(session: Session, area_id: int) -> Area:
    area = session.get(Area, area_id)
    if not area or area.deleted_at is not None:
        raise NotFoundError("Area not found")
    return area


def validate_department(session: Session, department_id: int, area_id: int) -> Department:
    department = session.get(Department, department_id)
    if not department or department.deleted_at is not None:
        raise NotFoundError("Department not found")
    if department.area_id != area_id:
        raise BadRequestError("Department does not belong to the specified area")
    return department


def ensure_can_read(session: Session, caller: Caller, movement: Movement) -> None:
    if movement.user_id == caller.id:
        return
    ensure_area_member(session, caller, movement.area_id, "You do not have access to this movement")


def ensure_creator(caller: Caller, movement: Movement) -> None:
    if movement.user_id != caller.id:
        raise ForbiddenError("Only the creator of this movement can perform this action", reason="not_creator")


# ---------------------------------------------------------------------------
# Categorization (area / department)
# ---------------------------------------------------------------------------

def resolve_categorization(
    session: Session,
    current_area_id: int,
    current_department_id: Optional[int],
    changes: dict[str, Any],
) -> tuple[int, Optional[int]]:
    """
    Target (area_id, department_id) after applying ``changes``, validated but not applied.

    Changing the area clears the department unless one is supplied in the
    same change set; a supplied department must belong to the target area.
    """
    area_id = changes.get("area_id", current_area_id)
    if area_id is None:
        raise BadRequestError("area_id cannot be null")
    if area_id != current_area_id:
        get_active_area(session, area_id)

    if "department_id" in changes:
        department_id = changes["department_id"]
    elif area_id != current_area_id:
        department_id = None
    else:
        department_id = current_department_id

    if department_id is not None and (department_id != current_department_id or area_id != current_area_id):
        validate_department(session, department_id, area_id)

    return area_id, department_id


def categorization_metadata(
    before_area_id: int,
    before_department_id: Optional[int],
    after_area_id: int,
    after_department_id: Optional[int],
) -> Optional[dict]:
    changes: dict[str, dict] = {}
    if before_area_id != after_area_id:
        changes["area"] = {"before": before_area_id, "after": after_area_id}
    if before_department_id != after_department_id:
        changes["department"] = {"before": before_department_id, "after": after_department_id}
    return changes or None


# ---------------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------------

def _get_active_bank_account(session: Session, bank_account_id: int, label: str) -> BankAccount:
    account = session.get(BankAccount, bank_account_id)
    if not account or account.deleted_at is not None:
        raise NotFoundError(f"{label} bank account not found")
    return account


def create_movement(session: Session, caller: Caller, payload: MovementCreate) -> Movement:
    """Direct creation by a verified caller with area access; starts PENDING."""
    get_active_area(session, payload.area_id)
    ensure_area_member(session, caller, payload.area_id)

    if payload.department_id is not None:
        validate_department(session, payload.department_id, payload.area_id)
    if payload.source_bank_account_id is not None:
        _get_active_bank_account(session, payload.source_bank_account_id, "Source")
    if payload.destination_bank_account_id is not None:
        _get_active_bank_account(session, payload.destination_bank_account_id, "Destination")

    is_internal_transfer = (
        payload.destination_bank_account_id is not None
        and payload.source_bank_account_id == payload.destination_bank_account_id
    )

    movement = Movement(
        area_id=payload.area_id,
        department_id=payload.department_id,
        user_id=caller.id,
        source_bank_account_id=payload.source_bank_account_id,
        destination_bank_account_id=payload.destination_bank_account_id,
        is_internal_transfer=is_internal_transfer,
        type=payload.type.value,
        status=MovementStatus.PENDING.value,
        amount=payload.amount,
        currency=payload.currency,
        description=payload.description,
        category=payload.category,
        reference=payload.reference,
        transaction_date=payload.transaction_date,
    )
    session.add(movement)
    session.flush()

    record_history(
        session,
        movement.id,
        caller.id,
        HistoryAction.CATEGORIZED,
        comment="Initial categorization: area{} assigned".format(" and department" if payload.department_id else ""),
        metadata={"area_id": payload.area_id, "department_id": payload.department_id},
    )
    session.flush()
    logger.info("Movement %s created by user %s in area %s", movement.id, caller.id, movement.area_id)
    return movement


def update_movement(session: Session, caller: Caller, movement_id: int, changes: dict[str, Any]) -> Movement:
    """
    Apply a partial edit by the movement's creator.

    Editing an APPROVED or REJECTED movement sends it back to PENDING and
    clears every approval/rejection field (history: EDITED). Area or
    department changes add a CATEGORIZED entry with before/after ids.
    Split parents are changed through their allocations only.
    """
    movement = get_active_movement(session, movement_id)
    ensure_creator(caller, movement)
    next_status = transition(movement.status, LifecycleAction.EDIT)
    if movement.is_split_parent:
        raise ConflictError("Cannot edit a split movement. Update its split allocations instead.")
    if movement.parent_id is not None and "amount" in changes and changes["amount"] != movement.amount:
        raise BadRequestError("Cannot change the amount of a split allocation. Update the split instead.")

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise BadRequestError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    for field in _NON_NULLABLE_FIELDS:
        if field in changes and changes[field] is None:
            raise BadRequestError(f"{field} cannot be null")

    changes = {key: _plain(value) for key, value in changes.items()}

    before_area_id, before_department_id = movement.area_id, movement.department_id
    area_id, department_id = resolve_categorization(session, before_area_id, before_department_id, changes)
    if area_id != before_area_id:
        ensure_area_member(session, caller, area_id, "You do not have access to the new area")

    effective = {
        key: value
        for key, value in changes.items()
        if key not in ("area_id", "department_id") and getattr(movement, key) != value
    }
    category_meta = categorization_metadata(before_area_id, before_department_id, area_id, department_id)
    if not effective and not category_meta:
        return movement

    for key, value in effective.items():
        setattr(movement, key, value)
    movement.area_id = area_id
    movement.department_id = department_id

    previous_status = movement.status
    if previous_status in (MovementStatus.APPROVED.value, MovementStatus.REJECTED.value):
        movement.status = next_status.value
        for key, value in _APPROVAL_RESET.items():
            setattr(movement, key, value)
        record_history(
            session,
            movement.id,
            caller.id,
            HistoryAction.EDITED,
            comment=f"Movement edited, status reset from {previous_status} to {next_status.value}",
            metadata={"fields": sorted(effective) + sorted(category_meta or {})},
        )

    if category_meta:
        record_history(
            session,
            movement.id,
            caller.id,
            HistoryAction.CATEGORIZED,
            comment="Categorization updated",
            metadata=category_meta,
        )

    session.flush()
    session.refresh(movement)
    logger.info("Movement %s edited by user %s (status %s -> %s)", movement.id, caller.id, previous_status, movement.status)
    return movement


def delete_movement(session: Session, caller: Caller, movement_id: int) -> Movement:
    movement = get_active_movement(session, movement_id)
    ensure_creator(caller, movement)
    transition(movement.status, LifecycleAction.DELETE)

    now = datetime.utcnow()
    movement.deleted_at = now
    # Allocations go with their parent
    _remove_allocations(movement, now)
    session.flush()
    logger.info("Movement %s soft-deleted by user %s", movement.id, caller.id)
    return movement


# ---------------------------------------------------------------------------
# Review: approve / reject / comment
# ---------------------------------------------------------------------------

def _review_values(caller: Caller, action: LifecycleAction, reason: Optional[str], now: datetime) -> dict[str, Any]:
    if action is LifecycleAction.APPROVE:
        return {
            "status": MovementStatus.APPROVED.value,
            "approved_by_user_id": caller.id,
            "approved_at": now,
        }
    return {
        "status": MovementStatus.REJECTED.value,
        "rejected_by_user_id": caller.id,
        "rejected_at": now,
        "rejection_reason": reason,
    }


def _review_history_action(action: LifecycleAction) -> HistoryAction:
    return HistoryAction.APPROVED if action is LifecycleAction.APPROVE else HistoryAction.REJECTED


def _pending_allocations(session: Session, parents: list[Movement]) -> list[Movement]:
    """Live PENDING children of the split parents in ``parents``; reviewed together with them."""
    parent_ids = [m.id for m in parents if m.is_split_parent]
    if not parent_ids:
        return []
    return list(
        session.execute(
            select(Movement)
            .where(
                Movement.parent_id.in_(parent_ids),
                Movement.deleted_at.is_(None),
                Movement.status == MovementStatus.PENDING.value,
            )
            .order_by(Movement.id)
        ).scalars()
    )


def review_movement(
    session: Session,
    caller: Caller,
    movement_id: int,
    action: LifecycleAction,
    comment: Optional[str] = None,
    reason: Optional[str] = None,
) -> Movement:
    """
    Approve or reject one PENDING movement (area manager or admin).

    Reviewing a split parent applies the same decision to its PENDING
    allocations in the same guarded UPDATE.
    """
    movement = get_active_movement(session, movement_id)
    verb = "approve" if action is LifecycleAction.APPROVE else "reject"
    ensure_area_manager(session, caller, movement.area_id, f"You must be an area manager to {verb} movements")
    transition(movement.status, action)

    allocations = _pending_allocations(session, [movement])
    if allocations:
        ensure_manager_of_all(session, caller, [child.area_id for child in allocations])

    target_ids = [movement.id] + [child.id for child in allocations]
    updated = guarded_status_update(
        session,
        target_ids,
        MovementStatus.PENDING,
        _review_values(caller, action, reason, datetime.utcnow()),
    )
    if updated != len(target_ids):
        session.refresh(movement)
        if movement.status != MovementStatus.PENDING.value:
            raise ConflictError(f"Cannot {verb} movement with status {movement.status}")
        raise ConflictError(f"Cannot {verb} movement: its split allocations changed during review")

    history_action = _review_history_action(action)
    history_comment = comment if action is LifecycleAction.APPROVE else (comment or reason)
    for target_id in target_ids:
        record_history(session, target_id, caller.id, history_action, comment=history_comment)
    session.flush()
    session.refresh(movement)
    logger.info(
        "Movement %s %s by user %s (%d allocation(s))", movement.id, movement.status, caller.id, len(allocations)
    )
    return movement


def approve_movement(session: Session, caller: Caller, movement_id: int, comment: Optional[str] = None) -> Movement:
    return review_movement(session, caller, movement_id, LifecycleAction.APPROVE, comment=comment)


def reject_movement(
    session: Session,
    caller: Caller,
    movement_id: int,
    reason: Optional[str] = None,
    comment: Optional[str] = None,
) -> Movement:
    return review_movement(session, caller, movement_id, LifecycleAction.REJECT, comment=comment, reason=reason)


def bulk_review(
    session: Session,
    caller: Caller,
    ids: list[int],
    action: LifecycleAction,
    comment: Optional[str] = None,
    reason: Optional[str] = None,
) -> list[Movement]:
    """
    All-or-nothing approve/reject of a batch.

    Validation (existence, manager of every area, all PENDING) completes
    before the single guarded UPDATE; if that UPDATE touches fewer rows than
    requested, the raised conflict rolls the whole batch back. PENDING
    allocations of split parents in the batch are reviewed along with them.
    """
    ids = unique_ids(ids)
    movements = list(
        session.execute(
            select(Movement).where(Movement.id.in_(ids), Movement.deleted_at.is_(None)).order_by(Movement.id)
        ).scalars()
    )
    if len(movements) != len(ids):
        raise NotFoundError(f"{len(ids) - len(movements)} movement(s) not found")

    ensure_manager_of_all(session, caller, [m.area_id for m in movements])

    not_pending = [m for m in movements if not is_allowed(m.status, action)]
    if not_pending:
        raise ConflictError(f"{len(not_pending)} movement(s) are not pending")

    requested = set(ids)
    allocations = [child for child in _pending_allocations(session, movements) if child.id not in requested]
    if allocations:
        ensure_manager_of_all(session, caller, [child.area_id for child in allocations])
    target_ids = ids + [child.id for child in allocations]

    updated = guarded_status_update(
        session,
        target_ids,
        MovementStatus.PENDING,
        _review_values(caller, action, reason, datetime.utcnow()),
    )
    if updated != len(target_ids):
        raise ConflictError(f"{len(target_ids) - updated} movement(s) are not pending")

    history_action = _review_history_action(action)
    history_comment = comment if action is LifecycleAction.APPROVE else (comment or reason)
    for target_id in target_ids:
        record_history(session, target_id, caller.id, history_action, comment=history_comment)

    session.flush()
    logger.info("Bulk %s of %d movement(s) by user %s", action.value.lower(), len(ids), caller.id)
    return movements


def add_comment(session: Session, caller: Caller, movement_id: int, comment: str) -> MovementApproval:
    movement = get_active_movement(session, movement_id)
    ensure_area_manager(session, caller, movement.area_id, "You must be an area manager to add comments")
    entry = record_history(session, movement.id, caller.id, HistoryAction.COMMENT, comment=comment)
    session.flush()
    return entry


def get_history(session: Session, caller: Caller, movement_id: int) -> list[MovementApproval]:
    movement = get_active_movement(session, movement_id)
    ensure_creator(caller, movement)
    return list(
        session.execute(
            select(MovementApproval)
            .where(MovementApproval.movement_id == movement.id)
            .order_by(MovementApproval.created_at.asc(), MovementApproval.id.asc())
        ).scalars()
    )


# ---------------------------------------------------------------------------
# Splits
# ---------------------------------------------------------------------------

def _validate_allocations(session: Session, parent: Movement, allocations: list[SplitAllocation]) -> None:
    total = sum(allocation.amount for allocation in allocations)
    if total != parent.amount:
        raise BadRequestError(f"Total allocated amount ({total}) must equal parent amount ({parent.amount})")

    for allocation in allocations:
        get_active_area(session, allocation.area_id)
        if allocation.department_id is not None:
            validate_department(session, allocation.department_id, allocation.area_id)


def _create_allocations(session: Session, parent: Movement, allocations: list[SplitAllocation]) -> list[Movement]:
    children: list[Movement] = []
    for allocation in allocations:
        child = Movement(
            area_id=allocation.area_id,
            department_id=allocation.department_id,
            user_id=parent.user_id,
            source_bank_account_id=parent.source_bank_account_id,
            destination_bank_account_id=parent.destination_bank_account_id,
            is_internal_transfer=parent.is_internal_transfer,
            type=parent.type,
            status=parent.status,
            amount=allocation.amount,
            currency=parent.currency,
            description=allocation.description or f"Split from: {parent.description}",
            category=parent.category,
            reference=parent.reference,
            transaction_date=parent.transaction_date,
            approved_by_user_id=parent.approved_by_user_id,
            approved_at=parent.approved_at,
            rejected_by_user_id=parent.rejected_by_user_id,
            rejected_at=parent.rejected_at,
            rejection_reason=parent.rejection_reason,
            parent_id=parent.id,
        )
        session.add(child)
        children.append(child)
    return children


def _remove_allocations(parent: Movement, now: datetime) -> int:
    removed = 0
    for child in parent.children:
        if child.deleted_at is None:
            child.deleted_at = now
            removed += 1
    return removed


def split_movement(
    session: Session,
    caller: Caller,
    movement_id: int,
    allocations: list[SplitAllocation],
) -> tuple[Movement, list[Movement]]:
    """Split a movement into child allocations across areas; amounts must add up exactly."""
    if not caller.is_admin:
        raise ForbiddenError("Only administrators can split movements", reason="not_admin")

    parent = get_active_movement(session, movement_id)
    if parent.is_split_parent:
        raise ConflictError("Movement is already split. Unsplit first to re-split.")
    if parent.parent_id is not None:
        raise BadRequestError("Cannot split a child movement. Split the parent instead.")
    _validate_allocations(session, parent, allocations)

    parent.is_split_parent = True
    children = _create_allocations(session, parent, allocations)

    record_history(
        session,
        parent.id,
        caller.id,
        HistoryAction.SPLIT,
        comment=f"Split into {len(allocations)} allocations",
        metadata={"allocations": [a.model_dump() for a in allocations]},
    )
    session.flush()
    logger.info("Movement %s split into %d allocations by user %s", parent.id, len(children), caller.id)
    return parent, children


def update_split(
    session: Session,
    caller: Caller,
    movement_id: int,
    allocations: list[SplitAllocation],
) -> tuple[Movement, list[Movement]]:
    """Replace the allocations of an already split movement."""
    if not caller.is_admin:
        raise ForbiddenError("Only administrators can update split movements", reason="not_admin")

    parent = get_active_movement(session, movement_id)
    if parent.parent_id is not None:
        raise BadRequestError("Cannot update split on a child movement. Update the parent instead.")
    if not parent.is_split_parent:
        raise BadRequestError("Movement is not split. Use split endpoint instead.")
    _validate_allocations(session, parent, allocations)

    removed = _remove_allocations(parent, datetime.utcnow())
    children = _create_allocations(session, parent, allocations)

    record_history(
        session,
        parent.id,
        caller.id,
        HistoryAction.SPLIT,
        comment=f"Split updated: {removed} allocation(s) replaced by {len(allocations)}",
        metadata={"allocations": [a.model_dump() for a in allocations], "replaced": removed},
    )
    session.flush()
    logger.info("Split of movement %s replaced by user %s (%d -> %d)", parent.id, caller.id, removed, len(children))
    return parent, children


def unsplit_movement(session: Session, caller: Caller, movement_id: int) -> Movement:
    if not caller.is_admin:
        raise ForbiddenError("Only administrators can unsplit movements", reason="not_admin")

    parent = get_active_movement(session, movement_id)
    if not parent.is_split_parent:
        raise BadRequestError("Movement is not split")

    removed = _remove_allocations(parent, datetime.utcnow())
    parent.is_split_parent = False

    record_history(
        session,
        parent.id,
        caller.id,
        HistoryAction.UNSPLIT,
        comment=f"Removed {removed} split allocation(s)",
    )
    session.flush()
    return parent


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

_SORT_COLUMNS = {
    "date": Movement.transaction_date,
    "amount": Movement.amount,
    "status": Movement.status,
    "type": Movement.type,
}


def list_movements(
    session: Session,
    caller: Caller,
    *,
    limit: int = 100,
    cursor: Optional[int] = None,
    area_id: Optional[int] = None,
    department_id: Optional[int] = None,
    type_filter: Optional[str] = None,
    status_filter: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    min_amount: Optional[int] = None,
    max_amount: Optional[int] = None,
    sort_by: str = "date",
    sort_order: str = "desc",
) -> tuple[list[Movement], Optional[int]]:
    """Keyset-paginated movements visible to the caller; returns (items, next_cursor)."""
    stmt = select(Movement).where(Movement.deleted_at.is_(None))

    area_ids = accessible_area_ids(session, caller)
    if area_ids is not None:
        if not area_ids:
            return [], None
        stmt = stmt.where(Movement.area_id.in_(area_ids))

    if area_id is not None:
        stmt = stmt.where(Movement.area_id == area_id)
    if department_id is not None:
        stmt = stmt.where(Movement.department_id == department_id)
    if type_filter:
        stmt = stmt.where(Movement.type == type_filter)
    if status_filter:
        stmt = stmt.where(Movement.status == status_filter)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                Movement.description.ilike(pattern),
                Movement.reference.ilike(pattern),
                Movement.category.ilike(pattern),
            )
        )
    if start_date is not None:
        stmt = stmt.where(Movement.transaction_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(Movement.transaction_date <= end_date)
    if min_amount is not None:
        stmt = stmt.where(Movement.amount >= min_amount)
    if max_amount is not None:
        stmt = stmt.where(Movement.amount <= max_amount)

    column = _SORT_COLUMNS.get(sort_by, Movement.transaction_date)
    descending = sort_order != "asc"

    if cursor is not None:
        anchor = session.get(Movement, cursor)
        if anchor is not None:
            anchor_value = getattr(anchor, column.key)
            if descending:
                stmt = stmt.where(or_(column < anchor_value, and_(column == anchor_value, Movement.id < anchor.id)))
            else:
                stmt = stmt.where(or_(column > anchor_value, and_(column == anchor_value, Movement.id > anchor.id)))

    if descending:
        stmt = stmt.order_by(column.desc(), Movement.id.desc())
    else:
        stmt = stmt.order_by(column.asc(), Movement.id.asc())

    rows = list(session.execute(stmt.limit(limit + 1)).scalars())
    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = rows[-1].id
    return rows, next_cursor


def get_movement(session: Session, caller: Caller, movement_id: int) -> Movement:
    movement = get_active_movement(session, movement_id)
    ensure_can_read(session, caller, movement)
    return movement
