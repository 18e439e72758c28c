"""
Movement lifecycle state machine.

``TRANSITIONS`` is the single table of allowed (status, action) pairs. Call
sites ask ``transition()`` for the next status instead of checking statuses
themselves; ``guarded_status_update()`` then re-checks the expected status in
the UPDATE's WHERE clause so a concurrent writer turns into a conflict.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from treasury.enums import HistoryAction, MovementStatus
from treasury.errors import ConflictError
from treasury.models import Movement, MovementApproval


logger = logging.getLogger(__name__)


class LifecycleAction(str, Enum):
    FINALIZE = "FINALIZE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    EDIT = "EDIT"
    DELETE = "DELETE"


_DRAFT = MovementStatus.DRAFT
_PENDING = MovementStatus.PENDING
_APPROVED = MovementStatus.APPROVED
_REJECTED = MovementStatus.REJECTED

TRANSITIONS: dict[tuple[MovementStatus, LifecycleAction], MovementStatus] = {
    (_DRAFT, LifecycleAction.FINALIZE): _PENDING,
    (_PENDING, LifecycleAction.APPROVE): _APPROVED,
    (_PENDING, LifecycleAction.REJECT): _REJECTED,
    (_DRAFT, LifecycleAction.EDIT): _DRAFT,
    (_PENDING, LifecycleAction.EDIT): _PENDING,
    (_APPROVED, LifecycleAction.EDIT): _PENDING,
    (_REJECTED, LifecycleAction.EDIT): _PENDING,
    # Soft delete keeps the status; only deleted_at changes
    (_DRAFT, LifecycleAction.DELETE): _DRAFT,
    (_PENDING, LifecycleAction.DELETE): _PENDING,
    (_APPROVED, LifecycleAction.DELETE): _APPROVED,
    (_REJECTED, LifecycleAction.DELETE): _REJECTED,
}

_VERBS = {
    LifecycleAction.FINALIZE: "finalize",
    LifecycleAction.APPROVE: "approve",
    LifecycleAction.REJECT: "reject",
    LifecycleAction.EDIT: "edit",
    LifecycleAction.DELETE: "delete",
}


def transition(current: str | MovementStatus, action: LifecycleAction) -> MovementStatus:
    """Next status for ``action`` from ``current``; ``ConflictError`` if not allowed."""
    status = MovementStatus(current)
    try:
        return TRANSITIONS[(status, action)]
    except KeyError:
        raise ConflictError(f"Cannot {_VERBS[action]} movement with status {status.value}") from None


def is_allowed(current: str | MovementStatus, action: LifecycleAction) -> bool:
    return (MovementStatus(current), action) in TRANSITIONS


def guarded_status_update(
    session: Session,
    ids: list[int],
    expected: MovementStatus,
    values: dict[str, Any],
) -> int:
    """
    UPDATE the movements in ``ids`` that are still ``expected`` and not deleted.

    Returns the number of rows changed. Callers compare it with ``len(ids)``;
    a shortfall means another request changed a row since it was read.
    """
    result = session.execute(
        update(Movement)
        .where(
            Movement.id.in_(ids),
            Movement.status == expected.value,
            Movement.deleted_at.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    # Reload instances already in the session so callers see the persisted row
    wanted = set(ids)
    for obj in list(session.identity_map.values()):
        if isinstance(obj, Movement) and obj.id in wanted:
            session.refresh(obj)
    return result.rowcount or 0


def record_history(
    session: Session,
    movement_id: int,
    user_id: int,
    action: HistoryAction,
    comment: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> MovementApproval:
    entry = MovementApproval(
        movement_id=movement_id,
        user_id=user_id,
        action=action.value,
        comment=comment,
        change_metadata=metadata,
        created_at=datetime.utcnow(),
    )
    session.add(entry)
    logger.debug("History %s recorded for movement %s by user %s", action.value, movement_id, user_id)
    return entry
