import pytest
from sqlalchemy import select, update

from conftest import make_movement
from treasury.auth import Caller
from treasury.db import get_session
from treasury.enums import MovementStatus
from treasury.errors import ConflictError
from treasury.models import Movement, MovementApproval
from treasury.services.lifecycle import LifecycleAction, TRANSITIONS, is_allowed, transition
from treasury.services.movements import approve_movement, bulk_review


@pytest.mark.parametrize(
    "current,action,expected",
    [
        (MovementStatus.DRAFT, LifecycleAction.FINALIZE, MovementStatus.PENDING),
        (MovementStatus.PENDING, LifecycleAction.APPROVE, MovementStatus.APPROVED),
        (MovementStatus.PENDING, LifecycleAction.REJECT, MovementStatus.REJECTED),
        (MovementStatus.APPROVED, LifecycleAction.EDIT, MovementStatus.PENDING),
        (MovementStatus.REJECTED, LifecycleAction.EDIT, MovementStatus.PENDING),
        (MovementStatus.PENDING, LifecycleAction.EDIT, MovementStatus.PENDING),
        (MovementStatus.DRAFT, LifecycleAction.EDIT, MovementStatus.DRAFT),
        (MovementStatus.APPROVED, LifecycleAction.DELETE, MovementStatus.APPROVED),
    ],
)
def test_allowed_transitions(current, action, expected):
    assert transition(current, action) is expected


def test_transition_accepts_stored_string_status():
    assert transition("PENDING", LifecycleAction.APPROVE) is MovementStatus.APPROVED


@pytest.mark.parametrize(
    "current,action",
    [
        (MovementStatus.APPROVED, LifecycleAction.APPROVE),
        (MovementStatus.REJECTED, LifecycleAction.APPROVE),
        (MovementStatus.DRAFT, LifecycleAction.APPROVE),
        (MovementStatus.APPROVED, LifecycleAction.REJECT),
        (MovementStatus.PENDING, LifecycleAction.FINALIZE),
    ],
)
def test_disallowed_transitions_conflict(current, action):
    with pytest.raises(ConflictError) as exc_info:
        transition(current, action)
    assert exc_info.value.kind == "CONFLICT"
    assert current.value in exc_info.value.message


def test_cancelled_is_terminal():
    for action in LifecycleAction:
        assert not is_allowed(MovementStatus.CANCELLED, action)
    assert MovementStatus.CANCELLED not in TRANSITIONS.values()


def test_approve_conflict_message():
    with pytest.raises(ConflictError, match="Cannot approve movement with status APPROVED"):
        transition(MovementStatus.APPROVED, LifecycleAction.APPROVE)


def test_stale_approve_conflicts_and_writes_no_history(org):
    movement_id = make_movement(org["member_id"], org["area_id"])
    manager = Caller(id=org["manager_id"], name="Manager", email="m@example.org", email_verified=True, is_admin=False)

    with pytest.raises(ConflictError):
        with get_session() as session:
            loaded = session.get(Movement, movement_id)
            assert loaded.status == "PENDING"
            # Another reviewer rejects it behind this session's back
            session.execute(
                update(Movement)
                .where(Movement.id == movement_id)
                .values(status=MovementStatus.REJECTED.value)
                .execution_options(synchronize_session=False)
            )
            approve_movement(session, manager, movement_id)

    with get_session() as session:
        assert session.get(Movement, movement_id).status == "PENDING"
        history = session.execute(
            select(MovementApproval).where(MovementApproval.movement_id == movement_id)
        ).scalars().all()
    assert history == []


def test_bulk_approve_shortfall_rolls_back_whole_batch(org):
    ids = [make_movement(org["member_id"], org["area_id"], amount=100 * n) for n in range(1, 4)]
    manager = Caller(id=org["manager_id"], name="Manager", email="m@example.org", email_verified=True, is_admin=False)

    with pytest.raises(ConflictError, match="1 movement\\(s\\) are not pending"):
        with get_session() as session:
            for movement_id in ids:
                assert session.get(Movement, movement_id).status == "PENDING"
            # The middle movement is rejected by someone else after it was read
            session.execute(
                update(Movement)
                .where(Movement.id == ids[1])
                .values(status=MovementStatus.REJECTED.value)
                .execution_options(synchronize_session=False)
            )
            bulk_review(session, manager, ids, LifecycleAction.APPROVE)

    with get_session() as session:
        assert [session.get(Movement, movement_id).status for movement_id in ids] == ["PENDING"] * 3
        history = session.execute(
            select(MovementApproval).where(MovementApproval.movement_id.in_(ids))
        ).scalars().all()
    assert history == []
