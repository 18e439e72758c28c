"""
Read-only dashboard figures.

Totals count APPROVED, non-deleted movements only. Internal transfers are left
out (money moved between the organisation's own accounts) and so are split
parents, whose amount is carried by their children. Everything is scoped to
the caller's areas; admins see every area.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from treasury.auth import Caller
from treasury.enums import MovementStatus, MovementType
from treasury.models import Area, Movement, UserArea


DEFAULT_MONTHS = 6


def percentage(amount: int, total: int) -> float:
    return (amount / total) * 100 if total > 0 else 0.0


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def month_keys(months: int, now: Optional[datetime] = None) -> list[str]:
    """``YYYY-MM`` keys for the last ``months`` months, oldest first, current month last."""
    now = now or datetime.utcnow()
    keys = []
    for offset in range(months - 1, -1, -1):
        year, month = shift_month(now.year, now.month, -offset)
        keys.append(f"{year:04d}-{month:02d}")
    return keys


def window_start(months: int, now: Optional[datetime] = None) -> datetime:
    """First instant of the oldest month in the window."""
    now = now or datetime.utcnow()
    year, month = shift_month(now.year, now.month, -(months - 1))
    return datetime(year, month, 1)


def scoped_areas(session: Session, caller: Caller) -> list[Area]:
    stmt = select(Area).where(Area.deleted_at.is_(None)).order_by(Area.name)
    if not caller.is_admin:
        stmt = stmt.join(UserArea, UserArea.area_id == Area.id).where(UserArea.user_id == caller.id)
    return list(session.execute(stmt).scalars())


def balance_conditions(area_ids: list[int]) -> list:
    return [
        Movement.area_id.in_(area_ids),
        Movement.status == MovementStatus.APPROVED.value,
        Movement.deleted_at.is_(None),
        Movement.is_internal_transfer.is_(False),
        Movement.is_split_parent.is_(False),
    ]


def _sum_by_type(session: Session, area_ids: list[int], movement_type: MovementType) -> int:
    total = session.execute(
        select(func.coalesce(func.sum(Movement.amount), 0)).where(
            *balance_conditions(area_ids), Movement.type == movement_type.value
        )
    ).scalar()
    return int(total or 0)


def _count_status(session: Session, area_ids: list[int], status: MovementStatus) -> int:
    return session.execute(
        select(func.count(Movement.id)).where(
            Movement.area_id.in_(area_ids),
            Movement.status == status.value,
            Movement.deleted_at.is_(None),
            Movement.is_split_parent.is_(False),
        )
    ).scalar() or 0


def overview(session: Session, caller: Caller) -> dict:
    area_ids = [area.id for area in scoped_areas(session, caller)]
    total_income = _sum_by_type(session, area_ids, MovementType.INCOME)
    total_expenses = _sum_by_type(session, area_ids, MovementType.EXPENSE)
    return {
        "total_income": total_income,
        "total_expenses": total_expenses,
        "balance": total_income - total_expenses,
        "draft_count": _count_status(session, area_ids, MovementStatus.DRAFT),
        "pending_count": _count_status(session, area_ids, MovementStatus.PENDING),
        "areas_count": len(area_ids),
    }


def balances(session: Session, caller: Caller) -> list[dict]:
    """Income, expenses and balance for every area the caller can see."""
    areas = scoped_areas(session, caller)
    if not areas:
        return []

    rows = session.execute(
        select(Movement.area_id, Movement.type, func.sum(Movement.amount))
        .where(*balance_conditions([area.id for area in areas]))
        .group_by(Movement.area_id, Movement.type)
    ).all()

    totals: dict[int, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for area_id, movement_type, amount in rows:
        totals[area_id][movement_type] += int(amount or 0)

    result = []
    for area in areas:
        income = totals[area.id][MovementType.INCOME.value]
        expenses = totals[area.id][MovementType.EXPENSE.value]
        result.append({"area": area, "income": income, "expenses": expenses, "balance": income - expenses})
    return result


def _expenses_since(session: Session, area_ids: list[int], months: int) -> list[Movement]:
    if not area_ids:
        return []
    return list(
        session.execute(
            select(Movement)
            .options(selectinload(Movement.area), selectinload(Movement.department))
            .where(
                *balance_conditions(area_ids),
                Movement.type == MovementType.EXPENSE.value,
                Movement.transaction_date >= window_start(months),
            )
        ).scalars()
    )


def expense_breakdown(session: Session, caller: Caller, months: int = DEFAULT_MONTHS) -> dict:
    area_ids = [area.id for area in scoped_areas(session, caller)]

    by_category: dict[str, int] = defaultdict(int)
    for movement in _expenses_since(session, area_ids, months):
        by_category[movement.category or "Uncategorized"] += movement.amount

    total = sum(by_category.values())
    breakdown = [
        {"category": category, "amount": amount, "percentage": percentage(amount, total)}
        for category, amount in by_category.items()
    ]
    breakdown.sort(key=lambda item: item["amount"], reverse=True)
    return {"breakdown": breakdown, "total": total}


def income_vs_expense(session: Session, caller: Caller, months: int = DEFAULT_MONTHS) -> list[dict]:
    """Monthly income and expenses; months without movements are reported with zeros."""
    keys = month_keys(months)
    monthly = {key: {"month": key, "income": 0, "expenses": 0} for key in keys}

    area_ids = [area.id for area in scoped_areas(session, caller)]
    if area_ids:
        rows = session.execute(
            select(Movement.type, Movement.amount, Movement.transaction_date).where(
                *balance_conditions(area_ids),
                Movement.type.in_([MovementType.INCOME.value, MovementType.EXPENSE.value]),
                Movement.transaction_date >= window_start(months),
            )
        ).all()
        for movement_type, amount, transaction_date in rows:
            bucket = monthly.get(transaction_date.strftime("%Y-%m"))
            if bucket is None:
                continue
            if movement_type == MovementType.INCOME.value:
                bucket["income"] += amount
            else:
                bucket["expenses"] += amount

    return [monthly[key] for key in keys]


def expenses_by_area(session: Session, caller: Caller, months: int = DEFAULT_MONTHS) -> dict:
    area_ids = [area.id for area in scoped_areas(session, caller)]

    by_area: dict[int, dict] = {}
    for movement in _expenses_since(session, area_ids, months):
        entry = by_area.setdefault(movement.area_id, {"area": movement.area, "amount": 0})
        entry["amount"] += movement.amount

    total = sum(entry["amount"] for entry in by_area.values())
    breakdown = [
        {**entry, "percentage": percentage(entry["amount"], total)}
        for entry in by_area.values()
    ]
    breakdown.sort(key=lambda item: item["amount"], reverse=True)
    return {"breakdown": breakdown, "total": total}


def expenses_by_department(
    session: Session,
    caller: Caller,
    months: int = DEFAULT_MONTHS,
    area_id: Optional[int] = None,
) -> dict:
    """Expenses per department; movements without a department are not counted."""
    area_ids = [area.id for area in scoped_areas(session, caller)]
    if area_id is not None:
        # Outside the caller's areas: empty rather than an error
        area_ids = [area_id] if area_id in area_ids else []

    by_department: dict[int, dict] = {}
    for movement in _expenses_since(session, area_ids, months):
        if movement.department_id is None:
            continue
        entry = by_department.setdefault(
            movement.department_id,
            {"department": movement.department, "area": movement.area, "amount": 0},
        )
        entry["amount"] += movement.amount

    total = sum(entry["amount"] for entry in by_department.values())
    breakdown = [
        {**entry, "percentage": percentage(entry["amount"], total)}
        for entry in by_department.values()
    ]
    breakdown.sort(key=lambda item: item["amount"], reverse=True)
    return {"breakdown": breakdown, "total": total}
