from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from treasury.auth import Caller, get_current_user
from treasury.db import get_session
from treasury.schemas import (
    AreaBalanceOut,
    AreaExpenseShare,
    AreaSummary,
    CategoryShare,
    DepartmentExpenseShare,
    DepartmentSummary,
    ExpenseBreakdownOut,
    ExpensesByAreaOut,
    ExpensesByDepartmentOut,
    MonthlyTotals,
    OverviewOut,
)
from treasury.services import aggregation


router = APIRouter()


@router.get("/overview", response_model=OverviewOut)
async def get_overview(caller: Caller = Depends(get_current_user)) -> OverviewOut:
    """Approved income/expense totals plus draft and pending counts across the caller's areas."""
    with get_session() as session:
        return OverviewOut(**aggregation.overview(session, caller))


@router.get("/balances", response_model=List[AreaBalanceOut])
async def get_balances(caller: Caller = Depends(get_current_user)) -> List[AreaBalanceOut]:
    with get_session() as session:
        return [
            AreaBalanceOut(
                area=AreaSummary.model_validate(row["area"]),
                income=row["income"],
                expenses=row["expenses"],
                balance=row["balance"],
            )
            for row in aggregation.balances(session, caller)
        ]


@router.get("/expense-breakdown", response_model=ExpenseBreakdownOut)
async def get_expense_breakdown(
    months: int = Query(default=aggregation.DEFAULT_MONTHS, ge=1, le=12),
    caller: Caller = Depends(get_current_user),
) -> ExpenseBreakdownOut:
    with get_session() as session:
        data = aggregation.expense_breakdown(session, caller, months)
    return ExpenseBreakdownOut(
        breakdown=[CategoryShare(**item) for item in data["breakdown"]],
        total=data["total"],
    )


@router.get("/income-vs-expense", response_model=List[MonthlyTotals])
async def get_income_vs_expense(
    months: int = Query(default=aggregation.DEFAULT_MONTHS, ge=1, le=12),
    caller: Caller = Depends(get_current_user),
) -> List[MonthlyTotals]:
    """One entry per month, oldest first; months without movements report zeros."""
    with get_session() as session:
        return [MonthlyTotals(**item) for item in aggregation.income_vs_expense(session, caller, months)]


@router.get("/expenses-by-area", response_model=ExpensesByAreaOut)
async def get_expenses_by_area(
    months: int = Query(default=aggregation.DEFAULT_MONTHS, ge=1, le=12),
    caller: Caller = Depends(get_current_user),
) -> ExpensesByAreaOut:
    with get_session() as session:
        data = aggregation.expenses_by_area(session, caller, months)
        breakdown = [
            AreaExpenseShare(
                area=AreaSummary.model_validate(item["area"]),
                amount=item["amount"],
                percentage=item["percentage"],
            )
            for item in data["breakdown"]
        ]
    return ExpensesByAreaOut(breakdown=breakdown, total=data["total"])


@router.get("/expenses-by-department", response_model=ExpensesByDepartmentOut)
async def get_expenses_by_department(
    months: int = Query(default=aggregation.DEFAULT_MONTHS, ge=1, le=12),
    area_id: Optional[int] = None,
    caller: Caller = Depends(get_current_user),
) -> ExpensesByDepartmentOut:
    with get_session() as session:
        data = aggregation.expenses_by_department(session, caller, months, area_id=area_id)
        breakdown = [
            DepartmentExpenseShare(
                department=DepartmentSummary.model_validate(item["department"]),
                area=AreaSummary.model_validate(item["area"]),
                amount=item["amount"],
                percentage=item["percentage"],
            )
            for item in data["breakdown"]
        ]
    return ExpensesByDepartmentOut(breakdown=breakdown, total=data["total"])
