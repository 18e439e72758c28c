from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from treasury.auth import Caller, get_current_user
from treasury.db import get_session
from treasury.enums import MovementStatus, MovementType
from treasury.schemas import CategoryBreakdownOut, CategoryTotal, MonthlySummaryRow
from treasury.services import reports


router = APIRouter()


def _csv_response(content: str, name: str) -> Response:
    filename = f"{name}-{datetime.utcnow():%Y%m%d}.csv"
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/movements/export")
async def export_movements(
    area_id: Optional[int] = None,
    department_id: Optional[int] = None,
    type_: Optional[MovementType] = Query(default=None, alias="type"),
    status_: Optional[MovementStatus] = Query(default=None, alias="status"),
    category: Optional[str] = Query(default=None, max_length=100),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    caller: Caller = Depends(get_current_user),
) -> Response:
    """
    CSV download of the movements in the caller's areas, newest first.

    Columns: Date, Type, Status, Amount (major units), Currency, Description,
    Category, Reference, Area, Area Code, Department, Department Code,
    Created By, Created At.
    """
    with get_session() as session:
        movements = reports.export_movements(
            session,
            caller,
            area_id=area_id,
            department_id=department_id,
            type_filter=type_.value if type_ else None,
            status_filter=status_.value if status_ else None,
            category=category,
            start_date=start_date,
            end_date=end_date,
        )
        content = reports.movements_csv(movements)
    return _csv_response(content, "movements")


@router.get("/monthly-summary", response_model=List[MonthlySummaryRow])
async def monthly_summary(
    months: int = Query(default=reports.DEFAULT_SUMMARY_MONTHS, ge=1, le=reports.MAX_SUMMARY_MONTHS),
    area_id: Optional[int] = None,
    caller: Caller = Depends(get_current_user),
) -> List[MonthlySummaryRow]:
    with get_session() as session:
        summary = reports.monthly_summary(session, caller, months=months, area_id=area_id)
    return [MonthlySummaryRow(**row) for row in summary]


@router.get("/monthly-summary/export")
async def export_monthly_summary(
    months: int = Query(default=reports.DEFAULT_SUMMARY_MONTHS, ge=1, le=reports.MAX_SUMMARY_MONTHS),
    area_id: Optional[int] = None,
    caller: Caller = Depends(get_current_user),
) -> Response:
    with get_session() as session:
        summary = reports.monthly_summary(session, caller, months=months, area_id=area_id)
    return _csv_response(reports.monthly_summary_csv(summary), "monthly-summary")


@router.get("/category-breakdown", response_model=CategoryBreakdownOut)
async def category_breakdown(
    area_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    caller: Caller = Depends(get_current_user),
) -> CategoryBreakdownOut:
    """Approved expenses grouped by category; movements without one count as ``Uncategorized``."""
    with get_session() as session:
        result = reports.category_breakdown(
            session, caller, area_id=area_id, start_date=start_date, end_date=end_date
        )
    return CategoryBreakdownOut(
        breakdown=[CategoryTotal(**row) for row in result["breakdown"]],
        total=result["total"],
    )


@router.get("/category-breakdown/export")
async def export_category_breakdown(
    area_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    caller: Caller = Depends(get_current_user),
) -> Response:
    with get_session() as session:
        result = reports.category_breakdown(
            session, caller, area_id=area_id, start_date=start_date, end_date=end_date
        )
    return _csv_response(reports.category_breakdown_csv(result["breakdown"]), "category-breakdown")
