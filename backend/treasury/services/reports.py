"""
Reports: filtered movement exports plus monthly and category summaries.

CSV output starts with a UTF-8 BOM so spreadsheet tools detect the encoding.
Amounts in CSV files are written in major units (``1234`` -> ``12.34``); the
JSON summaries keep minor units like the rest of the API.
"""

from __future__ import annotations

import csv
import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from io import StringIO
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from treasury.auth import Caller, ensure_area_member
from treasury.enums import MovementType
from treasury.models import Movement
from treasury.services.aggregation import balance_conditions, month_keys, percentage, scoped_areas, window_start
from treasury.services.movements import get_active_area


logger = logging.getLogger(__name__)

MAX_SUMMARY_MONTHS = 24
DEFAULT_SUMMARY_MONTHS = 12

EXPORT_HEADERS = [
    "Date",
    "Type",
    "Status",
    "Amount",
    "Currency",
    "Description",
    "Category",
    "Reference",
    "Area",
    "Area Code",
    "Department",
    "Department Code",
    "Created By",
    "Created At",
]
MONTHLY_HEADERS = ["Month", "Income", "Expenses", "Net", "Movements"]
CATEGORY_HEADERS = ["Category", "Amount", "Transaction Count", "Percentage"]


def format_amount(minor: int) -> str:
    return f"{Decimal(minor) / 100:.2f}"


def _to_csv(headers: list[str], rows: Iterable[list]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    writer.writerows(rows)
    return "\ufeff" + buffer.getvalue()


def report_area_ids(session: Session, caller: Caller, area_id: Optional[int] = None) -> list[int]:
    """Areas a report covers: the requested one (checked), or every area the caller sees."""
    if area_id is not None:
        get_active_area(session, area_id)
        ensure_area_member(session, caller, area_id)
        return [area_id]
    return [area.id for area in scoped_areas(session, caller)]


# ---------------------------------------------------------------------------
# Movement export
# ---------------------------------------------------------------------------

def export_movements(
    session: Session,
    caller: Caller,
    *,
    area_id: Optional[int] = None,
    department_id: Optional[int] = None,
    type_filter: Optional[str] = None,
    status_filter: Optional[str] = None,
    category: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> list[Movement]:
    """
    Movements matching the filters, newest first.

    Split parents are left out: their allocations are exported instead, so
    summing the Amount column does not count a split twice.
    """
    area_ids = report_area_ids(session, caller, area_id)
    if not area_ids:
        return []

    stmt = (
        select(Movement)
        .options(selectinload(Movement.area), selectinload(Movement.department), selectinload(Movement.user))
        .where(
            Movement.area_id.in_(area_ids),
            Movement.deleted_at.is_(None),
            Movement.is_split_parent.is_(False),
        )
    )
    if department_id is not None:
        stmt = stmt.where(Movement.department_id == department_id)
    if type_filter:
        stmt = stmt.where(Movement.type == type_filter)
    if status_filter:
        stmt = stmt.where(Movement.status == status_filter)
    if category:
        stmt = stmt.where(Movement.category == category)
    if start_date is not None:
        stmt = stmt.where(Movement.transaction_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(Movement.transaction_date <= end_date)

    movements = list(
        session.execute(stmt.order_by(Movement.transaction_date.desc(), Movement.id.desc())).scalars()
    )
    logger.info("Movement export of %d row(s) for user %s", len(movements), caller.id)
    return movements


def movements_csv(movements: Iterable[Movement]) -> str:
    rows = []
    for m in movements:
        rows.append(
            [
                m.transaction_date.strftime("%Y-%m-%d"),
                m.type,
                m.status,
                format_amount(m.amount),
                m.currency,
                m.description,
                m.category or "",
                m.reference or "",
                m.area.name,
                m.area.code,
                m.department.name if m.department else "",
                m.department.code if m.department else "",
                m.user.name if m.user else "",
                m.created_at.strftime("%Y-%m-%d") if m.created_at else "",
            ]
        )
    return _to_csv(EXPORT_HEADERS, rows)


# ---------------------------------------------------------------------------
# Monthly summary
# ---------------------------------------------------------------------------

def monthly_summary(
    session: Session,
    caller: Caller,
    months: int = DEFAULT_SUMMARY_MONTHS,
    area_id: Optional[int] = None,
) -> list[dict]:
    """Approved income, expenses, net and movement count per month, oldest first."""
    keys = month_keys(months)
    summary = {key: {"month": key, "income": 0, "expenses": 0, "net": 0, "count": 0} for key in keys}

    area_ids = report_area_ids(session, caller, area_id)
    if area_ids:
        rows = session.execute(
            select(Movement.type, Movement.amount, Movement.transaction_date).where(
                *balance_conditions(area_ids),
                Movement.type.in_([MovementType.INCOME.value, MovementType.EXPENSE.value]),
                Movement.transaction_date >= window_start(months),
            )
        ).all()
        for movement_type, amount, transaction_date in rows:
            bucket = summary.get(transaction_date.strftime("%Y-%m"))
            if bucket is None:
                continue
            if movement_type == MovementType.INCOME.value:
                bucket["income"] += amount
            else:
                bucket["expenses"] += amount
            bucket["count"] += 1

    for bucket in summary.values():
        bucket["net"] = bucket["income"] - bucket["expenses"]
    return [summary[key] for key in keys]


def monthly_summary_csv(summary: list[dict]) -> str:
    return _to_csv(
        MONTHLY_HEADERS,
        (
            [row["month"], format_amount(row["income"]), format_amount(row["expenses"]), format_amount(row["net"]), row["count"]]
            for row in summary
        ),
    )


# ---------------------------------------------------------------------------
# Category breakdown
# ---------------------------------------------------------------------------

def category_breakdown(
    session: Session,
    caller: Caller,
    *,
    area_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    """Approved expenses per category over an optional date range."""
    area_ids = report_area_ids(session, caller, area_id)

    totals: dict[str, dict] = defaultdict(lambda: {"amount": 0, "count": 0})
    if area_ids:
        stmt = select(Movement.category, Movement.amount).where(
            *balance_conditions(area_ids), Movement.type == MovementType.EXPENSE.value
        )
        if start_date is not None:
            stmt = stmt.where(Movement.transaction_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(Movement.transaction_date <= end_date)
        for category, amount in session.execute(stmt).all():
            entry = totals[category or "Uncategorized"]
            entry["amount"] += amount
            entry["count"] += 1

    total = sum(entry["amount"] for entry in totals.values())
    breakdown = [
        {"category": category, **entry, "percentage": percentage(entry["amount"], total)}
        for category, entry in totals.items()
    ]
    breakdown.sort(key=lambda item: item["amount"], reverse=True)
    return {"breakdown": breakdown, "total": total}


def category_breakdown_csv(breakdown: list[dict]) -> str:
    return _to_csv(
        CATEGORY_HEADERS,
        (
            [row["category"], format_amount(row["amount"]), row["count"], f"{row['percentage']:.2f}%"]
            for row in breakdown
        ),
    )
