"""
Bulk CSV import of movements as DRAFT rows.

Expected headers (case-insensitive):
  Date, Description, Amount                 required
  Type, Category, Reference, Department     optional

``Department`` holds a department code of the target area. Rows with a
missing or unknown code are still imported; they simply need
categorization before they can be finalized.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from treasury import settings
from treasury.auth import Caller, ensure_area_member
from treasury.enums import HistoryAction, MovementStatus, MovementType
from treasury.errors import BadRequestError
from treasury.models import Department, ImportJob, Movement
from treasury.services.lifecycle import record_history
from treasury.services.movements import get_active_area


logger = logging.getLogger(__name__)

SOURCE_FORMAT = "MOVEMENTS_CSV"
REQUIRED_HEADERS = ("date", "description", "amount")
OPTIONAL_HEADERS = ("type", "category", "reference", "department")
DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d/%m/%y")


@dataclass
class ParsedRow:
    row: int
    transaction_date: datetime
    description: str
    amount: int
    type: MovementType
    category: Optional[str] = None
    reference: Optional[str] = None
    department_code: Optional[str] = None


def parse_date(value: str) -> Optional[datetime]:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def parse_amount(value: str) -> int:
    """
    Decimal string to signed minor units, e.g. ``"-1,234.50"`` -> ``-123450``.

    Raises ``ValueError`` for anything that is not an exact amount with at
    most two decimals.
    """
    try:
        amount = Decimal(value.replace(",", "").strip())
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}") from None
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")

    minor = amount * 100
    if minor != minor.to_integral_value():
        raise ValueError(f"Amount has more than two decimals: {value!r}")
    if abs(minor) > settings.MAX_AMOUNT:
        raise ValueError(f"Amount is too large: {value!r}")
    return int(minor)


def _parse_row(row_number: int, row: dict[str, str]) -> ParsedRow:
    date_str = row.get("date", "")
    description = row.get("description", "")
    amount_str = row.get("amount", "")
    if not date_str or not description or not amount_str:
        raise ValueError("Date, Description and Amount are required")

    transaction_date = parse_date(date_str)
    if transaction_date is None:
        raise ValueError(f"Unrecognised date: {date_str!r}")

    signed = parse_amount(amount_str)
    if signed == 0:
        raise ValueError("Amount must not be zero")

    type_str = row.get("type", "").upper()
    if type_str:
        try:
            movement_type = MovementType(type_str)
        except ValueError:
            raise ValueError(f"Unknown type: {row.get('type')!r}") from None
    else:
        movement_type = MovementType.EXPENSE if signed < 0 else MovementType.INCOME

    return ParsedRow(
        row=row_number,
        transaction_date=transaction_date,
        description=description[:500],
        amount=abs(signed),
        type=movement_type,
        category=row.get("category") or None,
        reference=row.get("reference") or None,
        department_code=row.get("department") or None,
    )


def parse_movements_csv(text: str) -> tuple[list[ParsedRow], list[dict]]:
    """Parse CSV text into valid rows and per-row errors (row numbers count the header as 1)."""
    reader = csv.DictReader(StringIO(text))
    headers = {(name or "").strip().lower() for name in reader.fieldnames or []}
    missing = [name for name in REQUIRED_HEADERS if name not in headers]
    if missing:
        raise BadRequestError(
            f"CSV is missing required headers: {', '.join(name.capitalize() for name in missing)}"
        )

    parsed: list[ParsedRow] = []
    errors: list[dict] = []
    for row_number, raw in enumerate(reader, start=2):
        row = {
            (key or "").strip().lower(): (value or "").strip()
            for key, value in raw.items()
            if isinstance(value, str)
        }
        if not any(row.values()):
            continue
        try:
            parsed.append(_parse_row(row_number, row))
        except ValueError as exc:
            errors.append({"row": row_number, "message": str(exc)})

    return parsed, errors


def import_drafts(
    session: Session,
    caller: Caller,
    area_id: int,
    file_name: str,
    text: str,
) -> tuple[ImportJob, list[dict]]:
    """Create an ImportJob and one DRAFT movement per valid row; returns the job and row errors."""
    area = get_active_area(session, area_id)
    ensure_area_member(session, caller, area.id)

    parsed, errors = parse_movements_csv(text)
    if not parsed and not errors:
        raise BadRequestError("CSV contained no data rows.")

    departments = {
        department.code.lower(): department
        for department in session.execute(
            select(Department).where(Department.area_id == area.id, Department.deleted_at.is_(None))
        ).scalars()
    }

    job = ImportJob(
        file_name=file_name or "upload.csv",
        source_format=SOURCE_FORMAT,
        status="running",
        area_id=area.id,
        total_rows=len(parsed) + len(errors),
        initiated_by_user_id=caller.id,
        started_at=datetime.utcnow(),
    )
    session.add(job)
    session.flush()  # get job.id

    for item in parsed:
        department = departments.get(item.department_code.lower()) if item.department_code else None
        movement = Movement(
            area_id=area.id,
            department_id=department.id if department else None,
            user_id=caller.id,
            import_job_id=job.id,
            type=item.type.value,
            status=MovementStatus.DRAFT.value,
            amount=item.amount,
            currency=area.currency or settings.DEFAULT_CURRENCY,
            description=item.description,
            category=item.category,
            reference=item.reference,
            transaction_date=item.transaction_date,
        )
        session.add(movement)
        session.flush()
        if department:
            record_history(
                session,
                movement.id,
                caller.id,
                HistoryAction.CATEGORIZED,
                comment="Department assigned on import",
                metadata={"area_id": area.id, "department_id": department.id},
            )

    job.imported_rows = len(parsed)
    job.error_count = len(errors)
    job.status = "completed" if parsed else "failed"
    job.completed_at = datetime.utcnow()
    session.flush()

    logger.info(
        "Import job %s by user %s: %d row(s) imported, %d error(s)",
        job.id, caller.id, len(parsed), len(errors),
    )
    return job, errors
