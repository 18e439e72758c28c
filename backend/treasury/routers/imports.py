from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy import or_, select

from treasury.auth import Caller, accessible_area_ids, get_current_user, require_verified
from treasury.db import get_session
from treasury.errors import BadRequestError, ForbiddenError, NotFoundError
from treasury.models import ImportJob
from treasury.schemas import ImportJobOut, ImportResultOut, ImportRowError
from treasury.services import events
from treasury.services.draft_import import import_drafts


router = APIRouter()

CSV_CONTENT_TYPES = ("text/csv", "application/vnd.ms-excel", "application/octet-stream", "text/plain")


@router.post("/movements", response_model=ImportResultOut, status_code=status.HTTP_201_CREATED)
async def import_movements(
    area_id: int = Form(...),
    file: UploadFile = File(...),
    caller: Caller = Depends(require_verified),
) -> ImportResultOut:
    """
    Import a movements CSV into ``area_id`` as DRAFT rows.

    Behaviour:
    - Headers: Date, Description, Amount (required); Type, Category,
      Reference, Department (optional, department code in the area).
    - Amounts are decimal strings ("-12.34"); a negative amount without a
      Type is an EXPENSE, a positive one an INCOME.
    - Invalid rows are skipped and reported with their CSV row number.
    - Drafts without a known department need categorization before they
      can be finalized.
    """
    if file.content_type not in CSV_CONTENT_TYPES:
        raise BadRequestError(f"Unsupported content type: {file.content_type}")

    raw_bytes = await file.read()
    try:
        text = raw_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise BadRequestError("CSV must be UTF-8 encoded.") from None

    with get_session() as session:
        job, errors = import_drafts(session, caller, area_id, file.filename or "upload.csv", text)
        result = ImportResultOut(
            import_job_id=job.id,
            imported=job.imported_rows or 0,
            errors=[ImportRowError(**error) for error in errors],
        )

    if result.imported:
        events.emit(events.DRAFTS_IMPORTED, import_job_id=result.import_job_id, area_id=area_id, count=result.imported)
    return result


def _visible_jobs_query(session, caller: Caller):
    stmt = select(ImportJob)
    area_ids = accessible_area_ids(session, caller)
    if area_ids is not None:
        stmt = stmt.where(or_(ImportJob.initiated_by_user_id == caller.id, ImportJob.area_id.in_(area_ids)))
    return stmt


@router.get("", response_model=List[ImportJobOut])
async def list_import_jobs(caller: Caller = Depends(get_current_user)) -> List[ImportJobOut]:
    with get_session() as session:
        jobs = session.execute(_visible_jobs_query(session, caller).order_by(ImportJob.id.desc())).scalars()
        return [ImportJobOut.model_validate(job) for job in jobs]


@router.get("/{job_id}", response_model=ImportJobOut)
async def get_import_job(job_id: int, caller: Caller = Depends(get_current_user)) -> ImportJobOut:
    with get_session() as session:
        job = session.get(ImportJob, job_id)
        if not job:
            raise NotFoundError(f"Import job with id {job_id} not found.")
        visible = session.execute(_visible_jobs_query(session, caller).where(ImportJob.id == job_id)).scalar_one_or_none()
        if visible is None:
            raise ForbiddenError("You do not have access to this import job", reason="not_area_member")
        return ImportJobOut.model_validate(job)
