from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, File, Response, UploadFile, status

from treasury import settings
from treasury.auth import Caller, get_current_user, require_verified
from treasury.db import get_session
from treasury.schemas import AttachmentOut
from treasury.services import attachments as attachment_service


router = APIRouter()


@router.post("/{movement_id}/attachments", response_model=AttachmentOut, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    movement_id: int,
    file: UploadFile = File(...),
    caller: Caller = Depends(require_verified),
) -> AttachmentOut:
    # One byte past the cap is enough for the size check to reject it
    data = await file.read(settings.MAX_ATTACHMENT_BYTES + 1)
    with get_session() as session:
        attachment = attachment_service.upload_attachment(
            session,
            caller,
            movement_id,
            filename=file.filename or "",
            mime_type=file.content_type or "",
            data=data,
        )
        return AttachmentOut.model_validate(attachment)


@router.get("/{movement_id}/attachments", response_model=List[AttachmentOut])
async def list_attachments(movement_id: int, caller: Caller = Depends(get_current_user)) -> List[AttachmentOut]:
    """Attachment metadata only; file contents come from the download route."""
    with get_session() as session:
        return [
            AttachmentOut.model_validate(a)
            for a in attachment_service.list_attachments(session, caller, movement_id)
        ]


@router.get("/{movement_id}/attachments/{attachment_id}")
async def download_attachment(
    movement_id: int,
    attachment_id: int,
    caller: Caller = Depends(get_current_user),
) -> Response:
    with get_session() as session:
        attachment = attachment_service.get_attachment(session, caller, movement_id, attachment_id)
        filename, mime_type, data = attachment.filename, attachment.mime_type, attachment.data
    return Response(
        content=data,
        media_type=mime_type,
        headers={"Content-Disposition": attachment_service.content_disposition(filename)},
    )


@router.delete("/{movement_id}/attachments/{attachment_id}")
async def delete_attachment(
    movement_id: int,
    attachment_id: int,
    caller: Caller = Depends(require_verified),
) -> dict:
    with get_session() as session:
        attachment_service.delete_attachment(session, caller, movement_id, attachment_id)
    return {"success": True}
