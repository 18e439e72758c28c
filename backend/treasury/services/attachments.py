"""Receipts and supporting documents stored alongside a movement."""

from __future__ import annotations

import logging
import os
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.orm import Session

from treasury import settings
from treasury.auth import Caller, resolve_capabilities
from treasury.errors import BadRequestError, ForbiddenError, NotFoundError
from treasury.models import Attachment, Movement
from treasury.services.movements import ensure_creator, get_active_movement


logger = logging.getLogger(__name__)

# MIME type -> accepted file extensions
ALLOWED_TYPES: dict[str, tuple[str, ...]] = {
    "application/pdf": ("pdf",),
    "image/jpeg": ("jpg", "jpeg"),
    "image/jpg": ("jpg", "jpeg"),
    "image/png": ("png",),
    "image/gif": ("gif",),
    "image/webp": ("webp",),
    "text/csv": ("csv",),
    "text/plain": ("txt",),
    "application/vnd.ms-excel": ("xls",),
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ("xlsx",),
    "application/msword": ("doc",),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ("docx",),
}


def validate_upload(filename: str, mime_type: str, size: int) -> None:
    if mime_type not in ALLOWED_TYPES:
        raise BadRequestError(f"File type {mime_type} is not allowed")

    extension = os.path.splitext(filename)[1].lstrip(".").lower()
    if extension not in ALLOWED_TYPES[mime_type]:
        raise BadRequestError("File extension does not match file type")

    if size <= 0:
        raise BadRequestError("File is empty")
    if size > settings.MAX_ATTACHMENT_BYTES:
        raise BadRequestError(f"File exceeds the maximum size of {settings.MAX_ATTACHMENT_BYTES} bytes")


def content_disposition(filename: str) -> str:
    """Download header with an ASCII fallback name and the UTF-8 name (RFC 6266)."""
    stem, extension = os.path.splitext(filename)
    ascii_stem = "".join(ch for ch in stem if 32 <= ord(ch) < 127 and ch not in '"\\').strip()
    ascii_extension = "".join(ch for ch in extension if ch.isascii() and ch.isalnum() or ch == ".")
    fallback = (ascii_stem or "attachment") + ascii_extension
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _ensure_can_view(session: Session, caller: Caller, movement: Movement) -> None:
    # Creator, or a reviewer of the movement's area
    if movement.user_id == caller.id:
        return
    if not resolve_capabilities(session, caller, movement.area_id).is_manager:
        raise ForbiddenError("You do not have access to this movement", reason="not_area_manager")


def upload_attachment(
    session: Session,
    caller: Caller,
    movement_id: int,
    filename: str,
    mime_type: str,
    data: bytes,
) -> Attachment:
    movement = get_active_movement(session, movement_id)
    ensure_creator(caller, movement)
    validate_upload(filename, mime_type, len(data))

    attachment = Attachment(
        movement_id=movement.id,
        filename=filename,
        mime_type=mime_type,
        size=len(data),
        data=data,
        uploaded_by_user_id=caller.id,
    )
    session.add(attachment)
    session.flush()
    logger.info("Attachment %s (%s, %d bytes) added to movement %s", attachment.id, mime_type, len(data), movement.id)
    return attachment


def list_attachments(session: Session, caller: Caller, movement_id: int) -> list[Attachment]:
    movement = get_active_movement(session, movement_id)
    _ensure_can_view(session, caller, movement)
    return list(
        session.execute(
            select(Attachment)
            .where(Attachment.movement_id == movement.id)
            .order_by(Attachment.created_at.desc(), Attachment.id.desc())
        ).scalars()
    )


def _get_attachment(session: Session, movement: Movement, attachment_id: int) -> Attachment:
    attachment = session.get(Attachment, attachment_id)
    if not attachment or attachment.movement_id != movement.id:
        raise NotFoundError("Attachment not found")
    return attachment


def get_attachment(session: Session, caller: Caller, movement_id: int, attachment_id: int) -> Attachment:
    movement = get_active_movement(session, movement_id)
    attachment = _get_attachment(session, movement, attachment_id)
    _ensure_can_view(session, caller, movement)
    return attachment


def delete_attachment(session: Session, caller: Caller, movement_id: int, attachment_id: int) -> None:
    movement = get_active_movement(session, movement_id)
    attachment = _get_attachment(session, movement, attachment_id)
    ensure_creator(caller, movement)
    session.delete(attachment)
    session.flush()
    logger.info("Attachment %s removed from movement %s by user %s", attachment_id, movement.id, caller.id)
