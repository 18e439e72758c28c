"""
Authorization guard.

Caller identity comes from the ``X-User-Id`` header until SSO is wired up
(same stand-in approach as a mock role header). Levels:

- authenticated: the header names an active user
- verified: authenticated + confirmed email
- admin: global ``is_admin`` flag
- area manager: admin, or a MANAGER/ADMIN membership on the area

Every area-scoped check goes through ``resolve_capabilities``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from treasury.db import get_session
from treasury.enums import MANAGER_ROLES
from treasury.errors import ForbiddenError, UnauthorizedError
from treasury.models import User, UserArea


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    """Snapshot of the authenticated user, detached from any session."""

    id: int
    name: str
    email: str
    email_verified: bool
    is_admin: bool


@dataclass(frozen=True)
class Capabilities:
    is_admin: bool
    is_manager: bool
    is_member: bool


def load_caller(session: Session, user_id: Optional[int]) -> Caller:
    if user_id is None:
        raise UnauthorizedError("You must be logged in to access this resource", reason="unauthenticated")

    user = session.get(User, user_id)
    if not user or not user.active or user.deleted_at is not None:
        raise UnauthorizedError("You must be logged in to access this resource", reason="unauthenticated")

    return Caller(
        id=user.id,
        name=user.name,
        email=user.email,
        email_verified=user.email_verified,
        is_admin=user.is_admin,
    )


async def get_current_user(
    x_user_id: Optional[int] = Header(default=None, alias="X-User-Id", description="Authenticated user id"),
) -> Caller:
    with get_session() as session:
        return load_caller(session, x_user_id)


async def require_verified(caller: Caller = Depends(get_current_user)) -> Caller:
    if not caller.email_verified:
        logger.info("User %s denied: email not verified", caller.id)
        raise ForbiddenError("You must verify your email to access this resource", reason="unverified_email")
    return caller


async def require_admin(caller: Caller = Depends(get_current_user)) -> Caller:
    if not caller.is_admin:
        logger.info("User %s denied: admin access required", caller.id)
        raise ForbiddenError("Admin access required", reason="not_admin")
    return caller


def resolve_capabilities(session: Session, caller: Caller, area_id: int) -> Capabilities:
    """Capabilities of ``caller`` on ``area_id``; admins are managers and members of every area."""
    if caller.is_admin:
        return Capabilities(is_admin=True, is_manager=True, is_member=True)

    role = session.execute(
        select(UserArea.area_role).where(UserArea.user_id == caller.id, UserArea.area_id == area_id)
    ).scalar_one_or_none()

    return Capabilities(
        is_admin=False,
        is_manager=role in MANAGER_ROLES,
        is_member=role is not None,
    )


def accessible_area_ids(session: Session, caller: Caller) -> Optional[list[int]]:
    """Area ids the caller may read; ``None`` means every area (admins)."""
    if caller.is_admin:
        return None
    return list(
        session.execute(select(UserArea.area_id).where(UserArea.user_id == caller.id)).scalars()
    )


def ensure_area_member(session: Session, caller: Caller, area_id: int, message: str = "You do not have access to this area") -> Capabilities:
    capabilities = resolve_capabilities(session, caller, area_id)
    if not capabilities.is_member:
        raise ForbiddenError(message, reason="not_area_member")
    return capabilities


def ensure_area_manager(session: Session, caller: Caller, area_id: int, message: str = "You must be an area manager to perform this action") -> Capabilities:
    capabilities = resolve_capabilities(session, caller, area_id)
    if not capabilities.is_manager:
        raise ForbiddenError(message, reason="not_area_manager")
    return capabilities


def ensure_manager_of_all(session: Session, caller: Caller, area_ids: Iterable[int]) -> None:
    for area_id in sorted(set(area_ids)):
        ensure_area_manager(
            session, caller, area_id, "You must be a manager for all selected movement areas"
        )
