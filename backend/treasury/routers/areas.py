from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy import select

from treasury.auth import Caller, ensure_area_member, get_current_user, require_admin, resolve_capabilities
from treasury.db import get_session
from treasury.enums import AreaRole
from treasury.errors import ConflictError, NotFoundError
from treasury.models import Area, Department, User, UserArea
from treasury.schemas import (
    AreaCreate,
    AreaOut,
    CapabilitiesOut,
    DepartmentCreate,
    DepartmentOut,
    MembershipOut,
    MembershipRequest,
)
from treasury.services.movements import get_active_area


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[AreaOut])
async def list_areas(caller: Caller = Depends(get_current_user)) -> List[AreaOut]:
    """Areas the caller belongs to, with their role; admins get every area."""
    with get_session() as session:
        roles = dict(
            session.execute(
                select(UserArea.area_id, UserArea.area_role).where(UserArea.user_id == caller.id)
            ).all()
        )
        stmt = select(Area).where(Area.deleted_at.is_(None)).order_by(Area.name)
        if not caller.is_admin:
            stmt = stmt.where(Area.id.in_(list(roles)))

        items: List[AreaOut] = []
        for area in session.execute(stmt).scalars():
            role = roles.get(area.id)
            items.append(
                AreaOut(
                    id=area.id,
                    name=area.name,
                    code=area.code,
                    currency=area.currency,
                    description=area.description,
                    role=AreaRole(role) if role else None,
                )
            )
    return items


@router.post("", response_model=AreaOut, status_code=status.HTTP_201_CREATED)
async def create_area(payload: AreaCreate, caller: Caller = Depends(require_admin)) -> AreaOut:
    with get_session() as session:
        existing = session.execute(select(Area).where(Area.code == payload.code)).scalar_one_or_none()
        if existing:
            raise ConflictError(f"Area with code {payload.code} already exists")

        area = Area(
            name=payload.name,
            code=payload.code,
            currency=payload.currency.upper(),
            description=payload.description,
        )
        session.add(area)
        session.flush()
        logger.info("Area %s (%s) created by user %s", area.id, area.code, caller.id)
        return AreaOut.model_validate(area)


@router.get("/{area_id}/departments", response_model=List[DepartmentOut])
async def list_departments(area_id: int, caller: Caller = Depends(get_current_user)) -> List[DepartmentOut]:
    with get_session() as session:
        area = get_active_area(session, area_id)
        ensure_area_member(session, caller, area.id)
        departments = session.execute(
            select(Department)
            .where(Department.area_id == area.id, Department.deleted_at.is_(None))
            .order_by(Department.name)
        ).scalars()
        return [DepartmentOut.model_validate(d) for d in departments]


@router.post("/{area_id}/departments", response_model=DepartmentOut, status_code=status.HTTP_201_CREATED)
async def create_department(
    area_id: int,
    payload: DepartmentCreate,
    caller: Caller = Depends(require_admin),
) -> DepartmentOut:
    with get_session() as session:
        area = get_active_area(session, area_id)
        # Department codes are unique per area
        duplicate = session.execute(
            select(Department).where(Department.area_id == area.id, Department.code == payload.code)
        ).scalar_one_or_none()
        if duplicate:
            raise ConflictError(f"Department with code {payload.code} already exists in this area")

        department = Department(
            area_id=area.id,
            name=payload.name,
            code=payload.code,
            description=payload.description,
        )
        session.add(department)
        session.flush()
        return DepartmentOut.model_validate(department)


@router.post("/{area_id}/members", response_model=MembershipOut)
async def set_member(
    area_id: int,
    payload: MembershipRequest,
    caller: Caller = Depends(require_admin),
) -> MembershipOut:
    """Add a user to an area, or change the role of an existing member."""
    with get_session() as session:
        area = get_active_area(session, area_id)
        user = session.get(User, payload.user_id)
        if not user or user.deleted_at is not None:
            raise NotFoundError("User not found")

        membership = session.execute(
            select(UserArea).where(UserArea.user_id == user.id, UserArea.area_id == area.id)
        ).scalar_one_or_none()
        if membership:
            membership.area_role = payload.area_role.value
        else:
            membership = UserArea(user_id=user.id, area_id=area.id, area_role=payload.area_role.value)
            session.add(membership)
        session.flush()
        logger.info("User %s is %s of area %s (set by user %s)", user.id, membership.area_role, area.id, caller.id)
        return MembershipOut.model_validate(membership)


@router.get("/{area_id}/capabilities", response_model=CapabilitiesOut)
async def get_capabilities(area_id: int, caller: Caller = Depends(get_current_user)) -> CapabilitiesOut:
    with get_session() as session:
        area = get_active_area(session, area_id)
        capabilities = resolve_capabilities(session, caller, area.id)
    return CapabilitiesOut(
        area_id=area_id,
        is_admin=capabilities.is_admin,
        is_manager=capabilities.is_manager,
        is_member=capabilities.is_member,
    )
