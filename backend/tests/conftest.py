import os
from datetime import datetime

os.environ["TREASURY_DB_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient

from treasury.db import Base, engine, get_session
from treasury.enums import AreaRole, MovementStatus, MovementType
from treasury.main import create_app
from treasury.models import Area, Department, Movement, User, UserArea


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def client():
    with TestClient(create_app()) as test_client:
        yield test_client


def auth(user_id: int) -> dict:
    return {"X-User-Id": str(user_id)}


def make_user(name="Member", email=None, is_admin=False, verified=True, active=True) -> int:
    with get_session() as session:
        user = User(
            name=name,
            email=email or f"{name.lower().replace(' ', '.')}@example.org",
            is_admin=is_admin,
            email_verified=verified,
            active=active,
        )
        session.add(user)
        session.flush()
        return user.id


def make_area(code="OPS", name=None, currency="EUR") -> int:
    with get_session() as session:
        area = Area(name=name or f"Area {code}", code=code, currency=currency)
        session.add(area)
        session.flush()
        return area.id


def make_department(area_id: int, code="GEN", name=None) -> int:
    with get_session() as session:
        department = Department(area_id=area_id, code=code, name=name or f"Department {code}")
        session.add(department)
        session.flush()
        return department.id


def add_member(user_id: int, area_id: int, role: AreaRole = AreaRole.MEMBER) -> None:
    with get_session() as session:
        session.add(UserArea(user_id=user_id, area_id=area_id, area_role=role.value))


def make_movement(
    user_id: int,
    area_id: int,
    *,
    amount=1000,
    type=MovementType.EXPENSE,
    status=MovementStatus.PENDING,
    department_id=None,
    category=None,
    transaction_date=None,
    is_internal_transfer=False,
    description="Office supplies",
) -> int:
    with get_session() as session:
        movement = Movement(
            user_id=user_id,
            area_id=area_id,
            department_id=department_id,
            amount=amount,
            type=type.value,
            status=status.value,
            currency="EUR",
            description=description,
            category=category,
            transaction_date=transaction_date or datetime.utcnow(),
            is_internal_transfer=is_internal_transfer,
        )
        session.add(movement)
        session.flush()
        return movement.id


def load_movement(movement_id: int) -> Movement:
    with get_session() as session:
        return session.get(Movement, movement_id)


@pytest.fixture
def org():
    """
    One area with a department and three users:
    a member (creator), a manager of the area and a global admin.
    """
    area_id = make_area("OPS")
    department_id = make_department(area_id, "GEN")
    member_id = make_user("Member")
    manager_id = make_user("Manager")
    admin_id = make_user("Admin", is_admin=True)
    add_member(member_id, area_id, AreaRole.MEMBER)
    add_member(manager_id, area_id, AreaRole.MANAGER)
    return {
        "area_id": area_id,
        "department_id": department_id,
        "member_id": member_id,
        "manager_id": manager_id,
        "admin_id": admin_id,
    }
