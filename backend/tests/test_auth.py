from conftest import add_member, auth, make_area, make_user

from treasury.auth import Caller, resolve_capabilities
from treasury.db import get_session
from treasury.enums import AreaRole


def _caller(user_id, is_admin=False):
    return Caller(id=user_id, name="x", email="x@example.org", email_verified=True, is_admin=is_admin)


def test_missing_header_is_unauthorized(client, org):
    response = client.get("/api/movements")
    assert response.status_code == 401
    assert response.json()["kind"] == "UNAUTHORIZED"
    assert response.json()["reason"] == "unauthenticated"


def test_unknown_or_inactive_user_is_unauthorized(client):
    inactive_id = make_user("Gone", active=False)
    assert client.get("/api/movements", headers=auth(9999)).status_code == 401
    assert client.get("/api/movements", headers=auth(inactive_id)).status_code == 401


def test_unverified_user_cannot_create(client, org):
    unverified_id = make_user("Unverified", verified=False)
    add_member(unverified_id, org["area_id"])
    response = client.post(
        "/api/movements",
        headers=auth(unverified_id),
        json={
            "area_id": org["area_id"],
            "type": "EXPENSE",
            "amount": 100,
            "description": "Taxi",
            "transaction_date": "2025-03-01T10:00:00",
        },
    )
    assert response.status_code == 403
    assert response.json()["reason"] == "unverified_email"


def test_resolve_capabilities(org):
    other_area = make_area("FIN")
    with get_session() as session:
        member = resolve_capabilities(session, _caller(org["member_id"]), org["area_id"])
        manager = resolve_capabilities(session, _caller(org["manager_id"]), org["area_id"])
        outsider = resolve_capabilities(session, _caller(org["member_id"]), other_area)
        admin = resolve_capabilities(session, _caller(org["admin_id"], is_admin=True), other_area)

    assert (member.is_member, member.is_manager) == (True, False)
    assert (manager.is_member, manager.is_manager) == (True, True)
    assert (outsider.is_member, outsider.is_manager) == (False, False)
    assert admin.is_admin and admin.is_manager and admin.is_member


def test_area_admin_role_counts_as_manager(org):
    area_admin = make_user("Area Admin")
    add_member(area_admin, org["area_id"], AreaRole.ADMIN)
    with get_session() as session:
        capabilities = resolve_capabilities(session, _caller(area_admin), org["area_id"])
    assert capabilities.is_manager and not capabilities.is_admin


def test_capabilities_endpoint(client, org):
    response = client.get(f"/api/areas/{org['area_id']}/capabilities", headers=auth(org["manager_id"]))
    assert response.status_code == 200
    assert response.json() == {
        "area_id": org["area_id"],
        "is_admin": False,
        "is_manager": True,
        "is_member": True,
    }


def test_admin_only_routes(client, org):
    response = client.post(
        "/api/areas",
        headers=auth(org["manager_id"]),
        json={"name": "Finance", "code": "FIN"},
    )
    assert response.status_code == 403
    assert response.json()["reason"] == "not_admin"

    response = client.post("/api/areas", headers=auth(org["admin_id"]), json={"name": "Finance", "code": "FIN"})
    assert response.status_code == 201
