from conftest import add_member, auth, load_movement, make_area, make_department, make_movement, make_user

from treasury.enums import MovementStatus


def _draft(org, **kwargs):
    kwargs.setdefault("status", MovementStatus.DRAFT)
    return make_movement(org["member_id"], org["area_id"], **kwargs)


def test_list_and_stats(client, org):
    uncategorized = [_draft(org) for _ in range(2)]
    categorized = _draft(org, department_id=org["department_id"])
    make_movement(org["member_id"], org["area_id"])  # pending, not a draft

    page = client.get("/api/drafts", headers=auth(org["member_id"])).json()
    assert page["total"] == 3
    assert [d["id"] for d in page["items"]] == sorted(uncategorized + [categorized], reverse=True)

    needing = client.get(
        "/api/drafts", headers=auth(org["member_id"]), params={"needs_categorization": True}
    ).json()
    assert sorted(d["id"] for d in needing["items"]) == uncategorized

    stats = client.get("/api/drafts/stats", headers=auth(org["member_id"])).json()
    assert stats["total"] == 3
    assert stats["needs_categorization"] == 2
    assert stats["by_area"][0]["count"] == 3
    assert stats["by_area"][0]["area"]["id"] == org["area_id"]


def test_list_cursor_pagination(client, org):
    ids = [_draft(org) for _ in range(3)]
    first = client.get("/api/drafts", headers=auth(org["member_id"]), params={"limit": 2}).json()
    assert [d["id"] for d in first["items"]] == [ids[2], ids[1]]
    second = client.get(
        "/api/drafts", headers=auth(org["member_id"]), params={"limit": 2, "cursor": first["next_cursor"]}
    ).json()
    assert [d["id"] for d in second["items"]] == [ids[0]]
    assert second["next_cursor"] is None


def test_list_for_area_outside_access_is_empty(client, org):
    other_area = make_area("FIN")
    outsider = make_user("Outsider")
    add_member(outsider, other_area)
    make_movement(outsider, other_area, status=MovementStatus.DRAFT)

    page = client.get("/api/drafts", headers=auth(org["member_id"]), params={"area_id": other_area}).json()
    assert page == {"items": [], "next_cursor": None, "total": 0}


def test_update_draft_area_clears_department(client, org):
    other_area = make_area("FIN")
    add_member(org["member_id"], other_area)
    draft_id = _draft(org, department_id=org["department_id"])

    response = client.patch(f"/api/drafts/{draft_id}", headers=auth(org["member_id"]), json={"area_id": other_area})
    assert response.status_code == 200
    body = response.json()
    assert body["department_id"] is None
    assert body["needs_categorization"] is True


def test_update_draft_area_and_department_together(client, org):
    other_area = make_area("FIN")
    other_department = make_department(other_area, "TAX")
    add_member(org["member_id"], other_area)
    draft_id = _draft(org)

    response = client.patch(
        f"/api/drafts/{draft_id}",
        headers=auth(org["member_id"]),
        json={"area_id": other_area, "department_id": other_department},
    )
    assert response.status_code == 200
    assert response.json()["department_id"] == other_department
    assert response.json()["needs_categorization"] is False


def test_update_draft_department_from_other_area(client, org):
    other_area = make_area("FIN")
    foreign_department = make_department(other_area, "TAX")
    draft_id = _draft(org)
    response = client.patch(
        f"/api/drafts/{draft_id}", headers=auth(org["member_id"]), json={"department_id": foreign_department}
    )
    assert response.status_code == 400


def test_update_draft_to_area_without_access(client, org):
    other_area = make_area("FIN")
    draft_id = _draft(org)
    response = client.patch(f"/api/drafts/{draft_id}", headers=auth(org["member_id"]), json={"area_id": other_area})
    assert response.status_code == 403


def test_non_draft_is_not_found(client, org):
    movement_id = make_movement(org["member_id"], org["area_id"])
    assert client.get(f"/api/drafts/{movement_id}", headers=auth(org["member_id"])).status_code == 404
    assert client.post(f"/api/drafts/{movement_id}/finalize", headers=auth(org["member_id"])).status_code == 404


def test_finalize_requires_department(client, org):
    draft_id = _draft(org)
    response = client.post(f"/api/drafts/{draft_id}/finalize", headers=auth(org["member_id"]))
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot finalize draft without department - please categorize first"
    assert load_movement(draft_id).status == "DRAFT"


def test_finalize_moves_draft_to_pending(client, org):
    draft_id = _draft(org, department_id=org["department_id"])
    response = client.post(f"/api/drafts/{draft_id}/finalize", headers=auth(org["member_id"]))
    assert response.status_code == 200
    assert response.json()["status"] == "PENDING"


def test_bulk_finalize_is_all_or_nothing(client, org):
    ready = [_draft(org, department_id=org["department_id"]) for _ in range(2)]
    missing = _draft(org)

    response = client.post("/api/drafts/bulk-finalize", headers=auth(org["member_id"]), json={"ids": ready + [missing]})
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot finalize 1 draft(s) without department"
    assert all(load_movement(i).status == "DRAFT" for i in ready + [missing])

    response = client.post("/api/drafts/bulk-finalize", headers=auth(org["member_id"]), json={"ids": ready})
    assert response.status_code == 200
    assert response.json() == {"count": 2}
    assert all(load_movement(i).status == "PENDING" for i in ready)


def test_bulk_finalize_foreign_draft_is_forbidden(client, org):
    other_area = make_area("FIN")
    other_department = make_department(other_area, "TAX")
    outsider = make_user("Outsider")
    add_member(outsider, other_area)
    own = _draft(org, department_id=org["department_id"])
    foreign = make_movement(outsider, other_area, status=MovementStatus.DRAFT, department_id=other_department)

    response = client.post("/api/drafts/bulk-finalize", headers=auth(org["member_id"]), json={"ids": [own, foreign]})
    assert response.status_code == 403
    assert response.json()["detail"] == "You do not have access to some of these drafts"
    assert load_movement(own).status == "DRAFT"


def test_bulk_update_is_admin_only(client, org):
    draft_id = _draft(org)
    body = {"ids": [draft_id], "department_id": org["department_id"]}
    assert client.post("/api/drafts/bulk-update", headers=auth(org["member_id"]), json=body).status_code == 403

    response = client.post("/api/drafts/bulk-update", headers=auth(org["admin_id"]), json=body)
    assert response.status_code == 200
    assert response.json() == {"count": 1}
    assert load_movement(draft_id).department_id == org["department_id"]


def test_bulk_update_rejects_non_drafts(client, org):
    draft_id = _draft(org)
    pending_id = make_movement(org["member_id"], org["area_id"])
    response = client.post(
        "/api/drafts/bulk-update",
        headers=auth(org["admin_id"]),
        json={"ids": [draft_id, pending_id], "category": "Travel"},
    )
    assert response.status_code == 400
    assert load_movement(draft_id).category is None


def test_delete_and_bulk_delete(client, org):
    first, second, third = (_draft(org) for _ in range(3))
    assert client.delete(f"/api/drafts/{first}", headers=auth(org["member_id"])).json() == {"success": True}
    assert client.delete(f"/api/drafts/{first}", headers=auth(org["member_id"])).status_code == 404

    response = client.post("/api/drafts/bulk-delete", headers=auth(org["member_id"]), json={"ids": [second, third]})
    assert response.json() == {"count": 2}
    assert client.get("/api/drafts", headers=auth(org["member_id"])).json()["total"] == 0
