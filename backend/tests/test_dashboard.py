from datetime import datetime

from conftest import add_member, auth, make_area, make_department, make_movement, make_user

from treasury.enums import MovementStatus, MovementType
from treasury.services.aggregation import month_keys, percentage, shift_month, window_start


APPROVED = MovementStatus.APPROVED


def test_balance_example(client, org):
    make_movement(org["member_id"], org["area_id"], amount=1000, status=APPROVED)
    make_movement(org["member_id"], org["area_id"], amount=2500, status=APPROVED)
    make_movement(org["member_id"], org["area_id"], amount=3000, status=APPROVED, type=MovementType.INCOME)

    balances = client.get("/api/dashboard/balances", headers=auth(org["member_id"])).json()
    assert len(balances) == 1
    assert balances[0]["income"] == 3000
    assert balances[0]["expenses"] == 3500
    assert balances[0]["balance"] == -500


def test_totals_skip_unapproved_internal_transfers_and_split_parents(client, org):
    make_movement(org["member_id"], org["area_id"], amount=400, status=APPROVED)
    make_movement(org["member_id"], org["area_id"], amount=999, status=MovementStatus.PENDING)
    make_movement(org["member_id"], org["area_id"], amount=777, status=MovementStatus.DRAFT)
    make_movement(org["member_id"], org["area_id"], amount=5000, status=APPROVED, is_internal_transfer=True)
    parent = make_movement(org["member_id"], org["area_id"], amount=1000, status=APPROVED)

    client.post(
        f"/api/movements/{parent}/split",
        headers=auth(org["admin_id"]),
        json={"allocations": [{"area_id": org["area_id"], "amount": 700}, {"area_id": org["area_id"], "amount": 300}]},
    )

    overview = client.get("/api/dashboard/overview", headers=auth(org["member_id"])).json()
    assert overview == {
        "total_income": 0,
        "total_expenses": 1400,
        "balance": -1400,
        "draft_count": 1,
        "pending_count": 1,
        "areas_count": 1,
    }


def test_overview_is_scoped_to_caller_areas(client, org):
    other_area = make_area("FIN")
    outsider = make_user("Outsider")
    add_member(outsider, other_area)
    make_movement(outsider, other_area, amount=800, status=APPROVED, type=MovementType.INCOME)

    member = client.get("/api/dashboard/overview", headers=auth(org["member_id"])).json()
    admin = client.get("/api/dashboard/overview", headers=auth(org["admin_id"])).json()
    assert member["total_income"] == 0
    assert admin["total_income"] == 800
    assert admin["areas_count"] == 2


def test_expense_breakdown_groups_by_category(client, org):
    make_movement(org["member_id"], org["area_id"], amount=300, status=APPROVED, category="Travel")
    make_movement(org["member_id"], org["area_id"], amount=100, status=APPROVED)

    data = client.get("/api/dashboard/expense-breakdown", headers=auth(org["member_id"])).json()
    assert data["total"] == 400
    assert data["breakdown"] == [
        {"category": "Travel", "amount": 300, "percentage": 75.0},
        {"category": "Uncategorized", "amount": 100, "percentage": 25.0},
    ]


def test_empty_breakdown_has_zero_total(client, org):
    data = client.get("/api/dashboard/expense-breakdown", headers=auth(org["member_id"])).json()
    assert data == {"breakdown": [], "total": 0}


def test_months_parameter_bounds(client, org):
    assert client.get("/api/dashboard/expense-breakdown", headers=auth(org["member_id"]), params={"months": 0}).status_code == 400
    assert client.get("/api/dashboard/expense-breakdown", headers=auth(org["member_id"]), params={"months": 13}).status_code == 400


def test_income_vs_expense_lists_every_month(client, org):
    make_movement(org["member_id"], org["area_id"], amount=250, status=APPROVED, type=MovementType.INCOME)
    make_movement(org["member_id"], org["area_id"], amount=100, status=APPROVED)

    data = client.get("/api/dashboard/income-vs-expense", headers=auth(org["member_id"]), params={"months": 3}).json()
    assert [row["month"] for row in data] == month_keys(3)
    assert data[-1]["income"] == 250
    assert data[-1]["expenses"] == 100
    assert data[0] == {"month": month_keys(3)[0], "income": 0, "expenses": 0}


def test_expenses_by_area_and_department(client, org):
    second_department = make_department(org["area_id"], "EVT")
    make_movement(org["member_id"], org["area_id"], amount=600, status=APPROVED, department_id=org["department_id"])
    make_movement(org["member_id"], org["area_id"], amount=200, status=APPROVED, department_id=second_department)
    make_movement(org["member_id"], org["area_id"], amount=200, status=APPROVED)

    by_area = client.get("/api/dashboard/expenses-by-area", headers=auth(org["member_id"])).json()
    assert by_area["total"] == 1000
    assert by_area["breakdown"][0]["area"]["id"] == org["area_id"]
    assert by_area["breakdown"][0]["percentage"] == 100.0

    by_department = client.get("/api/dashboard/expenses-by-department", headers=auth(org["member_id"])).json()
    assert by_department["total"] == 800
    assert [(row["department"]["id"], row["percentage"]) for row in by_department["breakdown"]] == [
        (org["department_id"], 75.0),
        (second_department, 25.0),
    ]


def test_expenses_by_department_outside_access_is_empty(client, org):
    other_area = make_area("FIN")
    data = client.get(
        "/api/dashboard/expenses-by-department", headers=auth(org["member_id"]), params={"area_id": other_area}
    ).json()
    assert data == {"breakdown": [], "total": 0}


def test_month_helpers():
    assert shift_month(2025, 1, -1) == (2024, 12)
    assert shift_month(2025, 11, 3) == (2026, 2)
    assert month_keys(3, now=datetime(2025, 2, 15)) == ["2024-12", "2025-01", "2025-02"]
    assert window_start(3, now=datetime(2025, 2, 15)) == datetime(2024, 12, 1)
    assert percentage(5, 0) == 0.0
