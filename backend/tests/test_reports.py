import csv
from datetime import datetime
from io import StringIO

from conftest import auth, make_area, make_movement, make_user

from treasury.enums import MovementStatus, MovementType
from treasury.services.aggregation import month_keys
from treasury.services.reports import EXPORT_HEADERS, format_amount


APPROVED = MovementStatus.APPROVED


def _rows(response):
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.startswith("\ufeff")
    return list(csv.reader(StringIO(response.text[1:])))


def test_format_amount():
    assert format_amount(1234) == "12.34"
    assert format_amount(5) == "0.05"
    assert format_amount(-150000) == "-1500.00"


def test_export_movements_csv(client, org):
    make_movement(
        org["member_id"],
        org["area_id"],
        amount=1234,
        status=APPROVED,
        category="Office",
        department_id=org["department_id"],
        transaction_date=datetime(2025, 3, 1),
    )
    make_movement(
        org["member_id"],
        org["area_id"],
        amount=50000,
        type=MovementType.INCOME,
        description='Client, "ACME" invoice',
        transaction_date=datetime(2025, 3, 5),
    )

    response = client.get("/api/reports/movements/export", headers=auth(org["member_id"]))
    assert "attachment; filename=\"movements-" in response.headers["content-disposition"]
    rows = _rows(response)
    assert rows[0] == EXPORT_HEADERS
    assert len(rows) == 3

    income, expense = rows[1], rows[2]
    assert income[:6] == ["2025-03-05", "INCOME", "PENDING", "500.00", "EUR", 'Client, "ACME" invoice']
    assert expense[:4] == ["2025-03-01", "EXPENSE", "APPROVED", "12.34"]
    assert expense[6] == "Office"
    assert expense[8:12] == ["Area OPS", "OPS", "Department GEN", "GEN"]
    assert expense[12] == "Member"

    approved_only = _rows(
        client.get("/api/reports/movements/export", headers=auth(org["member_id"]), params={"status": "APPROVED"})
    )
    assert [row[2] for row in approved_only[1:]] == ["APPROVED"]


def test_export_lists_split_allocations_instead_of_parent(client, org):
    parent = make_movement(org["member_id"], org["area_id"], amount=1000, status=APPROVED)
    client.post(
        f"/api/movements/{parent}/split",
        headers=auth(org["admin_id"]),
        json={"allocations": [{"area_id": org["area_id"], "amount": 700}, {"area_id": org["area_id"], "amount": 300}]},
    )

    rows = _rows(client.get("/api/reports/movements/export", headers=auth(org["member_id"])))
    assert sorted(row[3] for row in rows[1:]) == ["3.00", "7.00"]


def test_export_area_access(client, org):
    outsider = make_user("Outsider")
    response = client.get(
        "/api/reports/movements/export", headers=auth(outsider), params={"area_id": org["area_id"]}
    )
    assert response.status_code == 403

    response = client.get("/api/reports/movements/export", headers=auth(outsider), params={"area_id": 9999})
    assert response.status_code == 404

    # No areas at all: just the header row
    assert _rows(client.get("/api/reports/movements/export", headers=auth(outsider))) == [EXPORT_HEADERS]


def test_monthly_summary(client, org):
    now = datetime.utcnow()
    make_movement(org["member_id"], org["area_id"], amount=3000, status=APPROVED, type=MovementType.INCOME, transaction_date=now)
    make_movement(org["member_id"], org["area_id"], amount=1000, status=APPROVED, transaction_date=now)
    make_movement(org["member_id"], org["area_id"], amount=9999, transaction_date=now)

    response = client.get("/api/reports/monthly-summary", headers=auth(org["member_id"]), params={"months": 3})
    assert response.status_code == 200
    summary = response.json()
    assert [row["month"] for row in summary] == month_keys(3)
    assert summary[-1] == {"month": now.strftime("%Y-%m"), "income": 3000, "expenses": 1000, "net": 2000, "count": 2}
    assert all(row["count"] == 0 for row in summary[:-1])

    rows = _rows(
        client.get("/api/reports/monthly-summary/export", headers=auth(org["member_id"]), params={"months": 3})
    )
    assert rows[0] == ["Month", "Income", "Expenses", "Net", "Movements"]
    assert rows[-1] == [now.strftime("%Y-%m"), "30.00", "10.00", "20.00", "2"]


def test_monthly_summary_months_bounds(client, org):
    assert client.get("/api/reports/monthly-summary", headers=auth(org["member_id"]), params={"months": 0}).status_code == 400
    assert client.get("/api/reports/monthly-summary", headers=auth(org["member_id"]), params={"months": 25}).status_code == 400


def test_category_breakdown(client, org):
    other_area = make_area("FIN")
    make_movement(org["member_id"], org["area_id"], amount=750, status=APPROVED, category="Travel", transaction_date=datetime(2025, 2, 1))
    make_movement(org["member_id"], org["area_id"], amount=250, status=APPROVED, transaction_date=datetime(2025, 2, 10))
    make_movement(org["member_id"], org["area_id"], amount=500, status=APPROVED, category="Travel", transaction_date=datetime(2024, 12, 1))
    make_movement(org["member_id"], other_area, amount=10000, status=APPROVED, category="Travel", transaction_date=datetime(2025, 2, 1))

    params = {"start_date": "2025-01-01T00:00:00", "end_date": "2025-12-31T00:00:00"}
    response = client.get("/api/reports/category-breakdown", headers=auth(org["member_id"]), params=params)
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1000
    assert body["breakdown"] == [
        {"category": "Travel", "amount": 750, "count": 1, "percentage": 75.0},
        {"category": "Uncategorized", "amount": 250, "count": 1, "percentage": 25.0},
    ]

    rows = _rows(client.get("/api/reports/category-breakdown/export", headers=auth(org["member_id"]), params=params))
    assert rows == [
        ["Category", "Amount", "Transaction Count", "Percentage"],
        ["Travel", "7.50", "1", "75.00%"],
        ["Uncategorized", "2.50", "1", "25.00%"],
    ]
