import pytest

from conftest import auth, make_user

from treasury.errors import BadRequestError
from treasury.services.draft_import import parse_amount, parse_movements_csv


CSV = """Date,Description,Amount,Category,Department
2025-03-01,Client payment,1500.00,Sales,GEN
01/03/2025,Coffee beans,-12.34,,
2025-03-02,Broken row,abc,,
05-03-2025,Refund,0,,
2025-03-04,Unknown department,-5,,NOPE
"""


def _upload(client, org, content, user_id=None, filename="movements.csv", content_type="text/csv"):
    return client.post(
        "/api/imports/movements",
        headers=auth(user_id or org["member_id"]),
        data={"area_id": str(org["area_id"])},
        files={"file": (filename, content.encode("utf-8"), content_type)},
    )


def test_parse_amount_is_exact():
    assert parse_amount("12.34") == 1234
    assert parse_amount("-1,234.50") == -123450
    assert parse_amount("7") == 700
    with pytest.raises(ValueError):
        parse_amount("1.001")
    with pytest.raises(ValueError):
        parse_amount("twelve")
    assert parse_amount("21474836.47") == 2_147_483_647
    with pytest.raises(ValueError, match="too large"):
        parse_amount("21474836.48")


def test_parse_csv_reports_row_errors():
    rows, errors = parse_movements_csv(CSV)
    assert [row.row for row in rows] == [2, 3, 6]
    assert [error["row"] for error in errors] == [4, 5]
    assert rows[1].amount == 1234
    assert rows[1].type.value == "EXPENSE"
    assert rows[0].type.value == "INCOME"


def test_parse_csv_headers_are_case_insensitive():
    rows, errors = parse_movements_csv("date,DESCRIPTION,amount,type\n2025-01-02,Grant,100,transfer\n")
    assert errors == []
    assert rows[0].type.value == "TRANSFER"
    assert rows[0].amount == 10000


def test_parse_csv_missing_headers():
    with pytest.raises(BadRequestError, match="Amount"):
        parse_movements_csv("Date,Description\n2025-01-01,x\n")


def test_import_creates_drafts(client, org):
    response = _upload(client, org, CSV)
    assert response.status_code == 201
    body = response.json()
    assert body["imported"] == 3
    assert [error["row"] for error in body["errors"]] == [4, 5]

    drafts = client.get("/api/drafts", headers=auth(org["member_id"])).json()
    assert drafts["total"] == 3
    by_description = {d["description"]: d for d in drafts["items"]}
    assert by_description["Client payment"]["department_id"] == org["department_id"]
    assert by_description["Client payment"]["amount"] == 150000
    assert by_description["Coffee beans"]["needs_categorization"] is True
    assert by_description["Unknown department"]["needs_categorization"] is True
    assert all(d["import_job_id"] == body["import_job_id"] for d in drafts["items"])

    job = client.get(f"/api/imports/{body['import_job_id']}", headers=auth(org["member_id"])).json()
    assert job["status"] == "completed"
    assert job["total_rows"] == 5
    assert job["imported_rows"] == 3
    assert job["error_count"] == 2


def test_import_requires_area_access(client, org):
    outsider = make_user("Outsider")
    response = _upload(client, org, CSV, user_id=outsider)
    assert response.status_code == 403


def test_import_unknown_area(client, org):
    response = client.post(
        "/api/imports/movements",
        headers=auth(org["member_id"]),
        data={"area_id": "9999"},
        files={"file": ("m.csv", CSV.encode("utf-8"), "text/csv")},
    )
    assert response.status_code == 404


def test_import_rejects_non_utf8(client, org):
    response = client.post(
        "/api/imports/movements",
        headers=auth(org["member_id"]),
        data={"area_id": str(org["area_id"])},
        files={"file": ("m.csv", "Date,Description,Amount\n2025-01-01,Caf\xe9,1\n".encode("latin-1"), "text/csv")},
    )
    assert response.status_code == 400


def test_import_rejects_unsupported_content_type(client, org):
    response = _upload(client, org, CSV, filename="m.pdf", content_type="application/pdf")
    assert response.status_code == 400


def test_import_jobs_are_scoped(client, org):
    job_id = _upload(client, org, CSV).json()["import_job_id"]
    outsider = make_user("Outsider")

    assert [job["id"] for job in client.get("/api/imports", headers=auth(org["manager_id"])).json()] == [job_id]
    assert client.get("/api/imports", headers=auth(outsider)).json() == []
    assert client.get(f"/api/imports/{job_id}", headers=auth(outsider)).status_code == 403
    assert client.get("/api/imports/424242", headers=auth(outsider)).status_code == 404
