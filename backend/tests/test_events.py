import pytest

from conftest import auth, make_movement

from treasury.services import events


@pytest.fixture
def received():
    captured = []
    events.subscribe(captured.append)
    yield captured
    events.unsubscribe(captured.append)


def test_emit_builds_event(received):
    event = events.emit("custom.thing", value=1)
    assert event["type"] == "custom.thing"
    assert event["data"] == {"value": 1}
    assert received == [event]


def test_approval_emits_after_commit(client, org, received):
    movement_id = make_movement(org["member_id"], org["area_id"])
    client.post(f"/api/movements/{movement_id}/approve", headers=auth(org["manager_id"]))

    approved = [e for e in received if e["type"] == events.MOVEMENT_APPROVED]
    assert len(approved) == 1
    assert approved[0]["data"]["movement_id"] == movement_id
    assert approved[0]["data"]["area_id"] == org["area_id"]


def test_failed_operation_emits_nothing(client, org, received):
    movement_id = make_movement(org["member_id"], org["area_id"])
    client.post(f"/api/movements/{movement_id}/approve", headers=auth(org["member_id"]))
    assert received == []


def test_failing_subscriber_does_not_fail_request(client, org, received):
    def broken(event):
        raise RuntimeError("subscriber down")

    events.subscribe(broken)
    try:
        movement_id = make_movement(org["member_id"], org["area_id"])
        response = client.post(f"/api/movements/{movement_id}/approve", headers=auth(org["manager_id"]))
    finally:
        events.unsubscribe(broken)

    assert response.status_code == 200
    assert any(e["type"] == events.MOVEMENT_APPROVED for e in received)


def test_health_reports_db(client):
    response = client.get("/api/admincenter/health")
    assert response.status_code == 200
    assert response.json()["components"]["db"] == "ok"
