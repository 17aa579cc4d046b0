from datetime import timedelta

from utilities.database import db, Equipment, Transaction, utc_now
from utilities.transaction_engine import checkout_equipment


def _due():
    return (utc_now() + timedelta(days=7)).date().isoformat()


def test_healthcheck(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json == {"ok": True}


def test_api_requires_login(client):
    response = client.get("/api/equipment")
    assert response.status_code == 401
    assert response.json["code"] == "unauthorized"


def test_equipment_crud_flow(auth_client, app):
    response = auth_client.post("/api/categories", json={"name": "Cameras", "color": "#112233"})
    assert response.status_code == 201
    category_id = response.json["id"]

    response = auth_client.post(
        "/api/equipment",
        json={"name": "Canon C70", "category_id": category_id, "purchase_date": "2024-04-01"},
    )
    assert response.status_code == 201
    created = response.json["equipment"][0]
    assert created["barcode"] == "CA-24-00001"
    assert created["status"] == "available"

    response = auth_client.get(f"/api/equipment/{created['id']}")
    assert response.status_code == 200
    assert response.json["name"] == "Canon C70"

    response = auth_client.put(f"/api/equipment/{created['id']}", json={"purchase_date": "2025-01-01"})
    assert response.status_code == 200
    assert response.json["relabeling_triggered"] is True
    assert response.json["equipment"]["barcode"] == "CA-25-00001"
    assert response.json["equipment"]["needs_relabeling"] is True

    response = auth_client.post(f"/api/equipment/{created['id']}/clear-relabel")
    assert response.status_code == 200
    assert response.json["needs_relabeling"] is False

    response = auth_client.delete(f"/api/equipment/{created['id']}")
    assert response.status_code == 200
    assert auth_client.get(f"/api/equipment/{created['id']}").status_code == 404


def test_create_equipment_validation_errors(auth_client):
    response = auth_client.post("/api/equipment", json={"quantity": 0})
    assert response.status_code == 400
    assert response.json["code"] == "validation_error"
    assert "name" in response.json["errors"]
    assert "quantity" in response.json["errors"]


def test_plain_users_cannot_edit_equipment(borrower_client, make_equipment):
    unit = make_equipment()
    response = borrower_client.put(f"/api/equipment/{unit.id}", json={"name": "Mine now"})
    assert response.status_code == 403
    assert borrower_client.post("/api/equipment", json={"name": "X"}).status_code == 403


def test_equipment_list_endpoint(borrower_client, make_equipment):
    for i in range(3):
        make_equipment(name=f"Light {i}")

    response = borrower_client.get("/api/equipment?limit=2&sort=name")
    assert response.status_code == 200
    assert len(response.json["data"]) == 2
    assert response.json["pagination"]["total"] == 3

    assert borrower_client.get("/api/equipment?status=sparkly").status_code == 400


def test_page_size_is_capped(app, borrower_client):
    response = borrower_client.get("/api/equipment?limit=5000")
    assert response.json["pagination"]["limit"] == app.config["MAX_PAGE_SIZE"]


def test_status_advice_endpoint(borrower_client):
    response = borrower_client.get("/api/equipment/status-advice")
    assert response.json["broken"] == "unavailable"

    response = borrower_client.get("/api/equipment/status-advice?condition=worn")
    assert response.json["suggested_status"] == "needs_maintenance"


def test_checkout_checkin_endpoints(borrower_client, borrower, make_equipment):
    units = [make_equipment(name=f"Kit {i}") for i in range(2)]

    response = borrower_client.post(
        "/api/transactions/checkout",
        json={
            "equipment_id": [u.id for u in units],
            "user_id": borrower.id,
            "expected_return_date": _due(),
            "purpose": "events",
        },
    )
    assert response.status_code == 201
    body = response.json
    assert body["transaction_count"] == 2
    assert body["user_name"] == borrower.name
    assert {item["id"] for item in body["equipment_checked_out"]} == {u.id for u in units}

    batch = borrower_client.get(f"/api/transactions/batch/{body['batch_id']}")
    assert batch.status_code == 200
    assert batch.json["transaction_count"] == 2

    response = borrower_client.post(
        "/api/transactions/checkin",
        json={"equipment_id": units[0].id, "return_location": "vault"},
    )
    assert response.status_code == 200
    assert response.json["transaction_count"] == 1
    assert response.json["equipment_checked_in"][0]["id"] == units[0].id

    history = borrower_client.get("/api/transactions?type=checkout")
    assert history.status_code == 200
    assert history.json["pagination"]["total"] == 2


def test_checkout_conflict_is_409(borrower_client, borrower, make_equipment):
    unit = make_equipment(status="unavailable", name="Broken Drone")
    response = borrower_client.post(
        "/api/transactions/checkout",
        json={"equipment_id": unit.id, "user_id": borrower.id, "expected_return_date": _due(), "purpose": "events"},
    )
    assert response.status_code == 409
    assert response.json["code"] == "invalid_state_for_checkout"
    assert response.json["equipment_id"] == unit.id
    assert "Broken Drone" in response.json["error"]


def test_checkout_missing_fields(borrower_client):
    response = borrower_client.post("/api/transactions/checkout", json={})
    assert response.status_code == 400
    assert set(response.json["errors"]) == {"equipment_id", "user_id", "expected_return_date", "purpose"}


def test_checkin_by_non_owner_is_403(other_client, borrower, make_equipment, app):
    unit = make_equipment()
    checkout_equipment([unit.id], borrower.id, _due(), "events")

    response = other_client.post("/api/transactions/checkin", json={"equipment_id": unit.id})
    assert response.status_code == 403
    assert response.json["code"] == "checkin_not_authorized"
    assert response.json["borrower_id"] == borrower.id
    assert Transaction.query.filter_by(equipment_id=unit.id, actual_return_date=None).count() == 1


def test_checkin_on_behalf_of_someone_else_is_refused(borrower_client, other_user, make_equipment):
    unit = make_equipment()
    response = borrower_client.post(
        "/api/transactions/checkin",
        json={"equipment_id": unit.id, "checked_in_by": other_user.id},
    )
    assert response.status_code == 403
    assert response.json["code"] == "permission_denied"


def test_status_edit_locked_while_checked_out(auth_client, borrower, make_equipment):
    unit = make_equipment()
    checkout_equipment([unit.id], borrower.id, _due(), "events")

    response = auth_client.put(f"/api/equipment/{unit.id}", json={"status": "reserved"})
    assert response.status_code == 409
    assert response.json["code"] == "status_locked_by_active_loan"
    assert db.session.get(Equipment, unit.id).status == "available"


def test_overdue_and_dashboard(auth_client, borrower, make_equipment):
    unit = make_equipment(name="Forgotten Mic")
    checkout_equipment([unit.id], borrower.id, "2020-01-01", "personal")

    response = auth_client.get("/api/transactions/overdue")
    assert response.status_code == 200
    [row] = response.json
    assert row["equipment_name"] == "Forgotten Mic"
    assert row["days_overdue"] > 365

    dashboard = auth_client.get("/api/reports/dashboard")
    assert dashboard.json["summary"]["overdue_equipment"] == 1


def test_utilization_endpoint(borrower_client, borrower, make_equipment):
    used = make_equipment(name="Used")
    spare = make_equipment(name="Spare")
    checkout_equipment([used.id], borrower.id, _due(), "events")

    response = borrower_client.get("/api/reports/utilization")
    assert response.status_code == 200
    assert [row["id"] for row in response.json] == [used.id, spare.id]
    assert response.json[0]["total_checkouts"] == 1


def test_activity_feed_endpoints(auth_client, admin_user, borrower, make_equipment):
    unit = make_equipment()
    result = checkout_equipment([unit.id], borrower.id, _due(), "events", actor_id=admin_user.id)

    recent = auth_client.get("/api/activity/recent?limit=1")
    assert recent.status_code == 200
    assert len(recent.json) == 1
    assert recent.json[0]["action"] == "checkout"
    assert recent.json[0]["user_name"] == admin_user.name

    response = auth_client.get("/api/activity?action=checkout")
    assert response.status_code == 200
    assert response.json["pagination"]["total"] == 1
    assert response.json["data"][0]["batch_id"] == result.batch_id

    logins = auth_client.get(f"/api/activity?action=auth_login&user_id={admin_user.id}")
    assert logins.json["pagination"]["total"] == 1

    assert auth_client.get("/api/activity?start_date=soon").status_code == 400
    assert auth_client.get("/api/activity?user_id=abc").status_code == 400


def test_activity_feed_is_admin_only(borrower_client):
    assert borrower_client.get("/api/activity").status_code == 403
    assert borrower_client.get("/api/activity/recent").status_code == 403


def test_activity_feed_requires_login(client):
    assert client.get("/api/activity").status_code == 401
    assert client.get("/api/reports/utilization").status_code == 401
