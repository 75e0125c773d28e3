import crud
from helpers import days, headers_for

LIFECYCLE_ACTIONS = ("CREATE_RESERVATION", "APPROVE_RESERVATION", "CONFIRM_PICKUP", "APPROVE_RETURN")


def _create_item(client, staff, **kw):
    body = {"name": "Camera", "category": "av", "condition": "GOOD", **kw}
    r = client.post("/items", json=body, headers=headers_for(staff))
    assert r.status_code == 201, r.text
    return r.json()


def _reserve(client, actor, item_id, start, end):
    return client.post(
        "/reservations",
        json={"item_id": item_id, "start_date": start.isoformat(), "end_date": end.isoformat(), "purpose": "shoot"},
        headers=headers_for(actor),
    )


def test_happy_path_end_to_end(client, staff, borrower):
    item = _create_item(client, staff)
    start = crud.utcnow() + days(1)

    r = _reserve(client, borrower, item["id"], start, start + days(2))
    assert r.status_code == 201, r.text
    reservation = r.json()
    assert reservation["status"] == "PENDING"
    rid = reservation["id"]

    r = client.post(f"/reservations/{rid}/approve", headers=headers_for(staff))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "APPROVED"
    assert client.get(f"/items/{item['id']}", headers=headers_for(borrower)).json()["status"] == "RESERVED"

    r = client.post(f"/reservations/{rid}/pickup/token", headers=headers_for(borrower))
    assert r.status_code == 201, r.text
    token = r.json()["token"]

    r = client.post(f"/reservations/{rid}/pickup", json={"token": token}, headers=headers_for(borrower))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "ACTIVE"
    assert client.get(f"/items/{item['id']}", headers=headers_for(borrower)).json()["status"] == "BORROWED"

    r = client.post(f"/reservations/{rid}/return", json={"condition_on_return": "GOOD"}, headers=headers_for(borrower))
    assert r.status_code == 201, r.text
    submission = r.json()
    assert submission["auto_approved"] is True
    return_id = submission["return_record"]["id"]

    assert client.get(f"/reservations/{rid}", headers=headers_for(borrower)).json()["status"] == "COMPLETED"
    assert client.get(f"/items/{item['id']}", headers=headers_for(borrower)).json()["status"] == "AVAILABLE"

    actions = []
    for entity_id in (rid, return_id):
        r = client.get("/audit-logs", params={"entity_id": entity_id}, headers=headers_for(staff))
        assert r.status_code == 200, r.text
        actions.extend(e["action"] for e in r.json())
    assert [a for a in actions if a in LIFECYCLE_ACTIONS] == list(LIFECYCLE_ACTIONS)
    assert sorted(actions) == sorted(LIFECYCLE_ACTIONS + ("GENERATE_PICKUP_TOKEN",))

    r = client.get("/audit-logs", params={"action": "REPUTATION_CHANGE"}, headers=headers_for(staff))
    assert r.json() == []

    rep = client.get(f"/users/{borrower.user_id}/reputation", headers=headers_for(borrower)).json()
    assert rep["score"] == 100
    assert rep["history"] == []


def test_history_endpoint_returns_typed_payloads(client, staff, borrower):
    item = _create_item(client, staff)
    start = crud.utcnow() + days(2)
    rid = _reserve(client, borrower, item["id"], start, start + days(1)).json()["id"]
    client.post(f"/reservations/{rid}/reject", json={"reason": "under repair"}, headers=headers_for(staff))

    r = client.get(f"/reservations/{rid}/history", headers=headers_for(borrower))
    assert r.status_code == 200, r.text
    history = r.json()
    assert [h["action"] for h in history] == ["CREATE_RESERVATION", "REJECT_RESERVATION"]
    assert history[1]["payload"]["reason"] == "under repair"


def test_missing_identity_is_401(client):
    assert client.get("/reservations").status_code == 401
    r = client.get("/reservations", headers={"X-User-Id": "alice", "X-User-Role": "GUEST"})
    assert r.status_code == 401
    assert r.json()["code"] == "unauthenticated"


def test_borrower_cannot_approve_403(client, staff, borrower):
    item = _create_item(client, staff)
    start = crud.utcnow() + days(1)
    rid = _reserve(client, borrower, item["id"], start, start + days(1)).json()["id"]

    r = client.post(f"/reservations/{rid}/approve", headers=headers_for(borrower))
    assert r.status_code == 403
    assert r.json()["code"] == "permission_denied"


def test_unknown_reservation_404(client, staff):
    r = client.post("/reservations/nope/approve", headers=headers_for(staff))
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_overlapping_booking_409_lists_conflicts(client, staff, borrower, other_borrower):
    item = _create_item(client, staff)
    start = crud.utcnow() + days(1)
    first = _reserve(client, borrower, item["id"], start, start + days(3)).json()

    r = _reserve(client, other_borrower, item["id"], start + days(1), start + days(4))
    assert r.status_code == 409
    body = r.json()
    assert body["code"] == "conflict"
    assert [c["id"] for c in body["conflicts"]] == [first["id"]]


def test_bad_input_is_400(client, staff, borrower):
    item = _create_item(client, staff)
    start = crud.utcnow() + days(1)

    r = _reserve(client, borrower, item["id"], start + days(2), start)
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"

    r = client.post("/reservations", json={"item_id": item["id"]}, headers=headers_for(borrower))
    assert r.status_code == 400
    assert r.json()["detail"] == "validation failed"

    r = client.get("/reservations", params={"status": "LOST"}, headers=headers_for(borrower))
    assert r.status_code == 400


def test_invalid_transition_is_400(client, staff, borrower):
    item = _create_item(client, staff)
    start = crud.utcnow() + days(1)
    rid = _reserve(client, borrower, item["id"], start, start + days(1)).json()["id"]

    r = client.post(f"/reservations/{rid}/pickup", json={"token": "x"}, headers=headers_for(borrower))
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_state"


def test_cancel_endpoint_reports_impact(client, staff, borrower):
    item = _create_item(client, staff)
    start = crud.utcnow() + days(5)
    rid = _reserve(client, borrower, item["id"], start, start + days(1)).json()["id"]

    r = client.post(f"/reservations/{rid}/cancel", json={"reason": "no longer needed"}, headers=headers_for(borrower))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["trust_score_impact"] == 0
    assert body["reservation"]["status"] == "CANCELLED"


def test_delete_endpoint(client, staff, borrower):
    item = _create_item(client, staff)
    start = crud.utcnow() + days(1)
    rid = _reserve(client, borrower, item["id"], start, start + days(1)).json()["id"]

    r = client.delete(f"/reservations/{rid}", headers=headers_for(staff))
    assert r.status_code == 403
    r = client.delete(f"/reservations/{rid}", headers=headers_for(borrower))
    assert r.status_code == 204
    assert client.get(f"/reservations/{rid}", headers=headers_for(borrower)).status_code == 404


def test_item_listing_and_manual_status(client, staff, borrower):
    _create_item(client, staff, name="Tripod", category="grip")
    cam = _create_item(client, staff, name="Camera", category="av")

    r = client.get("/items", params={"category": "av"}, headers=headers_for(borrower))
    assert r.status_code == 200, r.text
    assert [i["name"] for i in r.json()] == ["Camera"]

    r = client.patch(f"/items/{cam['id']}", json={"status": "MAINTENANCE"}, headers=headers_for(staff))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "MAINTENANCE"

    r = client.patch(f"/items/{cam['id']}", json={"status": "BORROWED"}, headers=headers_for(staff))
    assert r.status_code == 400

    r = client.post("/items", json={"name": "Drone"}, headers=headers_for(borrower))
    assert r.status_code == 403


def test_item_patch_with_null_required_field_is_400(client, staff):
    cam = _create_item(client, staff, name="Camera")

    for field in ("name", "category", "condition", "status"):
        r = client.patch(f"/items/{cam['id']}", json={field: None}, headers=headers_for(staff))
        assert r.status_code == 400, r.text
        assert r.json()["code"] == "validation_error"

    r = client.patch(f"/items/{cam['id']}", json={"location": None, "description": "spare body"}, headers=headers_for(staff))
    assert r.status_code == 200, r.text
    assert r.json()["name"] == "Camera"
    assert r.json()["description"] == "spare body"


def test_bulk_endpoints(client, staff, borrower):
    start = crud.utcnow() + days(1)
    ids = []
    for _ in range(2):
        item = _create_item(client, staff)
        ids.append(_reserve(client, borrower, item["id"], start, start + days(1)).json()["id"])

    r = client.post(
        "/reservations/bulk", json={"action": "approve", "reservation_ids": ids + ["nope"]}, headers=headers_for(staff)
    )
    assert r.status_code == 200, r.text
    assert r.json()["summary"] == {"total": 3, "successful": 2, "failed": 1}

    r = client.post("/reservations/bulk", json={"action": "delete", "reservation_ids": ids}, headers=headers_for(staff))
    assert r.status_code == 403

    r = client.post("/reservations/bulk", json={"action": "archive", "reservation_ids": ids}, headers=headers_for(staff))
    assert r.status_code == 400

    r = client.post("/returns/bulk/review", json={"return_ids": ["nope"], "approved": True}, headers=headers_for(staff))
    assert r.status_code == 200, r.text
    assert r.json()["results"] == [{"id": "nope", "success": False, "error": "return not found"}]
