from datetime import datetime, timedelta

from fleet_compliance.auth.security import create_access_token
from fleet_compliance.models.models import Route, Vehicle

NINE = datetime(2030, 3, 4, 9, 0)


def test_holds_require_authentication(client, factory):
    v = factory.vehicle()
    resp = client.post("/holds", json={"entityType": "vehicle", "entityId": str(v.id)})
    assert resp.status_code == 401
    assert resp.json()["error"] == "unauthorized"


def test_expired_or_forged_token_is_rejected(client, user, factory):
    v = factory.vehicle()
    expired = create_access_token(str(user.id), ttl_seconds=-10)
    resp = client.post("/holds", json={"entityType": "vehicle", "entityId": str(v.id)}, headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401
    resp = client.post("/holds", json={"entityType": "vehicle", "entityId": str(v.id)}, headers={"Authorization": "Bearer abc.def.ghi"})
    assert resp.status_code == 401


def test_hold_missing_fields_is_400(client, auth_headers):
    resp = client.post("/holds", json={"entityType": "vehicle"}, headers=auth_headers)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "validation_error"
    assert "entityId" in body["detail"]


def test_hold_and_clear_over_http(client, auth_headers, factory, db):
    v = factory.vehicle()
    r = factory.route("R1", vehicle=v)

    resp = client.post("/holds", json={"entityType": "vehicle", "entityId": str(v.id), "reason": "MOT expired"}, headers=auth_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["on_hold"] is True
    assert body["updated"] == {"vehicles": 1, "routes": 1}
    db.expire_all()
    assert db.get(Route, r.id).on_hold_reason == "MOT expired"

    preview = client.get("/holds/cascade", params={"entityType": "vehicle", "entityId": str(v.id)}, headers=auth_headers)
    assert preview.json()["route_ids"] == [str(r.id)]

    resp = client.post("/holds/clear", json={"entityType": "vehicle", "entityId": str(v.id)}, headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["on_hold"] is False
    db.expire_all()
    assert db.get(Vehicle, v.id).on_hold is False


def test_hold_unknown_entity_is_404(client, auth_headers):
    resp = client.post(
        "/holds",
        json={"entityType": "driver", "entityId": "6f1c2b1e-0d0e-4b8e-9a51-4f3c1d2e3f40"},
        headers=auth_headers,
    )
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_booking_scenario(client, auth_headers, factory):
    created = client.post(
        "/appointments/slots",
        json={"slotStart": NINE.isoformat(), "slotEnd": (NINE + timedelta(minutes=30)).isoformat()},
        headers=auth_headers,
    )
    assert created.status_code == 200
    slot_id = created.json()["id"]
    t1 = factory.notification().email_token
    t2 = factory.notification().email_token

    first = client.post("/appointments/book", json={"token": t1, "slotId": slot_id, "name": "Alex"})
    second = client.post("/appointments/book", json={"token": t2, "slotId": slot_id, "name": "Blake"})

    assert first.status_code == 200
    booking = first.json()["booking"]
    assert second.status_code == 409
    assert second.json()["detail"] == "Slot already booked"

    slots = client.get("/appointments/slots", headers=auth_headers).json()
    assert len(slots) == 1
    assert slots[0]["booking"]["id"] == booking["id"]


def test_inverted_slot_is_400(client, auth_headers):
    resp = client.post(
        "/appointments/slots",
        json={"slotStart": NINE.isoformat(), "slotEnd": NINE.isoformat()},
        headers=auth_headers,
    )
    assert resp.status_code == 400


def test_booking_with_invalid_token_is_400(client, factory):
    slot = factory.slot(NINE)
    resp = client.post("/appointments/book", json={"token": "guess", "slotId": str(slot.id)})
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_token"


def test_resolve_is_idempotent_over_http(client, auth_headers, factory):
    n = factory.notification()
    first = client.post(f"/notifications/{n.id}/resolve", headers=auth_headers)
    second = client.post(f"/notifications/{n.id}/resolve", headers=auth_headers)
    assert first.status_code == 200 and second.status_code == 200
    assert first.json()["changed"] is True
    assert second.json()["changed"] is False
    assert second.json()["notification"]["resolved_at"] == first.json()["notification"]["resolved_at"]

    dismissed = client.post(f"/notifications/{n.id}/dismiss", headers=auth_headers)
    assert dismissed.status_code == 200
    assert dismissed.json()["notification"]["status"] == "resolved"


def test_pending_list_and_email_template(client, auth_headers, factory):
    v = factory.vehicle("BUS-42")
    n = factory.notification(entity_id=v.id, days=-3)

    listed = client.get("/notifications", params={"type": "certificate_expiry"}, headers=auth_headers).json()
    assert [x["id"] for x in listed] == [str(n.id)]

    template = client.get(f"/notifications/{n.id}/email-template", headers=auth_headers).json()
    assert template["subject"] == "[EXPIRED] MOT - BUS-42"

    recipients = client.get(f"/notifications/{n.id}/recipients", headers=auth_headers).json()
    assert recipients == [{"email": "owner@example.com", "name": None, "type": "assigned_employee"}]


def test_send_email_without_recipient_is_400(client, auth_headers, factory):
    n = factory.notification(recipient_email=None)
    resp = client.post(f"/notifications/{n.id}/send-email", json={}, headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "no_recipient"


def test_send_email_over_http(client, auth_headers, factory, sender):
    v = factory.vehicle()
    n = factory.notification(entity_id=v.id)
    resp = client.post(f"/notifications/{n.id}/send-email", json={"hold": True}, headers=auth_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["held"] is True
    assert body["hold"]["cascade"]["vehicle_ids"] == [str(v.id)]
    assert sender.sent[0]["subject"].startswith("[EXPIRING SOON]")


def test_refresh_without_migration_is_configuration_error(client, auth_headers):
    resp = client.post("/notifications/refresh", headers=auth_headers)
    assert resp.status_code == 500
    assert resp.json()["error"] == "configuration_error"
    check = client.get("/notifications/check-function", headers=auth_headers)
    assert check.status_code == 200
    assert check.json()["exists"] is False


def test_compliance_case_open_is_idempotent(client, auth_headers, factory):
    n = factory.notification()
    first = client.post("/compliance/cases", json={"notification_id": str(n.id)}, headers=auth_headers).json()
    second = client.post("/compliance/cases", json={"notification_id": str(n.id)}, headers=auth_headers).json()
    assert first["existing"] is False and second["existing"] is True
    assert first["case_id"] == second["case_id"]

    patched = client.patch(
        f"/compliance/cases/{first['case_id']}",
        json={"application_status": "applied", "date_applied": "2030-01-02"},
        headers=auth_headers,
    )
    assert patched.status_code == 200
    assert patched.json()["application_status"] == "applied"
    assert patched.json()["notification"]["id"] == str(n.id)

    bad = client.patch(f"/compliance/cases/{first['case_id']}", json={"application_status": "done"}, headers=auth_headers)
    assert bad.status_code == 400


def test_subject_documents_round(client, auth_headers, factory):
    req = factory.requirement("DBS Certificate")
    driver = factory.driver()

    created = client.post(
        "/subject-documents",
        json={"requirement_id": str(req.id), "subject_type": "driver", "subject_id": str(driver.employee_id)},
        headers=auth_headers,
    )
    assert created.status_code == 200
    assert created.json()["status"] == "missing"
    assert created.json()["driver_employee_id"] == str(driver.employee_id)

    listed = client.get(
        "/subject-documents",
        params={"subject_type": "driver", "subject_id": str(driver.employee_id)},
        headers=auth_headers,
    ).json()
    assert [r["id"] for r in listed["requirements"]] == [str(req.id)]
    assert [d["id"] for d in listed["documents"]] == [created.json()["id"]]
    assert listed["checklist"][0]["effective_status"] == "missing"

    bad = client.get("/subject-documents", params={"subject_type": "driver", "subject_id": "42"}, headers=auth_headers)
    assert bad.status_code == 400


def test_public_token_lookup_and_upload(client, factory):
    v = factory.vehicle("BUS-42")
    n = factory.notification(entity_id=v.id)

    info = client.get(f"/public/notifications/{n.email_token}")
    assert info.status_code == 200
    assert info.json()["entity_name"] == "BUS-42"
    assert info.json()["active"] is True
    assert "email_token" not in info.json()

    resp = client.post(
        f"/public/notifications/{n.email_token}/documents",
        files=[("files", ("mot.pdf", b"%PDF-1.4 mot", "application/pdf"))],
        data={"name": "Alex"},
    )
    assert resp.status_code == 200
    assert resp.json()[0]["file_name"] == "mot.pdf"

    assert client.get("/public/notifications/unknown").status_code == 400


def test_incident_endpoints(client, auth_headers, factory):
    d = factory.driver()
    report = client.post(
        "/tardiness/report",
        json={"driverId": str(d.employee_id), "sessionType": "AM", "reason": "Traffic"},
        headers=auth_headers,
    )
    assert report.status_code == 200
    report_id = report.json()["id"]

    approved = client.post(f"/tardiness/{report_id}/approve", json={"coordinatorNotes": "ok"}, headers=auth_headers)
    assert approved.status_code == 200
    assert approved.json()["report"]["status"] == "approved"
    declined = client.post(f"/tardiness/{report_id}/decline", headers=auth_headers)
    assert declined.status_code == 409

    v = factory.vehicle()
    breakdown = client.post("/breakdowns/report", json={"vehicleId": str(v.id), "location": "A1"}, headers=auth_headers)
    assert breakdown.status_code == 200
    assert breakdown.json()["notification_id"]


def test_audit_listing(client, auth_headers, factory):
    v = factory.vehicle()
    client.post("/holds", json={"entityType": "vehicle", "entityId": str(v.id)}, headers=auth_headers)
    logs = client.get("/audit", params={"entity_id": str(v.id)}, headers=auth_headers).json()
    assert [entry["action"] for entry in logs] == ["HOLD"]
    assert logs[0]["integrity_hash"]


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"


def test_requirement_patch_with_null_is_400(client, auth_headers, factory):
    req = factory.requirement()
    resp = client.patch(f"/document-requirements/{req.id}", json={"is_active": None}, headers=auth_headers)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "validation_error"
    assert "is_active" in body["detail"]

    ok = client.patch(f"/document-requirements/{req.id}", json={"is_active": False}, headers=auth_headers)
    assert ok.status_code == 200
    assert ok.json()["is_active"] is False


def test_requirement_subject_type_change_conflicts_when_in_use(client, auth_headers, factory):
    req = factory.requirement()
    driver = factory.driver()
    client.post(
        "/subject-documents",
        json={"requirement_id": str(req.id), "subject_type": "driver", "subject_id": str(driver.employee_id)},
        headers=auth_headers,
    )
    resp = client.patch(f"/document-requirements/{req.id}", json={"subject_type": "vehicle"}, headers=auth_headers)
    assert resp.status_code == 409
