import uuid

import pytest

from fleet_compliance.errors import Conflict, NotFound, ValidationError
from fleet_compliance.models.models import AuditLog, Notification
from fleet_compliance.services import hold_cascade, incident_reports, notification_registry


def test_tardiness_report_spawns_linked_notification(db, factory):
    d = factory.driver("Dana Driver")
    r = factory.route("R1", driver=d)

    report = incident_reports.report_tardiness(db, d.employee_id, "AM", "Traffic on the A1", route_id=r.id)

    n = db.get(Notification, report.notification_id)
    assert report.status == "pending"
    assert n.notification_type == "driver_tardiness"
    assert n.entity_type == "driver" and n.entity_id == d.employee_id
    assert n.status == "pending"
    assert n.admin_response_required is True
    assert "Dana Driver" in n.certificate_name
    assert len(n.email_token) >= 32


def test_tardiness_validation(db, factory):
    d = factory.driver()
    with pytest.raises(ValidationError):
        incident_reports.report_tardiness(db, d.employee_id, "NOON", "late")
    with pytest.raises(ValidationError):
        incident_reports.report_tardiness(db, d.employee_id, "PM", "   ")
    with pytest.raises(NotFound):
        incident_reports.report_tardiness(db, uuid.uuid4(), "PM", "late")
    with pytest.raises(NotFound):
        incident_reports.report_tardiness(db, d.employee_id, "PM", "late", route_id=uuid.uuid4())


def test_approval_resolves_the_notification_once(db, factory, user):
    d = factory.driver()
    report = incident_reports.report_tardiness(db, d.employee_id, "PM", "Flat tyre")

    approved, changed = incident_reports.approve_tardiness(
        db, report.id, coordinator_id=user.id, coordinator_notes="Fine"
    )
    again, changed_again = incident_reports.approve_tardiness(db, report.id, coordinator_id=user.id)

    assert changed is True and changed_again is False
    assert approved.status == "approved"
    assert approved.coordinator_notes == "Fine"
    assert approved.reviewed_at is not None
    n = notification_registry.get(db, report.notification_id)
    assert n.status == "resolved"
    assert n.resolved_at is not None


def test_decline_after_approve_conflicts(db, factory):
    report = incident_reports.report_tardiness(db, factory.driver().employee_id, "AM", "late")
    incident_reports.approve_tardiness(db, report.id)
    with pytest.raises(Conflict):
        incident_reports.decline_tardiness(db, report.id)


def test_review_unknown_report(db):
    with pytest.raises(NotFound):
        incident_reports.approve_tardiness(db, uuid.uuid4())


def test_breakdown_spawns_notification_and_resolution_closes_it(db, factory):
    owner = factory.employee("Owner", "owner@example.com")
    v = factory.vehicle("BUS-7", assigned=owner)

    breakdown = incident_reports.report_breakdown(db, v.id, description="Engine warning light", location="Depot")
    n = db.get(Notification, breakdown.notification_id)

    assert n.notification_type == "vehicle_breakdown"
    assert n.entity_id == v.id
    assert n.recipient_email == "owner@example.com"
    assert breakdown.status == "reported"

    notification_registry.resolve(db, n.id)
    db.expire_all()
    assert breakdown.status == "resolved"


def test_breakdown_for_unknown_vehicle(db):
    with pytest.raises(NotFound):
        incident_reports.report_breakdown(db, uuid.uuid4())


def test_approval_that_clears_a_driver_hold_is_audited(db, factory, user):
    d = factory.driver()
    v = factory.vehicle()
    factory.route("R1", vehicle=v, driver=d)
    report = incident_reports.report_tardiness(db, d.employee_id, "AM", "late")
    hold_cascade.apply_hold(db, "driver", d.employee_id, notification_id=report.notification_id, actor_id=user.id)

    incident_reports.approve_tardiness(db, report.id, coordinator_id=user.id)

    db.expire_all()
    assert not d.on_hold and not v.on_hold
    actions = [
        a.action
        for a in db.query(AuditLog).filter(AuditLog.entity_id == d.employee_id).order_by(AuditLog.timestamp_utc).all()
    ]
    assert actions == ["HOLD", "UNHOLD"]
