import uuid

import pytest

from fleet_compliance.config import settings
from fleet_compliance.errors import DeliveryError, InvalidTokenError, NoRecipientError, NotFound, ValidationError
from fleet_compliance.models.models import Notification, VehicleBreakdown
from fleet_compliance.services import hold_cascade, notification_registry
from conftest import RecordingSender


def test_resolve_twice_is_a_noop_the_second_time(db, factory):
    n = factory.notification()

    first = notification_registry.resolve(db, n.id)
    resolved_at = first.notification.resolved_at
    second = notification_registry.resolve(db, n.id)

    assert first.changed is True
    assert second.changed is False
    db.expire_all()
    n = db.get(Notification, n.id)
    assert n.status == "resolved"
    assert n.resolved_at == resolved_at
    assert n.admin_response_required is False


def test_terminal_states_do_not_revert(db, factory):
    n = factory.notification()
    notification_registry.dismiss(db, n.id)

    result = notification_registry.resolve(db, n.id)

    assert result.changed is False
    db.expire_all()
    n = db.get(Notification, n.id)
    assert n.status == "dismissed"
    assert n.resolved_at is None


def test_resolve_unknown_notification(db):
    with pytest.raises(NotFound):
        notification_registry.resolve(db, uuid.uuid4())


def test_list_pending_filters_by_type(db, factory):
    a = factory.notification()
    factory.notification(notification_type="vehicle_breakdown")
    done = factory.notification()
    notification_registry.dismiss(db, done.id)

    pending = notification_registry.list_pending(db, notification_type="certificate_expiry")

    assert [p.id for p in pending] == [a.id]


def test_get_by_token(db, factory):
    n = factory.notification()
    assert notification_registry.get_by_token(db, n.email_token).id == n.id
    with pytest.raises(InvalidTokenError):
        notification_registry.get_by_token(db, "not-a-token")


def test_resolve_clears_hold_placed_for_this_notification(db, factory):
    v = factory.vehicle()
    r = factory.route("R1", vehicle=v)
    n = factory.notification(entity_type="vehicle", entity_id=v.id)
    hold_cascade.apply_hold(db, "vehicle", v.id, notification_id=n.id)

    result = notification_registry.resolve(db, n.id)

    assert result.hold is not None
    db.expire_all()
    assert not v.on_hold and not r.on_hold


def test_resolve_keeps_hold_placed_for_another_notification(db, factory):
    v = factory.vehicle()
    mot = factory.notification(entity_type="vehicle", entity_id=v.id)
    insurance = factory.notification(entity_type="vehicle", entity_id=v.id, certificate_type="insurance_expiry_date")
    hold_cascade.apply_hold(db, "vehicle", v.id, notification_id=insurance.id)

    result = notification_registry.resolve(db, mot.id)

    assert result.hold is None
    db.expire_all()
    assert v.on_hold and v.on_hold_notification_id == insurance.id


def test_resolving_breakdown_notification_resolves_breakdown(db, factory):
    v = factory.vehicle()
    n = factory.notification(entity_type="vehicle", entity_id=v.id, notification_type="vehicle_breakdown")
    breakdown = VehicleBreakdown(vehicle_id=v.id, notification_id=n.id, status="reported")
    db.add(breakdown)
    db.commit()

    notification_registry.resolve(db, n.id)

    db.expire_all()
    assert breakdown.status == "resolved"
    assert breakdown.resolved_at is not None


@pytest.mark.parametrize(
    "days, label",
    [(-3, "EXPIRED"), (-1, "EXPIRED"), (0, "EXPIRING SOON"), (5, "EXPIRING SOON"), (7, "EXPIRING SOON"), (8, "Expiring Soon"), (20, "Expiring Soon")],
)
def test_expiry_status_thresholds(days, label):
    assert notification_registry.expiry_status(days) == label


def test_email_subject_uses_status_certificate_and_entity(db, factory):
    v = factory.vehicle("BUS-42")
    expired = factory.notification(entity_id=v.id, days=-3, certificate_name="MOT")
    soon = factory.notification(entity_id=v.id, days=5, certificate_name="MOT")
    later = factory.notification(entity_id=v.id, days=20, certificate_name="MOT")

    assert notification_registry.build_email_content(db, expired.id).subject == "[EXPIRED] MOT - BUS-42"
    assert notification_registry.build_email_content(db, soon.id).subject == "[EXPIRING SOON] MOT - BUS-42"
    assert notification_registry.build_email_content(db, later.id).subject == "[Expiring Soon] MOT - BUS-42"


def test_email_body_and_links(db, factory):
    d = factory.driver("Dana Driver", "dana@example.com")
    n = factory.notification(
        entity_type="driver",
        entity_id=d.employee_id,
        days=-3,
        certificate_type="dbs_expiry_date",
        certificate_name="DBS",
        recipient_email="dana@example.com",
    )

    template = notification_registry.build_email_content(db, n.id)

    base = settings.public_base_url.rstrip("/")
    assert template.upload_link == f"{base}/upload-document/{n.email_token}"
    assert template.appointment_link == f"{base}/book-appointment/{n.email_token}"
    assert template.body.startswith("Dear dana,")
    assert "EXPIRED 3 days ago" in template.body
    assert "- DBS Certificate" in template.body
    assert template.appointment_link in template.body
    assert "Dana Driver" in template.subject

    no_booking = notification_registry.build_email_content(db, n.id, include_appointment_link=False)
    assert no_booking.appointment_link is None
    assert "book-appointment" not in no_booking.body


def test_email_without_recipient_is_a_distinct_condition(db, factory):
    n = factory.notification(recipient_email=None)
    with pytest.raises(NoRecipientError) as exc:
        notification_registry.build_email_content(db, n.id)
    assert exc.value.code == "no_recipient"


def test_vehicle_recipients_are_deduplicated(db, factory):
    owner = factory.employee("Owner", "owner@example.com")
    v = factory.vehicle(assigned=owner)
    d1 = factory.driver("Driver One", "one@example.com")
    d2 = factory.driver("Driver Two", "OWNER@example.com")
    pa = factory.assistant("Pat", "pat@example.com")
    factory.route("R1", vehicle=v, driver=d1, assistant=pa)
    factory.route("R2", vehicle=v, driver=d2)
    factory.route("R3", vehicle=factory.vehicle("OTHER"), driver=factory.driver("Elsewhere", "else@example.com"))
    n = factory.notification(entity_type="vehicle", entity_id=v.id)

    recipients = notification_registry.resolve_recipients(db, n.id)

    assert [(r.email, r.type) for r in recipients] == [
        ("owner@example.com", "assigned_employee"),
        ("one@example.com", "driver"),
        ("pat@example.com", "passenger_assistant"),
    ]


def test_driver_recipient_is_the_subject(db, factory):
    d = factory.driver("Dana Driver", "dana@example.com")
    n = factory.notification(entity_type="driver", entity_id=d.employee_id, recipient_email="dana@example.com")

    recipients = notification_registry.resolve_recipients(db, n.id)

    assert [(r.email, r.name, r.type) for r in recipients] == [("dana@example.com", "Dana Driver", "subject")]


def test_send_email_applies_hold_with_provenance(db, factory, user):
    d = factory.driver("Dana Driver", "dana@example.com")
    v = factory.vehicle()
    factory.route("R1", vehicle=v, driver=d)
    n = factory.notification(entity_type="driver", entity_id=d.employee_id, recipient_email="dana@example.com")
    sender = RecordingSender()

    result = notification_registry.send_compliance_email(db, n.id, actor_id=user.id, sender=sender)

    assert result["email_sent"] is True
    assert result["held"] is True
    assert sender.sent[0]["to"] == ["dana@example.com"]
    db.expire_all()
    assert n.email_sent_at is not None
    assert d.on_hold and v.on_hold
    assert d.on_hold_notification_id == n.id
    assert d.on_hold_set_by == user.id


def test_send_email_without_hold(db, factory):
    v = factory.vehicle()
    n = factory.notification(entity_type="vehicle", entity_id=v.id)

    result = notification_registry.send_compliance_email(db, n.id, hold=False, sender=RecordingSender())

    assert result["held"] is False
    db.expire_all()
    assert not v.on_hold


def test_delivery_failure_leaves_entity_untouched(db, factory):
    v = factory.vehicle()
    n = factory.notification(entity_type="vehicle", entity_id=v.id)

    with pytest.raises(DeliveryError):
        notification_registry.send_compliance_email(db, n.id, sender=RecordingSender(fail=True))

    db.expire_all()
    assert not v.on_hold
    assert n.email_sent_at is None


def test_send_email_refused_once_resolved(db, factory):
    n = factory.notification()
    notification_registry.resolve(db, n.id)
    with pytest.raises(ValidationError):
        notification_registry.send_compliance_email(db, n.id, sender=RecordingSender())
