"""
Notification lifecycle, recipient resolution and compliance e-mail composition.

Status only moves forward: pending -> resolved | dismissed. Both transitions
are a conditional UPDATE guarded on ``status = 'pending'``; a caller that loses
the race sees zero affected rows and gets a no-op success.
"""
import html
import secrets
import smtplib
import uuid
from dataclasses import dataclass, asdict
from datetime import date, datetime, timezone
from typing import List, Optional

import pytz
import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import DeliveryError, InvalidTokenError, NoRecipientError, NotFound, UpstreamStoreError, ValidationError
from ..models.models import (
    Driver,
    Employee,
    Notification,
    PassengerAssistant,
    Route,
    Vehicle,
    VehicleBreakdown,
)
from . import hold_cascade
from .mailer import EmailSender, get_email_sender

log = structlog.get_logger(__name__)

NOTIFICATION_TYPES = ("certificate_expiry", "vehicle_breakdown", "driver_tardiness")

# certificate_type -> document the recipient has to provide
CERTIFICATE_DOCUMENTS = {
    "vehicle": {
        "registration_expiry_date": "Vehicle Registration Certificate",
        "plate_expiry_date": "Vehicle Registration/Plate Certificate",
        "insurance_expiry_date": "Vehicle Insurance Certificate",
        "mot_date": "MOT Certificate",
        "tax_date": "Vehicle Tax Certificate",
        "loler_expiry_date": "LOLER Certificate",
        "first_aid_expiry": "First Aid Kit Certificate",
        "fire_extinguisher_expiry": "Fire Extinguisher Certificate",
    },
    "driver": {
        "tas_badge_expiry_date": "TAS Badge Certificate",
        "taxi_badge_expiry_date": "Taxi Badge Certificate",
        "dbs_expiry_date": "DBS Certificate",
        "first_aid_certificate_expiry_date": "First Aid Certificate",
        "driving_license_expiry_date": "Driving License",
    },
    "assistant": {
        "tas_badge_expiry_date": "TAS Badge Certificate",
        "dbs_expiry_date": "DBS Certificate",
    },
}


@dataclass
class Recipient:
    email: str
    name: Optional[str]
    type: str  # assigned_employee|driver|passenger_assistant|subject


@dataclass
class EmailTemplate:
    to: str
    subject: str
    body: str
    html_body: str
    upload_link: str
    appointment_link: Optional[str]
    entity_name: str
    expiry_status: str

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class TransitionResult:
    notification: Notification
    changed: bool
    hold: Optional[hold_cascade.HoldResult] = None


def new_email_token() -> str:
    return secrets.token_urlsafe(32)


def _today() -> date:
    return datetime.now(pytz.timezone(settings.tz_default)).date()


# -------------------------
# Lookups
# -------------------------

def get(db: Session, notification_id: uuid.UUID) -> Notification:
    notification = db.query(Notification).filter(Notification.id == notification_id).first()
    if not notification:
        raise NotFound("Notification not found")
    return notification


def get_by_token(db: Session, token: str) -> Notification:
    """Public callers only ever present the token; an unknown one is rejected as invalid."""
    if not token:
        raise InvalidTokenError("Invalid token")
    notification = db.query(Notification).filter(Notification.email_token == token).first()
    if not notification:
        raise InvalidTokenError("Invalid token")
    return notification


def list_pending(
    db: Session,
    notification_type: Optional[str] = None,
    entity_type: Optional[str] = None,
) -> List[Notification]:
    q = db.query(Notification).filter(Notification.status == "pending")
    if notification_type:
        q = q.filter(Notification.notification_type == notification_type)
    if entity_type:
        q = q.filter(Notification.entity_type == entity_type)
    return q.order_by(Notification.expiry_date.asc(), Notification.created_at.asc()).all()


# -------------------------
# Transitions
# -------------------------

def _transition(
    db: Session,
    notification_id: uuid.UUID,
    new_status: str,
    *,
    actor_id: Optional[uuid.UUID] = None,
    commit: bool = True,
) -> TransitionResult:
    now = datetime.now(timezone.utc)
    values = {"status": new_status}
    if new_status == "resolved":
        values["resolved_at"] = now
        values["admin_response_required"] = False

    try:
        result = db.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.status == "pending")
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        if not result.rowcount:
            notification = db.query(Notification).filter(Notification.id == notification_id).first()
            if not notification:
                raise NotFound("Notification not found")
            log.info(
                "notification_transition_noop",
                notification_id=str(notification_id),
                requested=new_status,
                status=notification.status,
            )
            return TransitionResult(notification=notification, changed=False)

        notification = db.query(Notification).filter(Notification.id == notification_id).one()

        if new_status == "resolved" and notification.notification_type == "vehicle_breakdown":
            db.execute(
                update(VehicleBreakdown)
                .where(VehicleBreakdown.notification_id == notification.id, VehicleBreakdown.status != "resolved")
                .values(status="resolved", resolved_at=now)
                .execution_options(synchronize_session="fetch")
            )

        held = None
        if notification.entity_type in hold_cascade.ENTITY_TYPES and hold_cascade.is_held_by(
            db, notification.entity_type, notification.entity_id, notification.id
        ):
            held = hold_cascade.clear_hold(
                db, notification.entity_type, notification.entity_id, actor_id=actor_id, commit=False
            )

        if commit:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("notification_transition_failed", notification_id=str(notification_id), error=str(e))
        raise UpstreamStoreError(f"Failed to update notification: {e}")

    log.info(f"notification_{new_status}", notification_id=str(notification_id), hold_cleared=held is not None)
    if held is not None and commit:
        hold_cascade.audit_hold(db, held, actor_id=actor_id, notification_id=notification_id)
    return TransitionResult(notification=notification, changed=True, hold=held)


def resolve(db: Session, notification_id: uuid.UUID, *, actor_id: Optional[uuid.UUID] = None, commit: bool = True) -> TransitionResult:
    return _transition(db, notification_id, "resolved", actor_id=actor_id, commit=commit)


def dismiss(db: Session, notification_id: uuid.UUID, *, actor_id: Optional[uuid.UUID] = None, commit: bool = True) -> TransitionResult:
    return _transition(db, notification_id, "dismissed", actor_id=actor_id, commit=commit)


def record_employee_response(notification: Notification, response_type: str, details: Optional[dict] = None) -> None:
    """Stamp what the recipient did through their link. The caller commits."""
    notification.employee_response_type = response_type
    notification.employee_response_details = details
    notification.employee_response_received_at = datetime.now(timezone.utc)
    notification.admin_response_required = True


# -------------------------
# Recipients and e-mail content
# -------------------------

def entity_display_name(db: Session, entity_type: str, entity_id: uuid.UUID) -> str:
    if entity_type == "vehicle":
        vehicle = db.query(Vehicle).filter(Vehicle.id == entity_id).first()
        if vehicle and (vehicle.vehicle_identifier or vehicle.registration):
            return vehicle.vehicle_identifier or vehicle.registration
        return f"Vehicle #{entity_id}"
    employee = db.query(Employee).filter(Employee.id == entity_id).first()
    if employee and employee.full_name:
        return employee.full_name
    return f"{'Driver' if entity_type == 'driver' else 'Assistant'} #{entity_id}"


def resolve_recipients(db: Session, notification_id: uuid.UUID) -> List[Recipient]:
    """
    Who should receive the compliance e-mail.

    Vehicle notifications go to the assigned employee and to every driver and
    passenger assistant rostered on a route using the vehicle, deduplicated by
    address. Driver and assistant notifications go to the subject.
    """
    notification = get(db, notification_id)
    recipients: List[Recipient] = []
    seen = set()

    def _add(email: Optional[str], name: Optional[str], kind: str) -> None:
        if not email:
            return
        key = email.strip().lower()
        if key in seen:
            return
        seen.add(key)
        recipients.append(Recipient(email=email.strip(), name=name, type=kind))

    if notification.entity_type == "vehicle":
        assigned_id = notification.recipient_employee_id
        if not assigned_id:
            vehicle = db.query(Vehicle).filter(Vehicle.id == notification.entity_id).first()
            assigned_id = vehicle.assigned_employee_id if vehicle else None
        if assigned_id:
            employee = db.query(Employee).filter(Employee.id == assigned_id).first()
            if employee:
                _add(employee.personal_email, employee.full_name, "assigned_employee")
        if not recipients and notification.recipient_email:
            _add(notification.recipient_email, None, "assigned_employee")

        routes = db.query(Route).filter(Route.vehicle_id == notification.entity_id).all()
        for route in routes:
            if route.driver_id:
                driver = db.query(Driver).filter(Driver.employee_id == route.driver_id).first()
                if driver and driver.employee:
                    _add(driver.employee.personal_email, driver.employee.full_name, "driver")
            if route.passenger_assistant_id:
                pa = db.query(PassengerAssistant).filter(PassengerAssistant.employee_id == route.passenger_assistant_id).first()
                if pa and pa.employee:
                    _add(pa.employee.personal_email, pa.employee.full_name, "passenger_assistant")
    else:
        employee = db.query(Employee).filter(Employee.id == notification.entity_id).first()
        email = notification.recipient_email or (employee.personal_email if employee else None)
        _add(email, employee.full_name if employee else None, "subject")

    return recipients


def expiry_status(days_until_expiry: Optional[int]) -> str:
    if days_until_expiry is not None and days_until_expiry < 0:
        return "EXPIRED"
    if days_until_expiry is not None and days_until_expiry <= settings.expiring_soon_days:
        return "EXPIRING SOON"
    return "Expiring Soon"


def _days_until_expiry(notification: Notification) -> Optional[int]:
    if notification.days_until_expiry is not None:
        return notification.days_until_expiry
    if notification.expiry_date:
        return (notification.expiry_date - _today()).days
    return None


def public_links(notification: Notification) -> dict:
    base = settings.public_base_url.rstrip("/")
    return {
        "upload_link": f"{base}/upload-document/{notification.email_token}",
        "appointment_link": f"{base}/book-appointment/{notification.email_token}",
    }


def build_email_content(
    db: Session,
    notification_id: uuid.UUID,
    *,
    include_appointment_link: bool = True,
) -> EmailTemplate:
    notification = get(db, notification_id)
    if not notification.recipient_email:
        raise NoRecipientError("No recipient email address")

    entity_name = entity_display_name(db, notification.entity_type, notification.entity_id)
    doc_map = CERTIFICATE_DOCUMENTS.get(notification.entity_type, {})
    needed = doc_map.get(notification.certificate_type or "") or notification.certificate_name or "Compliance certificate"
    links = public_links(notification)
    days = _days_until_expiry(notification)
    status = expiry_status(days)

    if days is None:
        status_line = "Unknown"
    elif days < 0:
        status_line = f"EXPIRED {abs(days)} days ago"
    else:
        status_line = f"Expires in {days} days"
    expiry = notification.expiry_date.strftime("%d/%m/%Y") if notification.expiry_date else "Unknown"

    lines = [
        f"Dear {notification.recipient_email.split('@')[0]},",
        "",
        "This is an automated notification regarding compliance certificate expiry.",
        "",
        "Certificate Details:",
        f"- Certificate: {notification.certificate_name}",
        f"- Entity: {entity_name}",
        f"- Expiry Date: {expiry}",
        f"- Status: {status_line}",
        "",
        "Required Documents:",
        f"- {needed}",
        "",
        "Action Required:",
        "Please upload the required documents using the secure link below. "
        "You can scan documents directly using your device camera.",
        "",
        f"Upload Link: {links['upload_link']}",
        "",
    ]
    if include_appointment_link:
        lines += [
            "Book an Appointment (optional):",
            "If you need assistance, you can book an appointment using this link:",
            links["appointment_link"],
            "",
        ]
    lines += [
        "This link is unique and secure. Please do not share it with others.",
        "",
        "If you have any questions, please contact the fleet management office.",
        "",
        "Best regards,",
        "Fleet Management System",
    ]
    body = "\n".join(lines)

    return EmailTemplate(
        to=notification.recipient_email,
        subject=f"[{status}] {notification.certificate_name} - {entity_name}",
        body=body,
        html_body=text_to_html(body),
        upload_link=links["upload_link"],
        appointment_link=links["appointment_link"] if include_appointment_link else None,
        entity_name=entity_name,
        expiry_status=status,
    )


def text_to_html(body: str) -> str:
    return "<html><body>" + html.escape(body).replace("\n", "<br>\n") + "</body></html>"


def send_compliance_email(
    db: Session,
    notification_id: uuid.UUID,
    *,
    subject: Optional[str] = None,
    body: Optional[str] = None,
    hold: bool = True,
    include_appointment_link: bool = True,
    actor_id: Optional[uuid.UUID] = None,
    sender: Optional[EmailSender] = None,
) -> dict:
    """
    Send the compliance e-mail and, by default, put the entity on hold.

    Delivery happens before any hold is written; an SMTP failure leaves the
    entity untouched. The hold and the ``email_sent_at`` stamp commit together.
    """
    notification = get(db, notification_id)
    if notification.status != "pending":
        raise ValidationError(f"Notification is {notification.status}")

    template = build_email_content(db, notification_id, include_appointment_link=include_appointment_link)
    final_subject = subject or template.subject
    final_body = body or template.body
    html_body = text_to_html(final_body) if body else template.html_body

    addresses = [r.email for r in resolve_recipients(db, notification_id)] or [template.to]
    sender = sender or get_email_sender()
    try:
        sent = sender.send(addresses, final_subject, final_body, html_body)
    except (smtplib.SMTPException, OSError) as e:
        log.error("compliance_email_failed", notification_id=str(notification_id), error=str(e))
        raise DeliveryError(f"Failed to send email: {e}")

    held = None
    try:
        if sent:
            notification.email_sent_at = datetime.now(timezone.utc)
        if hold and notification.entity_type in hold_cascade.ENTITY_TYPES:
            held = hold_cascade.apply_hold(
                db,
                notification.entity_type,
                notification.entity_id,
                notification_id=notification.id,
                actor_id=actor_id,
                commit=False,
            )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("compliance_email_hold_failed", notification_id=str(notification_id), error=str(e))
        raise UpstreamStoreError(f"Email sent but hold could not be applied: {e}")

    if held is not None:
        hold_cascade.audit_hold(
            db, held, actor_id=actor_id, notification_id=notification.id, reason=settings.default_hold_reason
        )
    log.info("compliance_email_sent", notification_id=str(notification_id), recipients=addresses, delivered=sent, held=held is not None)
    return {
        "email_sent": sent,
        "recipients": addresses,
        "subject": final_subject,
        "held": held is not None,
        "hold": held.as_dict() if held else None,
        "upload_link": template.upload_link,
        "appointment_link": template.appointment_link,
    }
