"""
Admin summary side channel: runs after a recipient books a slot or uploads
documents. Nothing here is allowed to fail the booking or upload that
triggered it.
"""
import smtplib
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Notification, SystemActivity
from .mailer import EmailSender, get_email_sender
from .notification_registry import entity_display_name, record_employee_response

log = structlog.get_logger(__name__)

RESPONSE_TYPES = {
    "appointment_booking": "appointment_booked",
    "document_upload": "document_uploaded",
}


def _summary_text(activity: SystemActivity) -> str:
    what = "booked an appointment" if activity.activity_type == "appointment_booking" else "uploaded documents"
    who = activity.recipient_name or activity.recipient_email or "A recipient"
    lines = [
        f"{who} {what} for {activity.certificate_name or 'a compliance notification'}.",
        "",
        f"Entity: {activity.entity_name}",
        f"Notification: {activity.notification_id}",
    ]
    for key, value in (activity.details or {}).items():
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


def notify_admins(
    db: Session,
    notification: Notification,
    activity_type: str,
    *,
    recipient_name: Optional[str] = None,
    recipient_email: Optional[str] = None,
    details: Optional[dict] = None,
    sender: Optional[EmailSender] = None,
) -> Optional[SystemActivity]:
    """Record a SystemActivity, flag the notification for review and e-mail the admins."""
    activity = None
    try:
        activity = SystemActivity(
            activity_type=activity_type,
            notification_id=notification.id,
            entity_type=notification.entity_type,
            entity_id=notification.entity_id,
            entity_name=entity_display_name(db, notification.entity_type, notification.entity_id),
            certificate_name=notification.certificate_name,
            recipient_name=recipient_name,
            recipient_email=recipient_email or notification.recipient_email,
            details=details or {},
        )
        db.add(activity)
        record_employee_response(notification, RESPONSE_TYPES[activity_type], details or {})
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.warning("admin_summary_record_failed", notification_id=str(notification.id), error=str(e))
        return None

    admins = settings.admin_emails
    if not admins:
        return activity
    try:
        (sender or get_email_sender()).send(
            admins,
            f"[Compliance] {activity.entity_name}: {activity_type.replace('_', ' ')}",
            _summary_text(activity),
        )
    except (smtplib.SMTPException, OSError) as e:
        log.warning("admin_summary_email_failed", notification_id=str(notification.id), error=str(e))
    return activity
