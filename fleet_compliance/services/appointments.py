"""
Appointment slots and bookings.

A slot is claimed by at most one booking for its whole lifetime. The claim is
enforced by the unique constraint on ``appointment_bookings.appointment_slot_id``:
the loser of a concurrent insert gets an IntegrityError, which becomes Conflict.
"""
import uuid
from datetime import datetime
from typing import List, Optional

import pytz
import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..errors import Conflict, NotFound, UpstreamStoreError, ValidationError
from ..models.models import AppointmentBooking, AppointmentSlot
from . import admin_summary, notification_registry
from .audit import record_audit
from .mailer import EmailSender

log = structlog.get_logger(__name__)


def _local(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(pytz.timezone(settings.tz_default))


def create_slot(
    db: Session,
    slot_start: datetime,
    slot_end: datetime,
    notes: Optional[str] = None,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> AppointmentSlot:
    if slot_start >= slot_end:
        raise ValidationError("slot_start must be before slot_end")
    slot = AppointmentSlot(slot_start=slot_start, slot_end=slot_end, notes=notes, created_by=actor_id)
    db.add(slot)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise UpstreamStoreError(f"Failed to create slot: {e}")
    db.refresh(slot)
    log.info("appointment_slot_created", slot_id=str(slot.id))
    record_audit(
        db,
        "appointment_slots",
        slot.id,
        "CREATE",
        actor_id=actor_id,
        source="api",
        changes_json={"after": {"slot_start": slot_start.isoformat(), "slot_end": slot_end.isoformat(), "notes": notes}},
    )
    return slot


def list_slots(db: Session, available_only: bool = False) -> List[AppointmentSlot]:
    q = db.query(AppointmentSlot).options(joinedload(AppointmentSlot.booking))
    if available_only:
        q = q.filter(~AppointmentSlot.booking.has())
    return q.order_by(AppointmentSlot.slot_start.asc()).all()


def delete_slot(db: Session, slot_id: uuid.UUID, *, actor_id: Optional[uuid.UUID] = None) -> None:
    slot = db.query(AppointmentSlot).filter(AppointmentSlot.id == slot_id).first()
    if not slot:
        raise NotFound("Appointment slot not found")
    if slot.booking is not None:
        raise Conflict("Slot already booked and cannot be deleted")
    db.delete(slot)
    try:
        db.commit()
    except IntegrityError:
        # booked between the check above and the delete
        db.rollback()
        raise Conflict("Slot already booked and cannot be deleted")
    log.info("appointment_slot_deleted", slot_id=str(slot_id))
    record_audit(db, "appointment_slots", slot_id, "DELETE", actor_id=actor_id, source="api")


def book(
    db: Session,
    token: str,
    slot_id: uuid.UUID,
    name: Optional[str] = None,
    email: Optional[str] = None,
    *,
    sender: Optional[EmailSender] = None,
) -> AppointmentBooking:
    """
    Claim a slot for the notification identified by ``token``.

    The admin summary runs after the booking is committed and cannot undo it.
    """
    notification = notification_registry.get_by_token(db, token)
    if notification.status != "pending":
        raise ValidationError("This link is no longer active")
    slot = db.query(AppointmentSlot).filter(AppointmentSlot.id == slot_id).first()
    if not slot:
        raise NotFound("Appointment slot not found")

    booking = AppointmentBooking(
        appointment_slot_id=slot.id,
        notification_id=notification.id,
        booked_by_email=email or notification.recipient_email,
        booked_by_name=name,
    )
    db.add(booking)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        log.info("appointment_slot_conflict", slot_id=str(slot_id), notification_id=str(notification.id))
        raise Conflict("Slot already booked")
    except SQLAlchemyError as e:
        db.rollback()
        raise UpstreamStoreError(f"Failed to book appointment: {e}")
    db.refresh(booking)
    log.info("appointment_booked", slot_id=str(slot_id), booking_id=str(booking.id), notification_id=str(notification.id))

    start, end = _local(slot.slot_start), _local(slot.slot_end)
    admin_summary.notify_admins(
        db,
        notification,
        "appointment_booking",
        recipient_name=name,
        recipient_email=booking.booked_by_email,
        details={
            "appointmentDate": start.strftime("%d/%m/%Y"),
            "appointmentTime": f"{start.strftime('%H:%M')} - {end.strftime('%H:%M')}",
            "slotStart": slot.slot_start.isoformat(),
            "slotEnd": slot.slot_end.isoformat(),
        },
        sender=sender,
    )
    return booking
