import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_current_user
from ..ratelimit import limiter
from ..schemas.appointments import BookingRequest, BookResponse, SlotCreate, SlotResponse
from ..services import appointments
from ..services.mailer import EmailSender, get_email_sender

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.get("/slots", response_model=List[SlotResponse])
def list_slots(
    available_only: bool = Query(False, alias="availableOnly"),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """Slots with their booking embedded; a slot without one is available"""
    return appointments.list_slots(db, available_only=available_only)


@router.post("/slots", response_model=SlotResponse)
def create_slot(
    body: SlotCreate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return appointments.create_slot(db, body.slot_start, body.slot_end, body.notes, actor_id=user.id)


@router.delete("/slots/{slot_id}")
def delete_slot(
    slot_id: uuid.UUID,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    appointments.delete_slot(db, slot_id, actor_id=user.id)
    return {"success": True}


@router.post("/book", response_model=BookResponse)
@limiter.limit(settings.public_rate_limit)
def book(
    request: Request,
    body: BookingRequest,
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
):
    """Public: the recipient presents the token from their e-mail link"""
    booking = appointments.book(db, body.token, body.slot_id, body.name, body.email, sender=sender)
    return {"success": True, "booking": booking}
