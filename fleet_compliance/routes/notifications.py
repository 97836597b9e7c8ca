import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user
from ..schemas.holds import EntityType
from ..schemas.notifications import (
    EmailTemplateResponse,
    FunctionCheckResponse,
    NotificationResponse,
    NotificationType,
    RecipientResponse,
    RefreshResponse,
    SendEmailRequest,
    SendEmailResponse,
    TransitionResponse,
)
from ..services import expiry_detector, notification_registry
from ..services.mailer import EmailSender, get_email_sender

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationResponse])
def list_pending(
    type: Optional[NotificationType] = Query(None),
    entity_type: Optional[EntityType] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """Pending notifications, soonest expiry first"""
    return notification_registry.list_pending(
        db,
        notification_type=type.value if type else None,
        entity_type=entity_type.value if entity_type else None,
    )


@router.post("/refresh", response_model=RefreshResponse)
def refresh(db: Session = Depends(get_db), _=Depends(get_current_user)):
    """Run the certificate expiry procedure now"""
    return expiry_detector.refresh(db)


@router.get("/check-function", response_model=FunctionCheckResponse)
def check_function(db: Session = Depends(get_db), _=Depends(get_current_user)):
    return expiry_detector.check(db)


@router.get("/{notification_id}", response_model=NotificationResponse)
def get_notification(notification_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return notification_registry.get(db, notification_id)


@router.get("/{notification_id}/recipients", response_model=List[RecipientResponse])
def get_recipients(notification_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return [r.__dict__ for r in notification_registry.resolve_recipients(db, notification_id)]


@router.get("/{notification_id}/email-template", response_model=EmailTemplateResponse)
def get_email_template(
    notification_id: uuid.UUID,
    include_appointment_link: bool = Query(True, alias="includeAppointmentLink"),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """Default subject and body, for the coordinator to review before sending"""
    template = notification_registry.build_email_content(
        db, notification_id, include_appointment_link=include_appointment_link
    )
    return template.as_dict()


@router.post("/{notification_id}/send-email", response_model=SendEmailResponse)
def send_email(
    notification_id: uuid.UUID,
    body: Optional[SendEmailRequest] = None,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    sender: EmailSender = Depends(get_email_sender),
):
    body = body or SendEmailRequest()
    return notification_registry.send_compliance_email(
        db,
        notification_id,
        subject=body.subject,
        body=body.body,
        hold=body.hold,
        include_appointment_link=body.include_appointment_link,
        actor_id=user.id,
        sender=sender,
    )


def _transition_response(result: notification_registry.TransitionResult) -> dict:
    return {
        "success": True,
        "changed": result.changed,
        "hold_cleared": result.hold is not None,
        "notification": result.notification,
    }


@router.post("/{notification_id}/resolve", response_model=TransitionResponse)
def resolve(notification_id: uuid.UUID, db: Session = Depends(get_db), user=Depends(get_current_user)):
    """Idempotent: resolving a notification that is no longer pending reports success without changes"""
    return _transition_response(notification_registry.resolve(db, notification_id, actor_id=user.id))


@router.post("/{notification_id}/dismiss", response_model=TransitionResponse)
def dismiss(notification_id: uuid.UUID, db: Session = Depends(get_db), user=Depends(get_current_user)):
    return _transition_response(notification_registry.dismiss(db, notification_id, actor_id=user.id))
