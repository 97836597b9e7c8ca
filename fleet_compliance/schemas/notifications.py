import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .holds import HoldResponse


class NotificationType(str, Enum):
    certificate_expiry = "certificate_expiry"
    vehicle_breakdown = "vehicle_breakdown"
    driver_tardiness = "driver_tardiness"


class NotificationStatus(str, Enum):
    pending = "pending"
    resolved = "resolved"
    dismissed = "dismissed"


class NotificationResponse(BaseModel):
    id: uuid.UUID
    notification_type: NotificationType
    entity_type: str
    entity_id: uuid.UUID
    certificate_type: Optional[str] = None
    certificate_name: Optional[str] = None
    expiry_date: Optional[date] = None
    days_until_expiry: Optional[int] = None
    recipient_employee_id: Optional[uuid.UUID] = None
    recipient_email: Optional[str] = None
    email_token: str
    status: NotificationStatus
    admin_response_required: bool
    details: Optional[Dict[str, Any]] = None
    email_sent_at: Optional[datetime] = None
    employee_response_type: Optional[str] = None
    employee_response_details: Optional[Dict[str, Any]] = None
    employee_response_received_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PublicNotificationResponse(BaseModel):
    """What a recipient sees behind their e-mail link"""
    notification_type: NotificationType
    entity_type: str
    entity_name: str
    certificate_name: Optional[str] = None
    expiry_date: Optional[date] = None
    days_until_expiry: Optional[int] = None
    status: NotificationStatus
    active: bool


class RecipientResponse(BaseModel):
    email: str
    name: Optional[str] = None
    type: str


class EmailTemplateResponse(BaseModel):
    to: str
    subject: str
    body: str
    html_body: str
    upload_link: str
    appointment_link: Optional[str] = None
    entity_name: str
    expiry_status: str


class SendEmailRequest(BaseModel):
    subject: Optional[str] = None
    body: Optional[str] = Field(default=None, alias="emailBody")
    hold: bool = True
    include_appointment_link: bool = Field(default=True, alias="includeAppointmentLink")

    class Config:
        populate_by_name = True


class SendEmailResponse(BaseModel):
    success: bool = True
    email_sent: bool
    recipients: List[str]
    subject: str
    held: bool
    hold: Optional[HoldResponse] = None
    upload_link: str
    appointment_link: Optional[str] = None


class TransitionResponse(BaseModel):
    success: bool = True
    changed: bool
    hold_cleared: bool = False
    notification: NotificationResponse


class RefreshResponse(BaseModel):
    success: bool
    message: str


class FunctionCheckResponse(BaseModel):
    exists: bool
    working: bool
    function: str
    message: str
