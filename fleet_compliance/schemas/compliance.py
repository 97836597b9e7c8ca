import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .notifications import NotificationResponse


class ApplicationStatus(str, Enum):
    not_applied = "not_applied"
    applied = "applied"


class CaseOpenRequest(BaseModel):
    notification_id: uuid.UUID


class CaseOpenResponse(BaseModel):
    case_id: uuid.UUID
    existing: bool


class CaseUpdate(BaseModel):
    application_status: Optional[ApplicationStatus] = None
    date_applied: Optional[date] = None
    appointment_date: Optional[datetime] = None

    class Config:
        use_enum_values = True


class CaseResponse(BaseModel):
    id: uuid.UUID
    notification_id: uuid.UUID
    application_status: ApplicationStatus
    date_applied: Optional[date] = None
    appointment_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    notification: Optional[NotificationResponse] = None

    class Config:
        from_attributes = True
