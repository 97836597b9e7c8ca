import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SessionType(str, Enum):
    am = "AM"
    pm = "PM"


class TardinessReportCreate(BaseModel):
    driver_id: uuid.UUID = Field(alias="driverId")
    route_id: Optional[uuid.UUID] = Field(default=None, alias="routeId")
    session_type: SessionType = Field(alias="sessionType")
    reason: str = Field(min_length=1)
    additional_notes: Optional[str] = Field(default=None, alias="additionalNotes")

    class Config:
        populate_by_name = True
        use_enum_values = True


class TardinessReviewRequest(BaseModel):
    coordinator_notes: Optional[str] = Field(default=None, alias="coordinatorNotes")

    class Config:
        populate_by_name = True


class TardinessReportResponse(BaseModel):
    id: uuid.UUID
    driver_id: uuid.UUID
    route_id: Optional[uuid.UUID] = None
    session_type: SessionType
    session_date: date
    reason: str
    additional_notes: Optional[str] = None
    status: str
    coordinator_id: Optional[uuid.UUID] = None
    coordinator_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    notification_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TardinessReviewResponse(BaseModel):
    success: bool = True
    changed: bool
    report: TardinessReportResponse


class BreakdownCreate(BaseModel):
    vehicle_id: uuid.UUID = Field(alias="vehicleId")
    route_id: Optional[uuid.UUID] = Field(default=None, alias="routeId")
    description: Optional[str] = None
    location: Optional[str] = None

    class Config:
        populate_by_name = True


class BreakdownResponse(BaseModel):
    id: uuid.UUID
    vehicle_id: uuid.UUID
    route_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    location: Optional[str] = None
    status: str
    resolved_at: Optional[datetime] = None
    notification_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
