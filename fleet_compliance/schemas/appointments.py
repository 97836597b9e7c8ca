import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SlotCreate(BaseModel):
    slot_start: datetime = Field(alias="slotStart")
    slot_end: datetime = Field(alias="slotEnd")
    notes: Optional[str] = None

    class Config:
        populate_by_name = True


class BookingRequest(BaseModel):
    token: str = Field(min_length=1)
    slot_id: uuid.UUID = Field(alias="slotId")
    name: Optional[str] = None
    email: Optional[str] = None

    class Config:
        populate_by_name = True


class BookingResponse(BaseModel):
    id: uuid.UUID
    appointment_slot_id: uuid.UUID
    notification_id: uuid.UUID
    booked_by_email: Optional[str] = None
    booked_by_name: Optional[str] = None
    booked_at: Optional[datetime] = None
    status: str

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    id: uuid.UUID
    slot_start: datetime
    slot_end: datetime
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    booking: Optional[BookingResponse] = None

    class Config:
        from_attributes = True


class BookResponse(BaseModel):
    success: bool = True
    booking: BookingResponse
