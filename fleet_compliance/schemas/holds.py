import uuid
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class EntityType(str, Enum):
    vehicle = "vehicle"
    driver = "driver"
    assistant = "assistant"


class HoldRequest(BaseModel):
    entity_type: EntityType = Field(alias="entityType")
    entity_id: uuid.UUID = Field(alias="entityId")
    notification_id: Optional[uuid.UUID] = Field(default=None, alias="notificationId")
    reason: Optional[str] = None

    class Config:
        populate_by_name = True
        use_enum_values = True


class ClearHoldRequest(BaseModel):
    entity_type: EntityType = Field(alias="entityType")
    entity_id: uuid.UUID = Field(alias="entityId")

    class Config:
        populate_by_name = True
        use_enum_values = True


class CascadeSetResponse(BaseModel):
    entity_type: EntityType
    entity_id: uuid.UUID
    vehicle_ids: List[uuid.UUID] = []
    route_ids: List[uuid.UUID] = []
    driver_ids: List[uuid.UUID] = []
    assistant_ids: List[uuid.UUID] = []


class HoldResponse(BaseModel):
    success: bool = True
    entity_type: EntityType
    entity_id: uuid.UUID
    on_hold: bool
    updated: Dict[str, int]
    cascade: CascadeSetResponse
