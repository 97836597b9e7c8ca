import uuid
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class SubjectType(str, Enum):
    driver = "driver"
    pa = "pa"
    vehicle = "vehicle"
    employee = "employee"


class Criticality(str, Enum):
    critical = "critical"
    recommended = "recommended"


class FulfillmentStatus(str, Enum):
    missing = "missing"
    pending = "pending"
    valid = "valid"
    expired = "expired"


# Requirements
class RequirementBase(BaseModel):
    name: str
    code: Optional[str] = None
    subject_type: SubjectType
    requires_expiry: bool = False
    requires_upload: bool = False
    requires_number: bool = False
    criticality: Criticality = Criticality.recommended
    default_validity_days: Optional[int] = None
    renewal_notice_days: Optional[int] = None
    is_required: bool = True
    is_active: bool = True


class RequirementCreate(RequirementBase):
    class Config:
        use_enum_values = True
        validate_default = True


class RequirementUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    subject_type: Optional[SubjectType] = None
    requires_expiry: Optional[bool] = None
    requires_upload: Optional[bool] = None
    requires_number: Optional[bool] = None
    criticality: Optional[Criticality] = None
    default_validity_days: Optional[int] = None
    renewal_notice_days: Optional[int] = None
    is_required: Optional[bool] = None
    is_active: Optional[bool] = None

    class Config:
        use_enum_values = True


class RequirementResponse(RequirementBase):
    id: uuid.UUID
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Raw files
class UploadedDocumentResponse(BaseModel):
    id: uuid.UUID
    file_name: str
    file_path: str
    file_url: Optional[str] = None
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None
    notification_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Fulfillment
class SubjectDocumentCreate(BaseModel):
    requirement_id: uuid.UUID
    subject_type: SubjectType
    subject_id: str
    status: Optional[FulfillmentStatus] = None
    certificate_number: Optional[str] = None
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None

    class Config:
        use_enum_values = True


class SubjectDocumentUpdate(BaseModel):
    status: Optional[FulfillmentStatus] = None
    certificate_number: Optional[str] = None
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None

    class Config:
        use_enum_values = True


class AttachFileRequest(BaseModel):
    uploaded_document_id: uuid.UUID


class SubjectDocumentResponse(BaseModel):
    id: uuid.UUID
    requirement_id: uuid.UUID
    subject_type: SubjectType
    driver_employee_id: Optional[uuid.UUID] = None
    pa_employee_id: Optional[uuid.UUID] = None
    vehicle_id: Optional[uuid.UUID] = None
    employee_id: Optional[uuid.UUID] = None
    status: FulfillmentStatus
    effective_status: FulfillmentStatus
    certificate_number: Optional[str] = None
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    requirement: Optional[RequirementResponse] = None
    files: List[UploadedDocumentResponse] = []


class ChecklistItem(BaseModel):
    requirement: RequirementResponse
    document: Optional[SubjectDocumentResponse] = None
    effective_status: FulfillmentStatus


class SubjectDocumentsResponse(BaseModel):
    requirements: List[RequirementResponse]
    documents: List[SubjectDocumentResponse]
    checklist: List[ChecklistItem]
