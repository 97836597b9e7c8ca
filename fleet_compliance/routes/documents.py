import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user
from ..models.models import SubjectDocument
from ..schemas.documents import (
    AttachFileRequest,
    Criticality,
    RequirementCreate,
    RequirementResponse,
    RequirementUpdate,
    SubjectDocumentCreate,
    SubjectDocumentResponse,
    SubjectDocumentsResponse,
    SubjectDocumentUpdate,
    SubjectType,
)
from ..services import document_fulfillment

requirements_router = APIRouter(prefix="/document-requirements", tags=["documents"])
router = APIRouter(prefix="/subject-documents", tags=["documents"])


def _document_out(doc: SubjectDocument) -> SubjectDocumentResponse:
    return SubjectDocumentResponse.model_validate(
        {
            **{c: getattr(doc, c) for c in (
                "id", "requirement_id", "subject_type", "driver_employee_id", "pa_employee_id",
                "vehicle_id", "employee_id", "status", "certificate_number", "issue_date",
                "expiry_date", "notes", "created_at", "updated_at",
            )},
            "effective_status": document_fulfillment.effective_status(doc),
            "requirement": RequirementResponse.model_validate(doc.requirement) if doc.requirement else None,
            "files": list(doc.files),
        },
        from_attributes=True,
    )


# Requirements
@requirements_router.get("", response_model=List[RequirementResponse])
def list_requirements(
    subject_type: Optional[SubjectType] = Query(None),
    criticality: Optional[Criticality] = Query(None),
    is_active: Optional[bool] = Query(None),
    is_required: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    return document_fulfillment.list_requirements(
        db,
        subject_type=subject_type.value if subject_type else None,
        criticality=criticality.value if criticality else None,
        is_active=is_active,
        is_required=is_required,
        search=search,
    )


@requirements_router.post("", response_model=RequirementResponse)
def create_requirement(body: RequirementCreate, db: Session = Depends(get_db), user=Depends(get_current_user)):
    return document_fulfillment.create_requirement(db, body.model_dump(), actor_id=user.id)


@requirements_router.patch("/{requirement_id}", response_model=RequirementResponse)
def update_requirement(
    requirement_id: uuid.UUID,
    body: RequirementUpdate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return document_fulfillment.update_requirement(db, requirement_id, body.model_dump(exclude_unset=True), actor_id=user.id)


@requirements_router.delete("/{requirement_id}")
def delete_requirement(requirement_id: uuid.UUID, db: Session = Depends(get_db), user=Depends(get_current_user)):
    document_fulfillment.delete_requirement(db, requirement_id, actor_id=user.id)
    return {"success": True}


# Fulfillment
@router.get("", response_model=SubjectDocumentsResponse)
def get_subject_documents(
    subject_type: SubjectType = Query(...),
    subject_id: str = Query(...),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """Active requirements for the subject type, this subject's fulfillment rows and the merged checklist"""
    items = document_fulfillment.checklist(db, subject_type.value, subject_id)
    return {
        "requirements": [item["requirement"] for item in items],
        "documents": [_document_out(d) for d in document_fulfillment.documents_for(db, subject_type.value, subject_id)],
        "checklist": [
            {
                "requirement": item["requirement"],
                "document": _document_out(item["document"]) if item["document"] else None,
                "effective_status": item["effective_status"],
            }
            for item in items
        ],
    }


@router.post("", response_model=SubjectDocumentResponse)
def upsert_subject_document(body: SubjectDocumentCreate, db: Session = Depends(get_db), user=Depends(get_current_user)):
    doc = document_fulfillment.upsert_fulfillment(
        db,
        body.requirement_id,
        body.subject_type,
        body.subject_id,
        status=body.status,
        certificate_number=body.certificate_number,
        issue_date=body.issue_date,
        expiry_date=body.expiry_date,
        notes=body.notes,
        actor_id=user.id,
    )
    return _document_out(doc)


@router.patch("/{document_id}", response_model=SubjectDocumentResponse)
def update_subject_document(
    document_id: uuid.UUID,
    body: SubjectDocumentUpdate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    doc = document_fulfillment.update_fulfillment(db, document_id, body.model_dump(exclude_unset=True), actor_id=user.id)
    return _document_out(doc)


@router.delete("/{document_id}")
def delete_subject_document(document_id: uuid.UUID, db: Session = Depends(get_db), user=Depends(get_current_user)):
    document_fulfillment.delete_fulfillment(db, document_id, actor_id=user.id)
    return {"success": True}


@router.post("/{document_id}/files", response_model=SubjectDocumentResponse)
def attach_file(
    document_id: uuid.UUID,
    body: AttachFileRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    doc = document_fulfillment.attach_file(db, document_id, body.uploaded_document_id, actor_id=user.id)
    return _document_out(doc)
