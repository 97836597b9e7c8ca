"""
Document requirements and their fulfillment by concrete subjects.

A fulfillment row points at exactly one subject through one of four key
columns, chosen by ``subject_type``.
"""
import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

import pytz
import structlog
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from ..config import settings
from ..errors import Conflict, NotFound, UpstreamStoreError, ValidationError
from ..models.models import DocumentRequirement, SubjectDocument, UploadedDocument
from .audit import compute_diff, record_audit

log = structlog.get_logger(__name__)

SUBJECT_COLUMNS = {
    "driver": "driver_employee_id",
    "pa": "pa_employee_id",
    "vehicle": "vehicle_id",
    "employee": "employee_id",
}
FULFILLMENT_STATUSES = ("missing", "pending", "valid", "expired")
CRITICALITIES = ("critical", "recommended")

_REQUIREMENT_FIELDS = (
    "name",
    "code",
    "subject_type",
    "requires_expiry",
    "requires_upload",
    "requires_number",
    "criticality",
    "default_validity_days",
    "renewal_notice_days",
    "is_required",
    "is_active",
)

# NOT NULL columns; an explicit None is a validation error
_REQUIRED_REQUIREMENT_FIELDS = (
    "name",
    "subject_type",
    "requires_expiry",
    "requires_upload",
    "requires_number",
    "criticality",
    "is_required",
    "is_active",
)
_FULFILLMENT_FIELDS = ("status", "certificate_number", "issue_date", "expiry_date", "notes")


def subject_column(subject_type: str) -> str:
    column = SUBJECT_COLUMNS.get(subject_type)
    if not column:
        raise ValidationError(f"Invalid subject_type: {subject_type}")
    return column


def parse_subject_id(subject_id) -> uuid.UUID:
    if isinstance(subject_id, uuid.UUID):
        return subject_id
    try:
        return uuid.UUID(str(subject_id))
    except (TypeError, ValueError):
        raise ValidationError("Invalid subject_id")


def _subject_filter(subject_type: str, subject_id) -> dict:
    return {subject_column(subject_type): parse_subject_id(subject_id)}


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise UpstreamStoreError(f"Failed to {what}: {e}")


def _today() -> date:
    return datetime.now(pytz.timezone(settings.tz_default)).date()


# -------------------------
# Requirements
# -------------------------

def requirements_for(db: Session, subject_type: str) -> List[DocumentRequirement]:
    subject_column(subject_type)
    return (
        db.query(DocumentRequirement)
        .filter(DocumentRequirement.subject_type == subject_type, DocumentRequirement.is_active.is_(True))
        .order_by(DocumentRequirement.name.asc())
        .all()
    )


def list_requirements(
    db: Session,
    subject_type: Optional[str] = None,
    criticality: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_required: Optional[bool] = None,
    search: Optional[str] = None,
) -> List[DocumentRequirement]:
    q = db.query(DocumentRequirement)
    if subject_type:
        q = q.filter(DocumentRequirement.subject_type == subject_type)
    if criticality:
        q = q.filter(DocumentRequirement.criticality == criticality)
    if is_active is not None:
        q = q.filter(DocumentRequirement.is_active.is_(is_active))
    if is_required is not None:
        q = q.filter(DocumentRequirement.is_required.is_(is_required))
    if search:
        like = f"%{search}%"
        q = q.filter(or_(DocumentRequirement.name.ilike(like), DocumentRequirement.code.ilike(like)))
    return q.order_by(DocumentRequirement.name.asc()).all()


def get_requirement(db: Session, requirement_id: uuid.UUID) -> DocumentRequirement:
    req = db.query(DocumentRequirement).filter(DocumentRequirement.id == requirement_id).first()
    if not req:
        raise NotFound("Document requirement not found")
    return req


def _check_requirement_fields(fields: dict) -> None:
    nulls = [k for k in _REQUIRED_REQUIREMENT_FIELDS if k in fields and fields[k] is None]
    if nulls:
        raise ValidationError(f"{nulls[0]} cannot be null", details={"fields": nulls})
    if "subject_type" in fields:
        subject_column(fields["subject_type"])
    if "criticality" in fields and fields["criticality"] not in CRITICALITIES:
        raise ValidationError("criticality must be 'critical' or 'recommended'")
    if "name" in fields and not (fields["name"] or "").strip():
        raise ValidationError("name is required")


def create_requirement(db: Session, fields: dict, *, actor_id: Optional[uuid.UUID] = None) -> DocumentRequirement:
    _check_requirement_fields(fields)
    if "name" not in fields or "subject_type" not in fields:
        raise ValidationError("name and subject_type are required")
    data = {k: v for k, v in fields.items() if k in _REQUIREMENT_FIELDS}
    data["name"] = data["name"].strip()
    req = DocumentRequirement(**data, created_by=actor_id, updated_at=datetime.now(timezone.utc))
    db.add(req)
    _commit(db, "create document requirement")
    db.refresh(req)
    record_audit(db, "document_requirements", req.id, "CREATE", actor_id=actor_id, source="api", changes_json={"after": _jsonable(data)})
    return req


def update_requirement(db: Session, requirement_id: uuid.UUID, fields: dict, *, actor_id: Optional[uuid.UUID] = None) -> DocumentRequirement:
    req = get_requirement(db, requirement_id)
    _check_requirement_fields(fields)
    if fields.get("subject_type", req.subject_type) != req.subject_type:
        in_use = db.query(SubjectDocument.id).filter(SubjectDocument.requirement_id == req.id).first()
        if in_use:
            raise Conflict("Requirement has fulfillment records; its subject type cannot change")
    before = {k: getattr(req, k) for k in _REQUIREMENT_FIELDS}
    for key, value in fields.items():
        if key in _REQUIREMENT_FIELDS:
            setattr(req, key, value.strip() if key == "name" else value)
    req.updated_at = datetime.now(timezone.utc)
    _commit(db, "update document requirement")
    db.refresh(req)
    diff = compute_diff(_jsonable(before), _jsonable({k: getattr(req, k) for k in _REQUIREMENT_FIELDS}))
    if diff:
        record_audit(db, "document_requirements", req.id, "UPDATE", actor_id=actor_id, source="api", changes_json=diff)
    return req


def delete_requirement(db: Session, requirement_id: uuid.UUID, *, actor_id: Optional[uuid.UUID] = None) -> None:
    req = get_requirement(db, requirement_id)
    in_use = db.query(SubjectDocument.id).filter(SubjectDocument.requirement_id == req.id).first()
    if in_use:
        raise Conflict("Requirement has fulfillment records; deactivate it instead")
    db.delete(req)
    _commit(db, "delete document requirement")
    record_audit(db, "document_requirements", requirement_id, "DELETE", actor_id=actor_id, source="api")


# -------------------------
# Fulfillment
# -------------------------

def documents_for(db: Session, subject_type: str, subject_id) -> List[SubjectDocument]:
    subject_filter = _subject_filter(subject_type, subject_id)
    return (
        db.query(SubjectDocument)
        .options(joinedload(SubjectDocument.requirement), selectinload(SubjectDocument.files))
        .filter_by(subject_type=subject_type, **subject_filter)
        .order_by(SubjectDocument.created_at.desc())
        .all()
    )


def get_fulfillment(db: Session, document_id: uuid.UUID) -> SubjectDocument:
    doc = (
        db.query(SubjectDocument)
        .options(joinedload(SubjectDocument.requirement), selectinload(SubjectDocument.files))
        .filter(SubjectDocument.id == document_id)
        .first()
    )
    if not doc:
        raise NotFound("Subject document not found")
    return doc


def _check_status(status: Optional[str]) -> None:
    if status not in FULFILLMENT_STATUSES:
        raise ValidationError(f"Invalid status: {status}")


def upsert_fulfillment(
    db: Session,
    requirement_id: uuid.UUID,
    subject_type: str,
    subject_id,
    status: Optional[str] = None,
    certificate_number: Optional[str] = None,
    issue_date: Optional[date] = None,
    expiry_date: Optional[date] = None,
    notes: Optional[str] = None,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> SubjectDocument:
    """Create the fulfillment for (requirement, subject), or update the one that exists."""
    subject_filter = _subject_filter(subject_type, subject_id)
    status = status or "missing"
    _check_status(status)
    req = get_requirement(db, requirement_id)
    if req.subject_type != subject_type:
        raise ValidationError(f"Requirement applies to '{req.subject_type}', not '{subject_type}'")

    doc = (
        db.query(SubjectDocument)
        .filter_by(requirement_id=req.id, subject_type=subject_type, **subject_filter)
        .first()
    )
    action = "UPDATE" if doc else "CREATE"
    if doc is None:
        doc = SubjectDocument(requirement_id=req.id, subject_type=subject_type, created_by=actor_id, **subject_filter)
        db.add(doc)
    doc.status = status
    doc.certificate_number = certificate_number
    doc.issue_date = issue_date
    doc.expiry_date = expiry_date
    doc.notes = notes
    doc.updated_by = actor_id
    doc.updated_at = datetime.now(timezone.utc)
    _commit(db, "save subject document")
    db.refresh(doc)
    log.info("subject_document_saved", document_id=str(doc.id), action=action, status=status)
    record_audit(
        db,
        "subject_documents",
        doc.id,
        action,
        actor_id=actor_id,
        source="api",
        changes_json={"after": _jsonable({k: getattr(doc, k) for k in _FULFILLMENT_FIELDS})},
    )
    return get_fulfillment(db, doc.id)


def update_fulfillment(db: Session, document_id: uuid.UUID, fields: dict, *, actor_id: Optional[uuid.UUID] = None) -> SubjectDocument:
    doc = get_fulfillment(db, document_id)
    if "status" in fields:
        _check_status(fields["status"])
    before = {k: getattr(doc, k) for k in _FULFILLMENT_FIELDS}
    for key, value in fields.items():
        if key in _FULFILLMENT_FIELDS:
            setattr(doc, key, value)
    doc.updated_by = actor_id
    doc.updated_at = datetime.now(timezone.utc)
    _commit(db, "update subject document")
    diff = compute_diff(_jsonable(before), _jsonable({k: getattr(doc, k) for k in _FULFILLMENT_FIELDS}))
    if diff:
        record_audit(db, "subject_documents", doc.id, "UPDATE", actor_id=actor_id, source="api", changes_json=diff)
    return get_fulfillment(db, document_id)


def delete_fulfillment(db: Session, document_id: uuid.UUID, *, actor_id: Optional[uuid.UUID] = None) -> None:
    doc = get_fulfillment(db, document_id)
    db.delete(doc)
    _commit(db, "delete subject document")
    record_audit(db, "subject_documents", document_id, "DELETE", actor_id=actor_id, source="api")


def attach_file(
    db: Session,
    document_id: uuid.UUID,
    uploaded_document_id: uuid.UUID,
    *,
    actor_id: Optional[uuid.UUID] = None,
) -> SubjectDocument:
    """Link a raw file to a fulfillment. A missing fulfillment becomes valid once a file is attached."""
    doc = get_fulfillment(db, document_id)
    upload = db.query(UploadedDocument).filter(UploadedDocument.id == uploaded_document_id).first()
    if not upload:
        raise NotFound("Uploaded document not found")
    if any(f.id == upload.id for f in doc.files):
        return doc
    doc.files.append(upload)
    if doc.status == "missing":
        doc.status = "valid"
    doc.updated_by = actor_id
    doc.updated_at = datetime.now(timezone.utc)
    _commit(db, "attach file")
    record_audit(
        db,
        "subject_documents",
        doc.id,
        "ATTACH",
        actor_id=actor_id,
        source="api",
        context={"uploaded_document_id": str(upload.id)},
    )
    return get_fulfillment(db, document_id)


def effective_status(doc: SubjectDocument, today: Optional[date] = None) -> str:
    """
    Status as shown to coordinators.

    ``pending`` means awaiting review and is reported as is. Otherwise a past
    expiry date wins, and a ``missing`` row that has files reads as ``valid``.
    """
    today = today or _today()
    if doc.status == "pending":
        return "pending"
    if doc.expiry_date and doc.expiry_date < today:
        return "expired"
    if doc.status == "missing" and doc.files:
        return "valid"
    return doc.status


def checklist(db: Session, subject_type: str, subject_id, today: Optional[date] = None) -> List[dict]:
    """Every active requirement for the subject paired with its latest fulfillment."""
    documents = documents_for(db, subject_type, subject_id)
    latest = {}
    for doc in documents:
        # documents_for is newest first
        latest.setdefault(doc.requirement_id, doc)
    items = []
    for req in requirements_for(db, subject_type):
        doc = latest.get(req.id)
        items.append({
            "requirement": req,
            "document": doc,
            "effective_status": effective_status(doc, today) if doc else "missing",
        })
    return items


def _jsonable(values: dict) -> dict:
    out = {}
    for k, v in values.items():
        if isinstance(v, (date, datetime)):
            out[k] = v.isoformat()
        elif isinstance(v, uuid.UUID):
            out[k] = str(v)
        else:
            out[k] = v
    return out
