import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..errors import NotFound, UpstreamStoreError, ValidationError
from ..models.models import ComplianceCase
from . import notification_registry
from .audit import compute_diff, record_audit

log = structlog.get_logger(__name__)

APPLICATION_STATUSES = ("not_applied", "applied")


def _find(db: Session, notification_id: uuid.UUID) -> Optional[ComplianceCase]:
    return db.query(ComplianceCase).filter(ComplianceCase.notification_id == notification_id).first()


def open_or_get(db: Session, notification_id: uuid.UUID) -> Tuple[ComplianceCase, bool]:
    """
    Return the case for a notification, creating it on first call.

    Concurrent openers converge on one row: the loser of the insert race hits
    the unique constraint and re-reads the winner's case.
    """
    notification_registry.get(db, notification_id)
    existing = _find(db, notification_id)
    if existing:
        return existing, True

    case = ComplianceCase(notification_id=notification_id, application_status="not_applied")
    db.add(case)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _find(db, notification_id)
        if existing is None:
            raise UpstreamStoreError("Failed to open compliance case")
        return existing, True
    db.refresh(case)
    log.info("compliance_case_opened", case_id=str(case.id), notification_id=str(notification_id))
    return case, False


def list_cases(db: Session, application_status: Optional[str] = None) -> List[ComplianceCase]:
    q = db.query(ComplianceCase).options(joinedload(ComplianceCase.notification))
    if application_status:
        q = q.filter(ComplianceCase.application_status == application_status)
    return q.order_by(ComplianceCase.created_at.desc()).all()


def get_case(db: Session, case_id: uuid.UUID) -> ComplianceCase:
    case = (
        db.query(ComplianceCase)
        .options(joinedload(ComplianceCase.notification))
        .filter(ComplianceCase.id == case_id)
        .first()
    )
    if not case:
        raise NotFound("Compliance case not found")
    return case


def _snapshot(case: ComplianceCase) -> dict:
    return {
        "application_status": case.application_status,
        "date_applied": case.date_applied.isoformat() if case.date_applied else None,
        "appointment_date": case.appointment_date.isoformat() if case.appointment_date else None,
    }


def update_case(db: Session, case_id: uuid.UUID, fields: dict, *, actor_id: Optional[uuid.UUID] = None) -> ComplianceCase:
    """Free-form update; application_status may move either way between its two values."""
    case = get_case(db, case_id)
    if "application_status" in fields and fields["application_status"] not in APPLICATION_STATUSES:
        raise ValidationError("application_status must be 'not_applied' or 'applied'")

    before = _snapshot(case)
    for key in ("application_status", "date_applied", "appointment_date"):
        if key in fields:
            setattr(case, key, fields[key])
    case.updated_at = datetime.now(timezone.utc)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise UpstreamStoreError(f"Failed to update compliance case: {e}")
    db.refresh(case)

    diff = compute_diff(before, _snapshot(case))
    if diff:
        record_audit(db, "compliance_cases", case.id, "UPDATE", actor_id=actor_id, source="api", changes_json=diff)
    return case
