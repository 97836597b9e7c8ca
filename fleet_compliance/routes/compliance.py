import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user
from ..schemas.compliance import ApplicationStatus, CaseOpenRequest, CaseOpenResponse, CaseResponse, CaseUpdate
from ..services import compliance_cases

router = APIRouter(prefix="/compliance/cases", tags=["compliance"])


@router.get("", response_model=List[CaseResponse])
def list_cases(
    application_status: Optional[ApplicationStatus] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    return compliance_cases.list_cases(db, application_status.value if application_status else None)


@router.post("", response_model=CaseOpenResponse)
def open_case(
    body: CaseOpenRequest,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """Open the case for a notification, or return the one already open"""
    case, existing = compliance_cases.open_or_get(db, body.notification_id)
    return {"case_id": case.id, "existing": existing}


@router.get("/{case_id}", response_model=CaseResponse)
def get_case(case_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return compliance_cases.get_case(db, case_id)


@router.patch("/{case_id}", response_model=CaseResponse)
def update_case(
    case_id: uuid.UUID,
    body: CaseUpdate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    return compliance_cases.update_case(db, case_id, body.model_dump(exclude_unset=True), actor_id=user.id)
