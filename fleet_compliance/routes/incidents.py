import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user
from ..schemas.incidents import (
    BreakdownCreate,
    BreakdownResponse,
    TardinessReportCreate,
    TardinessReportResponse,
    TardinessReviewRequest,
    TardinessReviewResponse,
)
from ..services import incident_reports

router = APIRouter(tags=["incidents"])


@router.post("/tardiness/report", response_model=TardinessReportResponse)
def report_tardiness(body: TardinessReportCreate, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return incident_reports.report_tardiness(
        db,
        body.driver_id,
        body.session_type,
        body.reason,
        route_id=body.route_id,
        additional_notes=body.additional_notes,
    )


@router.post("/tardiness/{report_id}/approve", response_model=TardinessReviewResponse)
def approve_tardiness(
    report_id: uuid.UUID,
    body: Optional[TardinessReviewRequest] = None,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    report, changed = incident_reports.approve_tardiness(
        db, report_id, coordinator_id=user.id, coordinator_notes=body.coordinator_notes if body else None
    )
    return {"success": True, "changed": changed, "report": report}


@router.post("/tardiness/{report_id}/decline", response_model=TardinessReviewResponse)
def decline_tardiness(
    report_id: uuid.UUID,
    body: Optional[TardinessReviewRequest] = None,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    report, changed = incident_reports.decline_tardiness(
        db, report_id, coordinator_id=user.id, coordinator_notes=body.coordinator_notes if body else None
    )
    return {"success": True, "changed": changed, "report": report}


@router.post("/breakdowns/report", response_model=BreakdownResponse)
def report_breakdown(body: BreakdownCreate, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return incident_reports.report_breakdown(
        db,
        body.vehicle_id,
        route_id=body.route_id,
        description=body.description,
        location=body.location,
    )
