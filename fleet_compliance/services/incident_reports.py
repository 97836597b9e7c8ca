"""
Tardiness and breakdown reports. Each report spawns a notification for the
coordinators and keeps a foreign key to it from the moment it is created.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional, Tuple

import pytz
import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import Conflict, NotFound, UpstreamStoreError, ValidationError
from ..models.models import Driver, Employee, Notification, Route, TardinessReport, Vehicle, VehicleBreakdown
from . import hold_cascade, notification_registry

log = structlog.get_logger(__name__)

SESSION_TYPES = ("AM", "PM")
REVIEW_DECISIONS = ("approved", "declined")


def _today() -> date:
    return datetime.now(pytz.timezone(settings.tz_default)).date()


def _check_route(db: Session, route_id: Optional[uuid.UUID]) -> None:
    if route_id and not db.query(Route.id).filter(Route.id == route_id).first():
        raise NotFound("Route not found")


def report_tardiness(
    db: Session,
    driver_id: uuid.UUID,
    session_type: str,
    reason: str,
    *,
    route_id: Optional[uuid.UUID] = None,
    additional_notes: Optional[str] = None,
    session_date: Optional[date] = None,
) -> TardinessReport:
    if session_type not in SESSION_TYPES:
        raise ValidationError("session_type must be 'AM' or 'PM'")
    if not (reason or "").strip():
        raise ValidationError("reason is required")
    driver = db.query(Driver).filter(Driver.employee_id == driver_id).first()
    if not driver:
        raise NotFound("Driver not found")
    _check_route(db, route_id)

    employee = db.query(Employee).filter(Employee.id == driver_id).first()
    name = employee.full_name if employee else f"Driver #{driver_id}"
    session_date = session_date or _today()

    notification = Notification(
        notification_type="driver_tardiness",
        entity_type="driver",
        entity_id=driver_id,
        certificate_name=f"Tardiness report: {name} ({session_type} {session_date.strftime('%d/%m/%Y')})",
        email_token=notification_registry.new_email_token(),
        status="pending",
        admin_response_required=True,
        details={"reason": reason, "session_type": session_type, "route_id": str(route_id) if route_id else None},
    )
    report = TardinessReport(
        driver_id=driver_id,
        route_id=route_id,
        session_type=session_type,
        session_date=session_date,
        reason=reason.strip(),
        additional_notes=additional_notes,
        status="pending",
    )
    try:
        db.add(notification)
        db.flush()
        report.notification_id = notification.id
        db.add(report)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise UpstreamStoreError(f"Failed to create tardiness report: {e}")
    db.refresh(report)
    log.info("tardiness_reported", report_id=str(report.id), driver_id=str(driver_id), notification_id=str(report.notification_id))
    return report


def review_tardiness(
    db: Session,
    report_id: uuid.UUID,
    decision: str,
    *,
    coordinator_id: Optional[uuid.UUID] = None,
    coordinator_notes: Optional[str] = None,
) -> Tuple[TardinessReport, bool]:
    """
    Approve or decline a pending report and resolve its notification in the
    same transaction. Repeating the same decision is a no-op.
    """
    if decision not in REVIEW_DECISIONS:
        raise ValidationError(f"Invalid decision: {decision}")
    try:
        result = db.execute(
            update(TardinessReport)
            .where(TardinessReport.id == report_id, TardinessReport.status == "pending")
            .values(
                status=decision,
                coordinator_id=coordinator_id,
                coordinator_notes=coordinator_notes,
                reviewed_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session="fetch")
        )
        report = db.query(TardinessReport).filter(TardinessReport.id == report_id).first()
        if not report:
            raise NotFound("Tardiness report not found")
        if not result.rowcount:
            if report.status != decision:
                raise Conflict(f"Tardiness report already {report.status}")
            return report, False
        transition = None
        if report.notification_id:
            transition = notification_registry.resolve(db, report.notification_id, actor_id=coordinator_id, commit=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise UpstreamStoreError(f"Failed to review tardiness report: {e}")
    db.refresh(report)
    log.info("tardiness_reviewed", report_id=str(report_id), decision=decision)
    if transition is not None and transition.hold is not None:
        hold_cascade.audit_hold(db, transition.hold, actor_id=coordinator_id, notification_id=report.notification_id)
    return report, True


def approve_tardiness(db: Session, report_id: uuid.UUID, **kwargs) -> Tuple[TardinessReport, bool]:
    return review_tardiness(db, report_id, "approved", **kwargs)


def decline_tardiness(db: Session, report_id: uuid.UUID, **kwargs) -> Tuple[TardinessReport, bool]:
    return review_tardiness(db, report_id, "declined", **kwargs)


def report_breakdown(
    db: Session,
    vehicle_id: uuid.UUID,
    *,
    route_id: Optional[uuid.UUID] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
) -> VehicleBreakdown:
    vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()
    if not vehicle:
        raise NotFound("Vehicle not found")
    _check_route(db, route_id)

    assigned = None
    if vehicle.assigned_employee_id:
        assigned = db.query(Employee).filter(Employee.id == vehicle.assigned_employee_id).first()
    name = vehicle.vehicle_identifier or vehicle.registration or f"Vehicle #{vehicle_id}"

    notification = Notification(
        notification_type="vehicle_breakdown",
        entity_type="vehicle",
        entity_id=vehicle_id,
        certificate_name=f"Vehicle breakdown: {name}",
        recipient_employee_id=assigned.id if assigned else None,
        recipient_email=assigned.personal_email if assigned else None,
        email_token=notification_registry.new_email_token(),
        status="pending",
        admin_response_required=True,
        details={"description": description, "location": location, "route_id": str(route_id) if route_id else None},
    )
    breakdown = VehicleBreakdown(
        vehicle_id=vehicle_id,
        route_id=route_id,
        description=description,
        location=location,
        status="reported",
    )
    try:
        db.add(notification)
        db.flush()
        breakdown.notification_id = notification.id
        db.add(breakdown)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise UpstreamStoreError(f"Failed to report breakdown: {e}")
    db.refresh(breakdown)
    log.info("breakdown_reported", breakdown_id=str(breakdown.id), vehicle_id=str(vehicle_id), notification_id=str(breakdown.notification_id))
    return breakdown
