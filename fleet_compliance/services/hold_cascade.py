"""
Operational holds.

A hold on a vehicle, driver or passenger assistant is written to the entity
itself and to every route and vehicle it transitively touches, inside one
transaction. Clearing only touches rows that are still held, so a second
clear is a no-op.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import NotFound, UpstreamStoreError, ValidationError
from ..models.models import Driver, Notification, PassengerAssistant, Route, Vehicle
from .audit import record_audit

log = structlog.get_logger(__name__)

ENTITY_TYPES = ("vehicle", "driver", "assistant")

# (model, primary key column, CascadeSet attribute)
_TARGETS = (
    (Vehicle, Vehicle.id, "vehicle_ids"),
    (Route, Route.id, "route_ids"),
    (Driver, Driver.employee_id, "driver_ids"),
    (PassengerAssistant, PassengerAssistant.employee_id, "assistant_ids"),
)

_PRIMARY_TABLE = {
    "vehicle": "vehicles",
    "driver": "drivers",
    "assistant": "passenger_assistants",
}


@dataclass
class CascadeSet:
    entity_type: str
    entity_id: uuid.UUID
    vehicle_ids: List[uuid.UUID] = field(default_factory=list)
    route_ids: List[uuid.UUID] = field(default_factory=list)
    driver_ids: List[uuid.UUID] = field(default_factory=list)
    assistant_ids: List[uuid.UUID] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "vehicle_ids": [str(i) for i in self.vehicle_ids],
            "route_ids": [str(i) for i in self.route_ids],
            "driver_ids": [str(i) for i in self.driver_ids],
            "assistant_ids": [str(i) for i in self.assistant_ids],
        }


@dataclass
class HoldResult:
    cascade: CascadeSet
    on_hold: bool
    updated: Dict[str, int]

    def as_dict(self) -> dict:
        return {
            "entity_type": self.cascade.entity_type,
            "entity_id": str(self.cascade.entity_id),
            "on_hold": self.on_hold,
            "updated": self.updated,
            "cascade": self.cascade.as_dict(),
        }


def _route_vehicle_ids(routes: List[Route]) -> List[uuid.UUID]:
    seen = []
    for r in routes:
        if r.vehicle_id and r.vehicle_id not in seen:
            seen.append(r.vehicle_id)
    return seen


def cascade_set(db: Session, entity_type: str, entity_id: uuid.UUID) -> CascadeSet:
    """Every row a hold on (entity_type, entity_id) has to reach."""
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(f"Invalid entity type: {entity_type}")

    if entity_type == "vehicle":
        vehicle = db.query(Vehicle).filter(Vehicle.id == entity_id).first()
        if not vehicle:
            raise NotFound("Vehicle not found")
        routes = db.query(Route).filter(Route.vehicle_id == entity_id).all()
        return CascadeSet(entity_type, entity_id, vehicle_ids=[vehicle.id], route_ids=[r.id for r in routes])

    if entity_type == "driver":
        driver = db.query(Driver).filter(Driver.employee_id == entity_id).first()
        if not driver:
            raise NotFound("Driver not found")
        routes = db.query(Route).filter(Route.driver_id == entity_id).all()
        return CascadeSet(
            entity_type,
            entity_id,
            driver_ids=[driver.employee_id],
            route_ids=[r.id for r in routes],
            vehicle_ids=_route_vehicle_ids(routes),
        )

    assistant = db.query(PassengerAssistant).filter(PassengerAssistant.employee_id == entity_id).first()
    if not assistant:
        raise NotFound("Passenger assistant not found")
    routes = db.query(Route).filter(Route.passenger_assistant_id == entity_id).all()
    return CascadeSet(
        entity_type,
        entity_id,
        assistant_ids=[assistant.employee_id],
        route_ids=[r.id for r in routes],
        vehicle_ids=_route_vehicle_ids(routes),
    )


def _write(db: Session, cascade: CascadeSet, values: dict, *, only_held: bool) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for model, pk, attr in _TARGETS:
        ids = getattr(cascade, attr)
        if not ids:
            continue
        stmt = update(model).where(pk.in_(ids))
        if only_held:
            stmt = stmt.where(model.on_hold.is_(True))
        result = db.execute(stmt.values(**values).execution_options(synchronize_session="fetch"))
        counts[model.__tablename__] = result.rowcount or 0
    return counts


def is_held_by(db: Session, entity_type: str, entity_id: uuid.UUID, notification_id: uuid.UUID) -> bool:
    """True when the entity is on hold and the hold was placed for this notification."""
    if entity_type == "vehicle":
        row = db.query(Vehicle).filter(Vehicle.id == entity_id).first()
    elif entity_type == "driver":
        row = db.query(Driver).filter(Driver.employee_id == entity_id).first()
    elif entity_type == "assistant":
        row = db.query(PassengerAssistant).filter(PassengerAssistant.employee_id == entity_id).first()
    else:
        return False
    return bool(row and row.on_hold and row.on_hold_notification_id == notification_id)


def apply_hold(
    db: Session,
    entity_type: str,
    entity_id: uuid.UUID,
    *,
    notification_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
    commit: bool = True,
) -> HoldResult:
    """
    Put the entity and its cascade set on hold.

    With ``commit=False`` the writes join the caller's transaction and the
    caller is responsible for committing and auditing (see ``audit_hold``).
    """
    cascade = cascade_set(db, entity_type, entity_id)
    if notification_id and not db.query(Notification.id).filter(Notification.id == notification_id).first():
        raise NotFound("Notification not found")

    values = {
        "on_hold": True,
        "on_hold_reason": reason or settings.default_hold_reason,
        "on_hold_notification_id": notification_id,
        "on_hold_set_by": actor_id,
        "on_hold_set_at": datetime.now(timezone.utc),
        "on_hold_cleared_at": None,
    }
    try:
        counts = _write(db, cascade, values, only_held=False)
        if commit:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("hold_apply_failed", entity_type=entity_type, entity_id=str(entity_id), error=str(e))
        raise UpstreamStoreError("Failed to apply hold")

    result = HoldResult(cascade=cascade, on_hold=True, updated=counts)
    log.info(
        "hold_applied",
        entity_type=entity_type,
        entity_id=str(entity_id),
        notification_id=str(notification_id) if notification_id else None,
        updated=counts,
    )
    if commit:
        audit_hold(db, result, actor_id=actor_id, notification_id=notification_id, reason=values["on_hold_reason"])
    return result


def clear_hold(
    db: Session,
    entity_type: str,
    entity_id: uuid.UUID,
    *,
    actor_id: Optional[uuid.UUID] = None,
    commit: bool = True,
) -> HoldResult:
    """
    Release the entity and its cascade set. Rows that are not held are left untouched.

    Provenance is not checked per row: clearing a driver or assistant also
    releases the vehicles on their routes, even when a vehicle was held for a
    different notification that is still pending.
    """
    cascade = cascade_set(db, entity_type, entity_id)
    values = {
        "on_hold": False,
        "on_hold_reason": None,
        "on_hold_notification_id": None,
        "on_hold_set_by": actor_id,
        "on_hold_set_at": None,
        "on_hold_cleared_at": datetime.now(timezone.utc),
    }
    try:
        counts = _write(db, cascade, values, only_held=True)
        if commit:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("hold_clear_failed", entity_type=entity_type, entity_id=str(entity_id), error=str(e))
        raise UpstreamStoreError("Failed to clear hold")

    result = HoldResult(cascade=cascade, on_hold=False, updated=counts)
    log.info("hold_cleared", entity_type=entity_type, entity_id=str(entity_id), updated=counts)
    if commit:
        audit_hold(db, result, actor_id=actor_id)
    return result


def audit_hold(
    db: Session,
    result: HoldResult,
    *,
    actor_id: Optional[uuid.UUID] = None,
    notification_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
    source: str = "api",
) -> None:
    if not any(result.updated.values()):
        return
    record_audit(
        db,
        _PRIMARY_TABLE[result.cascade.entity_type],
        result.cascade.entity_id,
        "HOLD" if result.on_hold else "UNHOLD",
        actor_id=actor_id,
        source=source,
        changes_json={"on_hold": {"before": not result.on_hold, "after": result.on_hold}},
        context={
            "notification_id": str(notification_id) if notification_id else None,
            "reason": reason,
            "updated": result.updated,
        },
    )
