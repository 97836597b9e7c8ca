import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user
from ..schemas.holds import CascadeSetResponse, ClearHoldRequest, EntityType, HoldRequest, HoldResponse
from ..services import hold_cascade

router = APIRouter(prefix="/holds", tags=["holds"])


@router.post("", response_model=HoldResponse)
def apply_hold(
    body: HoldRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    """Put an entity and everything depending on it on hold"""
    result = hold_cascade.apply_hold(
        db,
        body.entity_type,
        body.entity_id,
        notification_id=body.notification_id,
        reason=body.reason,
        actor_id=user.id,
    )
    return result.as_dict()


@router.post("/clear", response_model=HoldResponse)
def clear_hold(
    body: ClearHoldRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    result = hold_cascade.clear_hold(db, body.entity_type, body.entity_id, actor_id=user.id)
    return result.as_dict()


@router.get("/cascade", response_model=CascadeSetResponse)
def preview_cascade(
    entity_type: EntityType = Query(..., alias="entityType"),
    entity_id: uuid.UUID = Query(..., alias="entityId"),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """Which records a hold on this entity would touch"""
    return hold_cascade.cascade_set(db, entity_type.value, entity_id).as_dict()
