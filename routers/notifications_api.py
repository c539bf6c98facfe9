from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import crud
from dependencies import get_actor, get_db
from filter_helpers import normalize_limit, normalize_offset
from models import Actor, Notification

router = APIRouter(prefix="/notifications")


@router.get("", response_model=list[Notification])
def list_notifications_api(
    unread: bool = False,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return crud.list_notifications(
        db,
        actor.user_id,
        actor.role,
        unread_only=unread,
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )


@router.put("/{notification_id}/read", response_model=Notification)
def mark_read_api(
    notification_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    n = crud.mark_notification_read(db, notification_id, actor.user_id, actor.role)
    if not n:
        raise HTTPException(status_code=404, detail="notification not found")
    return n
