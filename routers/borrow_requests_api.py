from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import workflow
import crud
from dependencies import get_actor, get_db, require_processor
from errors import Unauthorized
from filter_helpers import blank_to_none, normalize_limit, normalize_offset, normalize_request_status
from models import ActiveRequestCheck, Actor, BorrowRequest, BorrowRequestIn, PageMeta

router = APIRouter(prefix="/borrow-requests")


@router.get("", response_model=list[BorrowRequest])
def list_active_requests_api(
    q: Optional[str] = None,
    asset_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_processor),
):
    return workflow.list_active_requests(
        db,
        q=blank_to_none(q),
        asset_id=blank_to_none(asset_id),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )


@router.get("/meta", response_model=PageMeta)
def active_requests_meta_api(
    q: Optional[str] = None,
    asset_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_processor),
):
    meta = crud.active_requests_meta(
        db,
        q=blank_to_none(q),
        asset_id=blank_to_none(asset_id),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )
    return PageMeta(**meta)


@router.get("/my", response_model=list[BorrowRequest])
def my_requests_api(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return workflow.list_requests_for_user(db, actor.user_id, normalize_request_status(status))


@router.get("/check", response_model=ActiveRequestCheck)
def check_active_request_api(
    asset_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    active = workflow.has_active_request(db, asset_id, actor.user_id)
    return ActiveRequestCheck(asset_id=asset_id, requester_id=actor.user_id, active=active)


@router.post("", response_model=BorrowRequest, status_code=201)
def submit_request_api(
    body: BorrowRequestIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return workflow.submit_request(db, body.asset_id, actor.user_id, body.note)


@router.get("/{request_id}", response_model=BorrowRequest)
def get_request_api(
    request_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    req = workflow.get_request(db, request_id)
    if req.requester_id != actor.user_id and not actor.is_processor:
        raise Unauthorized(f"borrow request {request_id} belongs to another user")
    return req


@router.put("/{request_id}/approve", response_model=BorrowRequest)
def approve_request_api(
    request_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_processor),
):
    return workflow.approve(db, request_id, actor.user_id)


@router.put("/{request_id}/decline", response_model=BorrowRequest)
def decline_request_api(
    request_id: int,
    reason: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_processor),
):
    return workflow.decline(db, request_id, actor.user_id, reason)


@router.delete("/{request_id}", response_model=BorrowRequest)
def cancel_request_api(
    request_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return workflow.cancel(db, request_id, actor.user_id)


@router.put("/{request_id}/complete", response_model=BorrowRequest)
def complete_request_api(
    request_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    if not actor.is_processor:
        req = workflow.get_request(db, request_id)
        if req.requester_id != actor.user_id:
            raise Unauthorized(f"borrow request {request_id} belongs to another user")
    return workflow.complete(db, request_id, actor.user_id)
