"""
Borrow request lifecycle.

Every request moves through an explicit state table; a transition that is not
in the table is rejected with InvalidTransition. Approval and completion also
move the referenced asset between AVAILABLE and IN_USE, in the same
transaction as the request write. Each operation is one unit of work: it takes
the write lock, re-reads current state, compare-and-swaps the rows it changes
and either commits everything or rolls everything back. Audit rows and
notifications are written inside that same unit.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import crud
from db import begin_write
from errors import (
    AssetUnavailable,
    BorrowError,
    DuplicateRequest,
    DuplicateSerial,
    InvalidTransition,
    NotFound,
    Unauthorized,
)
from models import Asset, AssetStatus, AssetUpdate, BorrowRequest, RequestStatus, Role

logger = logging.getLogger("app.workflow")

ENTITY_NAME = "BorrowRequest"


class Trigger(str, Enum):
    APPROVE = "approve"
    DECLINE = "decline"
    CANCEL = "cancel"
    COMPLETE = "complete"


TRANSITIONS: dict[tuple[RequestStatus, Trigger], RequestStatus] = {
    (RequestStatus.PENDING, Trigger.APPROVE): RequestStatus.APPROVED,
    (RequestStatus.PENDING, Trigger.DECLINE): RequestStatus.DECLINED,
    (RequestStatus.PENDING, Trigger.CANCEL): RequestStatus.CANCELLED,
    (RequestStatus.APPROVED, Trigger.COMPLETE): RequestStatus.COMPLETE,
}

# trigger -> (required asset status, asset status afterwards)
ASSET_EFFECTS: dict[Trigger, tuple[AssetStatus, AssetStatus]] = {
    Trigger.APPROVE: (AssetStatus.AVAILABLE, AssetStatus.IN_USE),
    Trigger.COMPLETE: (AssetStatus.IN_USE, AssetStatus.AVAILABLE),
}

AUDIT_ACTIONS = {
    Trigger.APPROVE: "BORROW_APPROVED",
    Trigger.DECLINE: "BORROW_DECLINED",
    Trigger.CANCEL: "BORROW_CANCELLED",
    Trigger.COMPLETE: "BORROW_COMPLETED",
}

# decisions the requester hears about
REQUESTER_NOTICES = {
    Trigger.APPROVE: "APPROVED",
    Trigger.DECLINE: "DECLINED",
}


def next_status(current: RequestStatus, trigger: Trigger) -> RequestStatus:
    try:
        return TRANSITIONS[(current, trigger)]
    except KeyError:
        raise InvalidTransition(f"cannot {trigger.value} a request in status {current.value}") from None


@contextmanager
def unit_of_work(
    db: Session,
    action: str,
    ref: object,
    actor: Optional[str],
    *,
    subject: str = "borrow_request",
) -> Iterator[None]:
    begin_write(db)
    try:
        yield
        db.commit()
    except BorrowError as exc:
        db.rollback()
        logger.warning("%s=%s action=%s actor=%s rejected=%s", subject, ref, action, actor, exc.code)
        raise
    except Exception:
        db.rollback()
        raise
    logger.info("%s=%s action=%s actor=%s", subject, ref, action, actor)


def _require_identity(user_id: Optional[str]) -> str:
    user_id = (user_id or "").strip()
    if not user_id:
        raise Unauthorized("caller identity is required")
    return user_id


def _load_request(db: Session, request_id: int) -> BorrowRequest:
    req = crud.find_request(db, request_id, for_update=True)
    if req is None:
        raise NotFound(f"borrow request {request_id} not found")
    return req


def _apply_asset_effect(db: Session, asset_id: str, trigger: Trigger) -> None:
    required, after = ASSET_EFFECTS[trigger]
    asset = crud.find_asset(db, asset_id, for_update=True)
    if asset is None:
        raise NotFound(f"asset {asset_id} not found")
    if asset.status != required:
        raise AssetUnavailable(f"asset {asset_id} is {asset.status.value}, expected {required.value}")
    if not crud.set_asset_status(db, asset_id, after, expected=required, commit=False):
        raise AssetUnavailable(f"asset {asset_id} changed status concurrently")


def _swap(db: Session, req: BorrowRequest, target: RequestStatus, fields: Optional[dict] = None) -> None:
    swapped = crud.update_request_status(
        db,
        req.id,
        expected=req.status,
        status=target,
        fields=fields,
        commit=False,
    )
    if not swapped:
        raise InvalidTransition(f"borrow request {req.id} changed status concurrently")


def _notify_requester(db: Session, req: BorrowRequest, trigger: Trigger, reason: Optional[str]) -> None:
    asset = crud.find_asset(db, req.asset_id)
    message = f"Your borrow request ({req.id}) for asset '{asset.name}' has been {REQUESTER_NOTICES[trigger]}."
    if reason is not None:
        message += f" Reason: {reason}"
    crud.create_notification(
        db,
        message=message,
        recipient_id=req.requester_id,
        request_id=req.id,
        commit=False,
    )


def _transition(
    db: Session,
    request_id: int,
    trigger: Trigger,
    actor: Optional[str],
    *,
    owner: Optional[str] = None,
    fields: Optional[dict] = None,
    notes: Optional[str] = None,
) -> BorrowRequest:
    with unit_of_work(db, trigger.value, request_id, actor):
        req = _load_request(db, request_id)
        if owner is not None and req.requester_id != owner:
            raise Unauthorized(f"borrow request {request_id} belongs to another user")
        target = next_status(req.status, trigger)
        if trigger in ASSET_EFFECTS:
            _apply_asset_effect(db, req.asset_id, trigger)
        _swap(db, req, target, fields)
        crud.record_audit(
            db,
            action_type=AUDIT_ACTIONS[trigger],
            entity_name=ENTITY_NAME,
            entity_id=str(request_id),
            performed_by=actor,
            notes=notes,
            commit=False,
        )
        if trigger in REQUESTER_NOTICES:
            _notify_requester(db, req, trigger, notes)
    return crud.find_request(db, request_id)


def submit_request(db: Session, asset_id: str, requester_id: str, note: Optional[str] = None) -> BorrowRequest:
    """
    Create a PENDING request for an AVAILABLE asset.

    Fails with DuplicateRequest when the requester already holds a PENDING or
    APPROVED request for the asset. The check and the insert share one write
    transaction, and the partial unique index on active pairs rejects anything
    that slips past the check.
    """
    requester_id = _require_identity(requester_id)
    request_id: Optional[int] = None
    with unit_of_work(db, "submit", asset_id, requester_id):
        asset = crud.find_asset(db, asset_id, for_update=True)
        if asset is None:
            raise NotFound(f"asset {asset_id} not found")
        if asset.status != AssetStatus.AVAILABLE:
            raise AssetUnavailable(f"asset {asset_id} is {asset.status.value}")
        if crud.has_active_request(db, asset_id, requester_id):
            raise DuplicateRequest(f"an active borrow request already exists for asset {asset_id}")
        try:
            request_id = crud.insert_request(
                db,
                asset_id=asset_id,
                requester_id=requester_id,
                note=note,
                commit=False,
            )
        except IntegrityError as exc:
            raise DuplicateRequest(f"an active borrow request already exists for asset {asset_id}") from exc
        crud.record_audit(
            db,
            action_type="BORROW_REQUESTED",
            entity_name=ENTITY_NAME,
            entity_id=str(request_id),
            performed_by=requester_id,
            notes=note,
            commit=False,
        )
        crud.create_notification(
            db,
            message=f"New borrow request ({request_id}) for asset: {asset.name}",
            recipient_role=Role.ADMIN,
            request_id=request_id,
            commit=False,
        )
    return crud.find_request(db, request_id)


def approve(db: Session, request_id: int, admin_id: str) -> BorrowRequest:
    """
    PENDING -> APPROVED; asset AVAILABLE -> IN_USE.

    The asset is re-checked here, not trusted from submission time. When it is
    no longer AVAILABLE the call fails with AssetUnavailable and the request
    stays PENDING.
    """
    admin_id = _require_identity(admin_id)
    return _transition(
        db,
        request_id,
        Trigger.APPROVE,
        admin_id,
        fields={"processed_by": admin_id, "processed_at": crud.utcnow()},
    )


def decline(db: Session, request_id: int, admin_id: str, reason: Optional[str] = None) -> BorrowRequest:
    admin_id = _require_identity(admin_id)
    return _transition(
        db,
        request_id,
        Trigger.DECLINE,
        admin_id,
        fields={"processed_by": admin_id, "processed_at": crud.utcnow(), "decline_reason": reason},
        notes=reason,
    )


def cancel(db: Session, request_id: int, requester_id: str) -> BorrowRequest:
    """Only the requester may cancel, and only while the request is PENDING."""
    requester_id = _require_identity(requester_id)
    return _transition(db, request_id, Trigger.CANCEL, requester_id, owner=requester_id)


def complete(db: Session, request_id: int, completed_by: Optional[str] = None) -> BorrowRequest:
    """APPROVED -> COMPLETE; asset IN_USE -> AVAILABLE."""
    return _transition(
        db,
        request_id,
        Trigger.COMPLETE,
        completed_by,
        fields={"completed_at": crud.utcnow()},
    )


# ---------- Asset edits ----------
def edit_asset(db: Session, asset_id: str, body: AssetUpdate, actor: Optional[str] = None) -> Asset:
    """
    Partial asset update, run under the same write lock as the borrow
    transitions. A status change is refused while an APPROVED request
    references the asset, so an approval cannot land between that check and
    the write.
    """
    with unit_of_work(db, "edit", asset_id, actor, subject="asset"):
        asset = crud.find_asset(db, asset_id, for_update=True)
        if asset is None:
            raise NotFound(f"asset {asset_id} not found")
        if body.serial_number and crud.serial_number_exists(db, body.serial_number, exclude_asset_id=asset_id):
            raise DuplicateSerial(f"serial_number {body.serial_number} already exists")
        if body.status is not None and body.status != asset.status:
            if crud.asset_has_requests(db, asset_id, [RequestStatus.APPROVED]):
                raise AssetUnavailable(f"asset {asset_id} is on loan; complete the borrow request first")
        updated = crud.update_asset(db, asset_id, body, commit=False)
    return updated


def remove_asset(db: Session, asset_id: str, actor: Optional[str] = None) -> None:
    """Requests are never deleted, so an asset with any borrow history stays."""
    with unit_of_work(db, "delete", asset_id, actor, subject="asset"):
        if crud.find_asset(db, asset_id, for_update=True) is None:
            raise NotFound(f"asset {asset_id} not found")
        if crud.asset_has_requests(db, asset_id):
            raise AssetUnavailable(f"asset {asset_id} has borrow history and cannot be deleted")
        crud.delete_asset(db, asset_id, commit=False)


# ---------- Queries ----------
def get_request(db: Session, request_id: int) -> BorrowRequest:
    req = crud.find_request(db, request_id)
    if req is None:
        raise NotFound(f"borrow request {request_id} not found")
    return req


def list_active_requests(
    db: Session,
    *,
    q: Optional[str] = None,
    asset_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[BorrowRequest]:
    """The admin queue: PENDING requests, oldest first."""
    return crud.list_active_requests(db, q=q, asset_id=asset_id, limit=limit, offset=offset)


def list_requests_for_user(
    db: Session,
    requester_id: str,
    status: Optional[RequestStatus] = None,
) -> list[BorrowRequest]:
    requester_id = _require_identity(requester_id)
    return crud.list_requests_for_user(db, requester_id, status=status)


def has_active_request(db: Session, asset_id: str, requester_id: str) -> bool:
    return crud.has_active_request(db, asset_id, _require_identity(requester_id))
