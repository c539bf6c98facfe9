from __future__ import annotations

from datetime import datetime, timezone

from typing import Any, Iterable, Optional
from uuid import uuid4

from sqlalchemy import select, delete, func, or_, update
from sqlalchemy.orm import Session

from models import (
    ACTIVE_REQUEST_STATUSES,
    Asset,
    AssetIn,
    AssetStatus,
    AssetUpdate,
    AuditEntry,
    BorrowRequest,
    Category,
    Notification,
    RequestStatus,
    Role,
)
from orm import AssetORM, AuditORM, BorrowRequestORM, CategoryORM, NotificationORM

ALLOWED_SORTS = {
    "serial_number": AssetORM.serial_number,
    "name": AssetORM.name,
    "status": AssetORM.status,
    "category": AssetORM.category,
    "updated_at": AssetORM.updated_at,
}

ACTIVE_VALUES = tuple(s.value for s in ACTIVE_REQUEST_STATUSES)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def persist(db: Session, *, commit: bool) -> None:
    if commit:
        db.commit()
    else:
        db.flush()

def page_meta(total: int, *, limit: int, offset: int) -> dict:
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "total_pages": max(1, (total + limit - 1) // limit),
    }

def _asset_to_schema(a: AssetORM) -> Asset:
    return Asset(
        id=a.id,
        name=a.name,
        serial_number=a.serial_number,
        category=a.category,
        cost=a.cost,
        purchase_date=a.purchase_date,
        image_url=a.image_url,
        status=AssetStatus(a.status),
        created_at=a.created_at,
        updated_at=a.updated_at,
    )

def _request_to_schema(r: BorrowRequestORM) -> BorrowRequest:
    return BorrowRequest(
        id=r.id,
        asset_id=r.asset_id,
        requester_id=r.requester_id,
        status=RequestStatus(r.status),
        note=r.note,
        decline_reason=r.decline_reason,
        processed_by=r.processed_by,
        requested_at=r.requested_at,
        processed_at=r.processed_at,
        completed_at=r.completed_at,
        updated_at=r.updated_at,
    )

def _audit_to_schema(e: AuditORM) -> AuditEntry:
    return AuditEntry(
        id=e.id,
        action_type=e.action_type,
        entity_name=e.entity_name,
        entity_id=e.entity_id,
        performed_by=e.performed_by,
        performed_at=e.performed_at,
        notes=e.notes,
    )


# ---------- Asset ----------
def serial_number_exists(db: Session, serial_number: str, exclude_asset_id: Optional[str] = None) -> bool:
    stmt = select(AssetORM).where(AssetORM.serial_number == serial_number)
    if exclude_asset_id:
        stmt = stmt.where(AssetORM.id != exclude_asset_id)
    return db.execute(stmt).first() is not None


def find_asset(db: Session, asset_id: str, *, for_update: bool = False) -> Optional[Asset]:
    """Read the asset's current state. With for_update the row stays locked until the transaction ends."""
    stmt = select(AssetORM).where(AssetORM.id == asset_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = db.execute(stmt.execution_options(populate_existing=True)).scalars().first()
    return _asset_to_schema(row) if row else None


def get_asset(db: Session, asset_id: str) -> Optional[Asset]:
    row = db.get(AssetORM, asset_id)
    return _asset_to_schema(row) if row else None


def create_asset(db: Session, body: AssetIn, *, commit: bool = True) -> Asset:
    now = utcnow()

    a = AssetORM(
        id=str(uuid4()),
        name=body.name,
        serial_number=body.serial_number,
        category=body.category,
        cost=body.cost,
        purchase_date=body.purchase_date,
        image_url=body.image_url,
        status=AssetStatus.AVAILABLE.value,
        created_at=now,
        updated_at=now,
    )
    db.add(a)
    persist(db, commit=commit)
    if commit:
        db.refresh(a)
    return _asset_to_schema(a)


def update_asset(db: Session, asset_id: str, body: AssetUpdate, *, commit: bool = True) -> Optional[Asset]:
    a = db.get(AssetORM, asset_id)
    if not a:
        return None

    data = body.model_dump(exclude_unset=True)
    for k, v in data.items():
        if k == "status" and v is not None:
            v = AssetStatus(v).value
        setattr(a, k, v)

    a.updated_at = utcnow()

    persist(db, commit=commit)
    if commit:
        db.refresh(a)
    return _asset_to_schema(a)


def set_asset_status(
    db: Session,
    asset_id: str,
    status: AssetStatus,
    *,
    expected: Optional[AssetStatus] = None,
    commit: bool = True,
) -> bool:
    """
    Write the asset's status. With ``expected`` the write only lands when the
    stored status still equals it; returns False when nothing was written.
    """
    stmt = update(AssetORM).where(AssetORM.id == asset_id)
    if expected is not None:
        stmt = stmt.where(AssetORM.status == expected.value)
    result = db.execute(
        stmt.values(status=status.value, updated_at=utcnow()).execution_options(synchronize_session=False)
    )
    persist(db, commit=commit)
    return result.rowcount > 0


def delete_asset(db: Session, asset_id: str, *, commit: bool = True) -> bool:
    result = db.execute(delete(AssetORM).where(AssetORM.id == asset_id))
    persist(db, commit=commit)
    return result.rowcount > 0


def asset_has_requests(db: Session, asset_id: str, statuses: Optional[Iterable[RequestStatus]] = None) -> bool:
    stmt = select(BorrowRequestORM.id).where(BorrowRequestORM.asset_id == asset_id)
    if statuses is not None:
        stmt = stmt.where(BorrowRequestORM.status.in_([s.value for s in statuses]))
    return db.execute(stmt.limit(1)).first() is not None


def build_assets_query(q: str | None, status: str | None, category: str | None):
    stmt = select(AssetORM)

    if q:
        like = f"%{q}%"
        stmt = stmt.where(
            or_(
                AssetORM.name.ilike(like),
                AssetORM.serial_number.ilike(like),
            )
        )
    if status:
        stmt = stmt.where(AssetORM.status == status)

    if category:
        stmt = stmt.where(AssetORM.category == category)

    return stmt

def assets_meta(
    db: Session,
    *,
    q: str | None,
    status: str | None,
    category: str | None,
    limit: int,
    offset: int,
) -> dict:
    total = count_assets_filtered(db, q=q, status=status, category=category)
    return page_meta(total, limit=limit, offset=offset)

def count_assets_filtered(db: Session, *, q: str | None, status: str | None, category: str | None) -> int:
    stmt = build_assets_query(q, status, category)
    count_stmt = select(func.count()).select_from(stmt.subquery())
    return int(db.execute(count_stmt).scalar_one())

def list_assets_filtered(
    db: Session,
    *,
    q: str | None,
    status: str | None,
    category: str | None,
    sort: str,
    order: str,
    limit: int,
    offset: int,
) -> list[Asset]:
    stmt = build_assets_query(q, status, category)

    col = ALLOWED_SORTS.get(sort, AssetORM.serial_number)
    desc = (order or "").lower() == "desc"
    stmt = stmt.order_by(col.desc() if desc else col.asc())

    stmt = stmt.limit(limit).offset(offset)
    rows = db.execute(stmt).scalars().all()
    return [_asset_to_schema(a) for a in rows]


# ---------- Borrow request ----------
def find_request(db: Session, request_id: int, *, for_update: bool = False) -> Optional[BorrowRequest]:
    stmt = select(BorrowRequestORM).where(BorrowRequestORM.id == request_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = db.execute(stmt.execution_options(populate_existing=True)).scalars().first()
    return _request_to_schema(row) if row else None


def has_active_request(db: Session, asset_id: str, requester_id: str) -> bool:
    stmt = select(BorrowRequestORM.id).where(
        BorrowRequestORM.asset_id == asset_id,
        BorrowRequestORM.requester_id == requester_id,
        BorrowRequestORM.status.in_(ACTIVE_VALUES),
    )
    return db.execute(stmt.limit(1)).first() is not None


def insert_request(
    db: Session,
    *,
    asset_id: str,
    requester_id: str,
    note: Optional[str],
    commit: bool = True,
) -> int:
    now = utcnow()
    r = BorrowRequestORM(
        asset_id=asset_id,
        requester_id=requester_id,
        status=RequestStatus.PENDING.value,
        note=note,
        requested_at=now,
        updated_at=now,
    )
    db.add(r)
    persist(db, commit=commit)
    return r.id


def update_request_status(
    db: Session,
    request_id: int,
    *,
    expected: RequestStatus,
    status: RequestStatus,
    fields: Optional[dict[str, Any]] = None,
    commit: bool = True,
) -> bool:
    """Compare-and-swap the request's status; extra columns in ``fields`` are written alongside."""
    values = dict(fields or {})
    values["status"] = status.value
    values["updated_at"] = utcnow()
    result = db.execute(
        update(BorrowRequestORM)
        .where(BorrowRequestORM.id == request_id, BorrowRequestORM.status == expected.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    persist(db, commit=commit)
    return result.rowcount > 0


def build_active_requests_query(q: str | None, asset_id: str | None):
    stmt = (
        select(BorrowRequestORM)
        .join(AssetORM, AssetORM.id == BorrowRequestORM.asset_id)
        .where(BorrowRequestORM.status == RequestStatus.PENDING.value)
    )
    if q:
        like = f"%{q}%"
        stmt = stmt.where(
            or_(
                AssetORM.name.ilike(like),
                AssetORM.serial_number.ilike(like),
                BorrowRequestORM.requester_id.ilike(like),
                BorrowRequestORM.note.ilike(like),
            )
        )
    if asset_id:
        stmt = stmt.where(BorrowRequestORM.asset_id == asset_id)
    return stmt


def list_active_requests(
    db: Session,
    *,
    q: str | None = None,
    asset_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[BorrowRequest]:
    stmt = build_active_requests_query(q, asset_id)
    stmt = stmt.order_by(BorrowRequestORM.requested_at.asc(), BorrowRequestORM.id.asc())
    rows = db.execute(stmt.limit(limit).offset(offset)).scalars().all()
    return [_request_to_schema(r) for r in rows]


def active_requests_meta(
    db: Session,
    *,
    q: str | None,
    asset_id: str | None,
    limit: int,
    offset: int,
) -> dict:
    stmt = build_active_requests_query(q, asset_id)
    total = int(db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one())
    return page_meta(total, limit=limit, offset=offset)


def list_requests_for_user(
    db: Session,
    requester_id: str,
    *,
    status: Optional[RequestStatus] = None,
) -> list[BorrowRequest]:
    stmt = select(BorrowRequestORM).where(BorrowRequestORM.requester_id == requester_id)
    if status is not None:
        stmt = stmt.where(BorrowRequestORM.status == status.value)
    stmt = stmt.order_by(BorrowRequestORM.requested_at.desc(), BorrowRequestORM.id.desc())
    return [_request_to_schema(r) for r in db.execute(stmt).scalars().all()]


# ---------- Audit ----------
def record_audit(
    db: Session,
    *,
    action_type: str,
    entity_name: str,
    entity_id: str,
    performed_by: Optional[str],
    notes: Optional[str] = None,
    commit: bool = True,
) -> None:
    db.add(
        AuditORM(
            action_type=action_type,
            entity_name=entity_name,
            entity_id=entity_id,
            performed_by=performed_by,
            performed_at=utcnow(),
            notes=notes,
        )
    )
    persist(db, commit=commit)


def list_audits(
    db: Session,
    *,
    entity_id: Optional[str] = None,
    performed_by: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[AuditEntry]:
    stmt = select(AuditORM)
    if entity_id:
        stmt = stmt.where(AuditORM.entity_id == entity_id)
    if performed_by:
        stmt = stmt.where(AuditORM.performed_by == performed_by)
    stmt = stmt.order_by(AuditORM.performed_at.desc(), AuditORM.id.desc()).limit(limit).offset(offset)
    return [_audit_to_schema(e) for e in db.execute(stmt).scalars().all()]


# ---------- Notification ----------
def _notification_to_schema(n: NotificationORM) -> Notification:
    return Notification(
        id=n.id,
        recipient_id=n.recipient_id,
        recipient_role=n.recipient_role,
        request_id=n.request_id,
        message=n.message,
        read=n.is_read,
        created_at=n.created_at,
    )


def create_notification(
    db: Session,
    *,
    message: str,
    recipient_id: Optional[str] = None,
    recipient_role: Optional[Role] = None,
    request_id: Optional[int] = None,
    commit: bool = True,
) -> None:
    db.add(
        NotificationORM(
            recipient_id=recipient_id,
            recipient_role=recipient_role.value if recipient_role else None,
            request_id=request_id,
            message=message,
            is_read=False,
            created_at=utcnow(),
        )
    )
    persist(db, commit=commit)


def _visible_to(user_id: str, role: Role):
    return or_(NotificationORM.recipient_id == user_id, NotificationORM.recipient_role == role.value)


def list_notifications(
    db: Session,
    user_id: str,
    role: Role,
    *,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> list[Notification]:
    """Newest first; includes notifications addressed to the caller's role."""
    stmt = select(NotificationORM).where(_visible_to(user_id, role))
    if unread_only:
        stmt = stmt.where(NotificationORM.is_read.is_(False))
    stmt = stmt.order_by(NotificationORM.created_at.desc(), NotificationORM.id.desc()).limit(limit).offset(offset)
    return [_notification_to_schema(n) for n in db.execute(stmt).scalars().all()]


def mark_notification_read(
    db: Session,
    notification_id: int,
    user_id: str,
    role: Role,
    *,
    commit: bool = True,
) -> Optional[Notification]:
    n = db.execute(
        select(NotificationORM).where(NotificationORM.id == notification_id, _visible_to(user_id, role))
    ).scalars().first()
    if not n:
        return None
    n.is_read = True
    persist(db, commit=commit)
    if commit:
        db.refresh(n)
    return _notification_to_schema(n)


# ---------- Category ----------
def list_categories(db: Session) -> list[Category]:
    """Ordered by sort_order, then name."""
    rows = db.execute(
        select(CategoryORM).order_by(CategoryORM.sort_order.asc(), CategoryORM.name.asc())
    ).scalars().all()
    return [Category(id=c.id, name=c.name, sort_order=c.sort_order) for c in rows]


def create_category(db: Session, *, name: str, sort_order: int = 0, commit: bool = True) -> Optional[Category]:
    name = (name or "").strip()
    if not name:
        return None
    exists = db.execute(select(CategoryORM).where(CategoryORM.name == name)).first()
    if exists:
        return None

    now = utcnow()
    c = CategoryORM(id=str(uuid4()), name=name, sort_order=sort_order, created_at=now, updated_at=now)
    db.add(c)
    persist(db, commit=commit)
    return Category(id=c.id, name=c.name, sort_order=c.sort_order)


def category_in_use(db: Session, name: str) -> bool:
    used = db.execute(
        select(func.count()).select_from(AssetORM).where(AssetORM.category == name)
    ).scalar_one()
    return int(used) > 0


def delete_category(db: Session, *, category_id: str, commit: bool = True) -> bool:
    c = db.get(CategoryORM, category_id)
    if not c:
        return False

    # refused while in use; assets reference categories by name
    if category_in_use(db, c.name):
        return False

    db.execute(delete(CategoryORM).where(CategoryORM.id == category_id))
    persist(db, commit=commit)
    return True


def get_category(db: Session, category_id: str) -> Optional[Category]:
    c = db.get(CategoryORM, category_id)
    return Category(id=c.id, name=c.name, sort_order=c.sort_order) if c else None
