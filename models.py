from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import date, datetime


class AssetStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    IN_USE = "IN_USE"
    MAINTENANCE = "MAINTENANCE"
    DAMAGED = "DAMAGED"
    RETIRED = "RETIRED"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"
    COMPLETE = "COMPLETE"


ACTIVE_REQUEST_STATUSES = (RequestStatus.PENDING, RequestStatus.APPROVED)


class Role(str, Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    VIEWER = "VIEWER"


class Actor(BaseModel):
    user_id: str
    role: Role = Role.VIEWER

    @property
    def is_processor(self) -> bool:
        return self.role in (Role.ADMIN, Role.STAFF)


class AssetIn(BaseModel):
    name: str = Field(min_length=1)
    serial_number: str = Field(min_length=1)
    category: Optional[str] = None
    cost: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[date] = None
    image_url: Optional[str] = None

class AssetUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    serial_number: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = None
    cost: Optional[float] = Field(default=None, ge=0)
    purchase_date: Optional[date] = None
    image_url: Optional[str] = None
    status: Optional[AssetStatus] = None

    # omitted means "leave as is"; an explicit null cannot clear these columns
    @field_validator("name", "serial_number", "status", mode="before")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v

class Asset(AssetIn):
    id: str
    status: AssetStatus = AssetStatus.AVAILABLE
    created_at: datetime
    updated_at: datetime

class PageMeta(BaseModel):
    total: int
    limit: int
    offset: int
    total_pages: int


class CategoryIn(BaseModel):
    name: str = Field(min_length=1)
    sort_order: int = 0

class Category(CategoryIn):
    id: str


class BorrowRequestIn(BaseModel):
    asset_id: str
    note: Optional[str] = None

class BorrowRequest(BaseModel):
    id: int
    asset_id: str
    requester_id: str
    status: RequestStatus
    note: Optional[str] = None
    decline_reason: Optional[str] = None
    processed_by: Optional[str] = None
    requested_at: datetime
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime

class ActiveRequestCheck(BaseModel):
    asset_id: str
    requester_id: str
    active: bool


class AuditEntry(BaseModel):
    id: int
    action_type: str
    entity_name: str
    entity_id: str
    performed_by: Optional[str] = None
    performed_at: datetime
    notes: Optional[str] = None


class Notification(BaseModel):
    id: int
    recipient_id: Optional[str] = None
    recipient_role: Optional[Role] = None
    request_id: Optional[int] = None
    message: str
    read: bool = False
    created_at: datetime
