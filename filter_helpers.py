from typing import Optional

from models import AssetStatus, RequestStatus

VALID_STATUSES = {s.value for s in AssetStatus}
VALID_REQUEST_STATUSES = {s.value for s in RequestStatus}
VALID_SORTS = {"serial_number", "name", "status", "category", "updated_at"}
VALID_ORDERS = {"asc", "desc"}


def blank_to_none(value: Optional[str]) -> Optional[str]:
    if value == "":
        return None
    return value


def normalize_status(status: Optional[str]) -> Optional[str]:
    status = (status or "").upper()
    if status in VALID_STATUSES:
        return status
    return None


def normalize_request_status(status: Optional[str]) -> Optional[RequestStatus]:
    status = (status or "").upper()
    if status in VALID_REQUEST_STATUSES:
        return RequestStatus(status)
    return None


def normalize_sort(sort: str) -> str:
    if sort in VALID_SORTS:
        return sort
    return "serial_number"


def normalize_order(order: str) -> str:
    if order in VALID_ORDERS:
        return order
    return "asc"


def normalize_limit(limit: int, *, min_value: int = 1, max_value: int = 500) -> int:
    if limit < min_value:
        return min_value
    if limit > max_value:
        return max_value
    return limit


def normalize_offset(offset: int) -> int:
    if offset < 0:
        return 0
    return offset
