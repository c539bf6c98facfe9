class BorrowError(Exception):
    """Base for every failure a borrow operation reports to its caller."""

    status_code = 400
    code = "borrow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(BorrowError):
    status_code = 404
    code = "not_found"


class DuplicateRequest(BorrowError):
    status_code = 409
    code = "duplicate_request"


class InvalidTransition(BorrowError):
    status_code = 409
    code = "invalid_transition"


class AssetUnavailable(BorrowError):
    status_code = 409
    code = "asset_unavailable"


class Unauthorized(BorrowError):
    status_code = 403
    code = "unauthorized"


class DuplicateSerial(BorrowError):
    status_code = 409
    code = "duplicate_serial"
