from enum import Enum

class ErrorKind(str, Enum):
    VALIDATION_ERROR = "ValidationError"
    INVALID_LEVERAGE = "InvalidLeverage"
    MARGIN_TOO_LOW = "MarginTooLow"
    PORTFOLIO_NOT_FOUND = "PortfolioNotFound"
    POSITION_NOT_FOUND = "PositionNotFound"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    UNAUTHORIZED = "Unauthorized"
    ALREADY_CLOSED = "AlreadyClosed"
    STORAGE_ERROR = "StorageError"


class MarginError(Exception):
    """Base class for every failure the margin engine reports to its caller.

    Each subclass pins a ``kind`` from :class:`ErrorKind` and the HTTP
    status the API layer answers with.
    """

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"status": "error", "kind": self.kind.value, "message": self.message}


class ValidationError(MarginError):
    kind = ErrorKind.VALIDATION_ERROR
    status_code = 400


class InvalidLeverage(MarginError):
    kind = ErrorKind.INVALID_LEVERAGE
    status_code = 400


class MarginTooLow(MarginError):
    kind = ErrorKind.MARGIN_TOO_LOW
    status_code = 400


class PortfolioNotFound(MarginError):
    kind = ErrorKind.PORTFOLIO_NOT_FOUND
    status_code = 404


class PositionNotFound(MarginError):
    kind = ErrorKind.POSITION_NOT_FOUND
    status_code = 404


class InsufficientFunds(MarginError):
    kind = ErrorKind.INSUFFICIENT_FUNDS
    status_code = 400


class Unauthorized(MarginError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = 403


class AlreadyClosed(MarginError):
    kind = ErrorKind.ALREADY_CLOSED
    status_code = 400


class StorageError(MarginError):
    kind = ErrorKind.STORAGE_ERROR
    status_code = 500
