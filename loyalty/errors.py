# loyalty/errors.py
from enum import Enum


class ErrorKind(str, Enum):
    INVALID_FORMAT = "INVALID_FORMAT"
    CONFLICT = "CONFLICT"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    TRANSIENT = "TRANSIENT"
    ORACLE_PROTOCOL = "ORACLE_PROTOCOL"
    UNAUTHORIZED = "UNAUTHORIZED"


class LoyaltyError(Exception):
    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class ValidationError(LoyaltyError):
    """Bad order number / receipt id / amount. Surfaced immediately, never retried."""
    kind = ErrorKind.INVALID_FORMAT


class ConflictError(LoyaltyError):
    """Identifier already owned by somebody else (order number, receipt id, login)."""
    kind = ErrorKind.CONFLICT


class InsufficientFunds(LoyaltyError):
    kind = ErrorKind.INSUFFICIENT_FUNDS


class TransientError(LoyaltyError):
    """Network or storage I/O failure."""
    kind = ErrorKind.TRANSIENT


class OracleProtocolError(LoyaltyError):
    """The accrual oracle answered with something we could not decode."""
    kind = ErrorKind.ORACLE_PROTOCOL


class AuthError(LoyaltyError):
    kind = ErrorKind.UNAUTHORIZED
