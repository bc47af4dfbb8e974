"""
Error taxonomy for the bot - a single tagged error instead of a class hierarchy.

Callers dispatch on BotError.kind (and DeliveryStatusClass for gateway failures)
rather than on exception subclasses.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    VALIDATION = "validation"  # User input malformed
    DELIVERY = "delivery"  # Gateway answered with a non-success status
    NETWORK = "network"  # No response from the gateway
    AUTHENTICATION = "authentication"  # Invalid token / permissions
    DOMAIN_VERIFICATION = "domain_verification"  # e.g. OTP mismatch or expiry
    CONFIGURATION = "configuration"  # Missing credentials (fatal at startup)


class DeliveryStatusClass(StrEnum):
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    AUTH_ERROR = "auth_error"
    OTHER = "other"


# Validation codes
INVALID_MOBILE = "INVALID_MOBILE"
INVALID_OTP_FORMAT = "INVALID_OTP_FORMAT"
INVALID_DATE_FORMAT = "INVALID_DATE_FORMAT"
INVALID_CHOICE = "INVALID_CHOICE"
INVALID_TEXT = "INVALID_TEXT"

# OTP verification reasons
OTP_REASON_NOT_FOUND = "NOT_FOUND"
OTP_REASON_EXPIRED = "EXPIRED"
OTP_REASON_MISMATCH = "MISMATCH"
OTP_REASON_TOO_MANY_ATTEMPTS = "TOO_MANY_ATTEMPTS"


def classify_status(status: int) -> DeliveryStatusClass:
    """Map a gateway HTTP status to its delivery status class."""
    if status == 429:
        return DeliveryStatusClass.RATE_LIMIT
    if status in (401, 403):
        return DeliveryStatusClass.AUTH_ERROR
    if status >= 500:
        return DeliveryStatusClass.SERVER_ERROR
    return DeliveryStatusClass.OTHER


class BotError(Exception):
    """
    Tagged error carrying a discriminant kind and a structured payload.

    Attributes:
        kind: ErrorKind discriminant
        code: Stable error code used for metrics and user message lookup
        field: Field name for validation errors
        status: Gateway HTTP status for delivery/authentication errors
        reason: Reason for domain verification errors
        detail: Raw gateway error body or other structured context
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: str | None = None,
        field: str | None = None,
        status: int | None = None,
        reason: str | None = None,
        detail: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.field = field
        self.status = status
        self.reason = reason
        self.detail = detail or {}
        self.code = code or self._default_code()
        self.timestamp = datetime.now(UTC)

    def _default_code(self) -> str:
        if self.kind == ErrorKind.DELIVERY:
            return f"META_API_{self.status}" if self.status else "META_API_ERROR"
        if self.kind == ErrorKind.AUTHENTICATION:
            # Gateway token rejections ask the conversant to restart
            return "META_API_401" if self.status in (401, 403) else "AUTH_ERROR"
        if self.kind == ErrorKind.DOMAIN_VERIFICATION:
            if self.reason == OTP_REASON_EXPIRED:
                return "OTP_EXPIRED"
            if self.reason == OTP_REASON_TOO_MANY_ATTEMPTS:
                return "OTP_ATTEMPTS_EXCEEDED"
            return "OTP_ERROR"
        if self.kind == ErrorKind.NETWORK:
            return "NETWORK_ERROR"
        if self.kind == ErrorKind.CONFIGURATION:
            return "CONFIGURATION_ERROR"
        return "VALIDATION_ERROR"

    @property
    def status_class(self) -> DeliveryStatusClass | None:
        if self.status is None:
            return None
        return classify_status(self.status)

    def __repr__(self) -> str:
        return f"BotError(kind={self.kind.value!r}, code={self.code!r}, message={self.message!r})"

    # Constructors for the common cases

    @classmethod
    def validation(cls, code: str, message: str, field: str | None = None) -> "BotError":
        return cls(ErrorKind.VALIDATION, message, code=code, field=field)

    @classmethod
    def gateway(cls, status: int, detail: dict[str, Any] | None = None) -> "BotError":
        """Build the error for a non-success gateway response."""
        message = (detail or {}).get("message") or f"Gateway request failed with status {status}"
        if classify_status(status) == DeliveryStatusClass.AUTH_ERROR:
            return cls(
                ErrorKind.AUTHENTICATION,
                "Invalid access token or permissions",
                status=status,
                detail=detail,
            )
        return cls(ErrorKind.DELIVERY, message, status=status, detail=detail)

    @classmethod
    def network(cls, exc: BaseException) -> "BotError":
        return cls(ErrorKind.NETWORK, f"{type(exc).__name__}: {exc}")

    @classmethod
    def verification(cls, reason: str, message: str) -> "BotError":
        return cls(ErrorKind.DOMAIN_VERIFICATION, message, reason=reason)

    @classmethod
    def configuration(cls, message: str) -> "BotError":
        return cls(ErrorKind.CONFIGURATION, message)
