"""
One-time passcodes for verifying the applicant's mobile number.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock

from birthbot.services.errors import (
    OTP_REASON_EXPIRED,
    OTP_REASON_MISMATCH,
    OTP_REASON_NOT_FOUND,
    OTP_REASON_TOO_MANY_ATTEMPTS,
    BotError,
)
from birthbot.services.validators import validate_otp

logger = logging.getLogger(__name__)


@dataclass
class IssuedOtp:
    code: str
    expires_at: datetime
    failed_attempts: int = 0


class OtpService:
    def __init__(self, ttl_seconds: int = 300, max_attempts: int = 5):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_attempts = max_attempts
        self._lock = Lock()
        self._codes: dict[str, IssuedOtp] = {}

    def issue(self, conversant_id: str) -> str:
        """Issue a fresh 6-digit code, replacing any outstanding one."""
        code = f"{secrets.randbelow(1_000_000):06d}"
        with self._lock:
            self._codes[conversant_id] = IssuedOtp(code=code, expires_at=datetime.now(UTC) + self.ttl)
        logger.info(f"Issued OTP for {conversant_id}")
        return code

    def verify(self, conversant_id: str, raw: str) -> None:
        """
        Verify a submitted code; the code is consumed on success.

        After max_attempts wrong codes the outstanding code is discarded and
        only a resend can issue a new one.

        Raises:
            BotError: VALIDATION for a malformed code, DOMAIN_VERIFICATION for
                a missing, expired, mismatched or exhausted one
        """
        code = validate_otp(raw)
        with self._lock:
            issued = self._codes.get(conversant_id)
            if issued is None:
                raise BotError.verification(OTP_REASON_NOT_FOUND, "No OTP outstanding")
            if datetime.now(UTC) > issued.expires_at:
                del self._codes[conversant_id]
                raise BotError.verification(OTP_REASON_EXPIRED, "OTP expired")
            if not secrets.compare_digest(code, issued.code):
                issued.failed_attempts += 1
                if issued.failed_attempts >= self.max_attempts:
                    del self._codes[conversant_id]
                    logger.warning(f"OTP discarded for {conversant_id} after {issued.failed_attempts} wrong codes")
                    raise BotError.verification(OTP_REASON_TOO_MANY_ATTEMPTS, "Too many wrong OTP attempts")
                raise BotError.verification(OTP_REASON_MISMATCH, "Invalid OTP")
            del self._codes[conversant_id]
        logger.info(f"OTP verified for {conversant_id}")

    def discard(self, conversant_id: str) -> None:
        with self._lock:
            self._codes.pop(conversant_id, None)
