"""
OTP Service
Handles OTP issuance (store + e-mail) and verification against the store
"""

import logging
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

from app.core.config import settings
from app.core.errors import ErrorCode, RelayError
from app.core.otp import OTPDeliveryError, SMTPMailer, generate_otp, hash_otp, normalize_email
from app.core.redis import RedisClient
from app.core.timezone import get_utc_now
from app.services.otp_store import (
    InMemoryOTPStore,
    OTPRecord,
    OTPStore,
    RedisOTPStore,
    VerifyOutcome,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MSG_OTP_EMPTY = "El código OTP es requerido"
MSG_OTP_NOT_FOUND = "No se generó MFA para este usuario"
MSG_OTP_EXPIRED = "Código expirado"
MSG_OTP_MISMATCH = "Código incorrecto"
MSG_OTP_LOCKED = "Demasiados intentos fallidos. Inicia sesión nuevamente."


class OTPService:
    """Issues and verifies e-mail one-time passwords."""

    def __init__(
        self,
        store: OTPStore,
        mailer,
        expiry_minutes: int = 5,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = get_utc_now,
    ):
        self.store = store
        self.mailer = mailer
        self.expiry_minutes = expiry_minutes
        self.max_attempts = max_attempts
        self.clock = clock

    def issue(
        self,
        email: str,
        otp: Optional[str],
        session: Optional[Dict[str, Any]] = None,
    ) -> OTPRecord:
        """
        Store the code for ``email`` (replacing any previous one) and mail it.

        A failed send does not roll the store write back: the code stays
        valid until it expires or is replaced.
        """
        if not email or not email.strip():
            raise RelayError(ErrorCode.VALIDATION_ERROR, "El email es requerido")
        if not otp or not str(otp).strip():
            raise RelayError(ErrorCode.OTP_EMPTY, MSG_OTP_EMPTY)

        otp = str(otp).strip()
        key = normalize_email(email)
        record = OTPRecord(
            email=key,
            code_hash=hash_otp(otp),
            expires_at=self.clock() + timedelta(minutes=self.expiry_minutes),
            session=session,
        )
        self.store.put(key, record)

        try:
            self.mailer.send_otp(email.strip(), otp)
        except OTPDeliveryError as e:
            logger.warning("OTP stored for %s but e-mail failed: %s", key, str(e))
            raise RelayError(ErrorCode.UPSTREAM_ERROR, f"Error enviando correo MFA: {e}") from e

        logger.info("OTP issued for %s (expires %s)", key, record.expires_at.isoformat())
        return record

    def issue_new(self, email: str, session: Optional[Dict[str, Any]] = None) -> OTPRecord:
        return self.issue(email, generate_otp(), session=session)

    def verify(self, email: str, code: Optional[str]) -> OTPRecord:
        """
        Check ``code`` for ``email``. Returns the consumed record (which may
        carry a pending login session) or raises RelayError.
        """
        if not email or not email.strip():
            raise RelayError(ErrorCode.VALIDATION_ERROR, "El email es requerido")
        if not code or not str(code).strip():
            raise RelayError(ErrorCode.OTP_EMPTY, MSG_OTP_EMPTY)

        key = normalize_email(email)
        result = self.store.consume(key, str(code).strip(), self.clock(), self.max_attempts)

        if result.outcome == VerifyOutcome.NOT_FOUND:
            raise RelayError(ErrorCode.OTP_NOT_FOUND, MSG_OTP_NOT_FOUND)
        if result.outcome == VerifyOutcome.EXPIRED:
            raise RelayError(ErrorCode.OTP_EXPIRED, MSG_OTP_EXPIRED)
        if result.outcome == VerifyOutcome.LOCKED:
            logger.warning("OTP for %s locked after %s failed attempts", key, result.record.attempts)
            raise RelayError(ErrorCode.OTP_LOCKED, MSG_OTP_LOCKED)
        if result.outcome == VerifyOutcome.MISMATCH:
            raise RelayError(ErrorCode.OTP_MISMATCH, MSG_OTP_MISMATCH)

        logger.info("OTP verified for %s", key)
        return result.record

    def get_remaining_time(self, email: str) -> Optional[int]:
        """Seconds until the current code expires, None if there is none"""
        record = self.store.get(normalize_email(email))
        if record is None:
            return None
        return max(0, int((record.expires_at - self.clock()).total_seconds()))


def build_otp_store() -> OTPStore:
    if settings.OTP_STORE_BACKEND == "redis":
        return RedisOTPStore(RedisClient.get_client(), retention_seconds=settings.OTP_RETENTION_SECONDS)
    return InMemoryOTPStore(retention_seconds=settings.OTP_RETENTION_SECONDS)


@lru_cache
def get_otp_service() -> OTPService:
    """Dependency returning the process-wide OTP service"""
    return OTPService(
        store=build_otp_store(),
        mailer=SMTPMailer(),
        expiry_minutes=settings.OTP_EXPIRY_MINUTES,
        max_attempts=settings.OTP_MAX_ATTEMPTS,
    )
