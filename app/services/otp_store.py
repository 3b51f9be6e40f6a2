"""
OTP record storage.

Two backends share one interface: a lock-guarded dict for single-process
deployments and Redis for anything that runs more than one relay instance.
Verification goes through ``consume`` so the compare and the delete happen
as one step in both backends.
"""

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

import redis

from app.core.errors import ErrorCode, RelayError
from app.core.otp import otp_matches
from app.core.redis import CacheKeys
from app.core.timezone import get_utc_now

logger = logging.getLogger(__name__)


class VerifyOutcome(str, Enum):
    CONSUMED = "consumed"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    MISMATCH = "mismatch"
    LOCKED = "locked"


@dataclass
class OTPRecord:
    email: str
    code_hash: str
    expires_at: datetime
    attempts: int = 0
    session: Optional[Dict[str, Any]] = field(default=None)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_json(self) -> str:
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat()
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "OTPRecord":
        data = json.loads(raw)
        data["expires_at"] = datetime.fromisoformat(data["expires_at"])
        return cls(**data)


@dataclass
class ConsumeResult:
    outcome: VerifyOutcome
    record: Optional[OTPRecord] = None


def _evaluate(record: Optional[OTPRecord], code: str, now: datetime, max_attempts: int) -> ConsumeResult:
    """Decide what a submission does to a record; the caller applies it."""
    if record is None:
        return ConsumeResult(VerifyOutcome.NOT_FOUND)
    if record.is_expired(now):
        return ConsumeResult(VerifyOutcome.EXPIRED, record)
    if not otp_matches(code, record.code_hash):
        record.attempts += 1
        if max_attempts and record.attempts >= max_attempts:
            return ConsumeResult(VerifyOutcome.LOCKED, record)
        return ConsumeResult(VerifyOutcome.MISMATCH, record)
    return ConsumeResult(VerifyOutcome.CONSUMED, record)


class OTPStore:
    """put / get / delete plus an atomic consume."""

    def __init__(self, retention_seconds: int = 600, clock: Callable[[], datetime] = get_utc_now):
        self.retention_seconds = retention_seconds
        self.clock = clock

    def put(self, email: str, record: OTPRecord) -> None:
        raise NotImplementedError

    def get(self, email: str) -> Optional[OTPRecord]:
        raise NotImplementedError

    def delete(self, email: str) -> bool:
        raise NotImplementedError

    def consume(self, email: str, code: str, now: datetime, max_attempts: int) -> ConsumeResult:
        raise NotImplementedError


class InMemoryOTPStore(OTPStore):
    """Process-local store. Records are not shared between instances."""

    def __init__(self, retention_seconds: int = 600, clock: Callable[[], datetime] = get_utc_now):
        super().__init__(retention_seconds, clock)
        self._records: Dict[str, OTPRecord] = {}
        self._lock = threading.Lock()

    def put(self, email: str, record: OTPRecord) -> None:
        with self._lock:
            self._sweep(self.clock())
            self._records[email] = record

    def get(self, email: str) -> Optional[OTPRecord]:
        with self._lock:
            return self._records.get(email)

    def delete(self, email: str) -> bool:
        with self._lock:
            return self._records.pop(email, None) is not None

    def consume(self, email: str, code: str, now: datetime, max_attempts: int) -> ConsumeResult:
        with self._lock:
            result = _evaluate(self._records.get(email), code, now, max_attempts)
            if result.outcome in (VerifyOutcome.CONSUMED, VerifyOutcome.LOCKED):
                del self._records[email]
            return result

    def sweep(self, now: datetime) -> int:
        with self._lock:
            return self._sweep(now)

    def _sweep(self, now: datetime) -> int:
        cutoff = now - timedelta(seconds=self.retention_seconds)
        stale = [key for key, rec in self._records.items() if rec.expires_at < cutoff]
        for key in stale:
            del self._records[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)


@contextmanager
def _redis_call(action: str):
    """Report Redis failures as an unavailable upstream."""
    try:
        yield
    except redis.RedisError as e:
        logger.error("OTP store %s failed: %s", action, str(e))
        raise RelayError(ErrorCode.UPSTREAM_UNAVAILABLE, f"Almacén de códigos no disponible: {e}") from e


class RedisOTPStore(OTPStore):
    """Shared store; Redis TTL removes records once retention has passed."""

    def __init__(
        self,
        client: redis.Redis,
        retention_seconds: int = 600,
        clock: Callable[[], datetime] = get_utc_now,
    ):
        super().__init__(retention_seconds, clock)
        self.client = client

    def _ttl_for(self, record: OTPRecord) -> int:
        remaining = (record.expires_at - self.clock()).total_seconds()
        return max(1, int(remaining) + self.retention_seconds)

    def put(self, email: str, record: OTPRecord) -> None:
        with _redis_call("put"):
            self.client.setex(CacheKeys.otp(email), self._ttl_for(record), record.to_json())

    def get(self, email: str) -> Optional[OTPRecord]:
        with _redis_call("get"):
            raw = self.client.get(CacheKeys.otp(email))
        if not raw:
            return None
        return OTPRecord.from_json(raw)

    def delete(self, email: str) -> bool:
        with _redis_call("delete"):
            return self.client.delete(CacheKeys.otp(email)) > 0

    def consume(self, email: str, code: str, now: datetime, max_attempts: int) -> ConsumeResult:
        key = CacheKeys.otp(email)

        def _apply(pipe) -> ConsumeResult:
            raw = pipe.get(key)
            record = OTPRecord.from_json(raw) if raw else None
            result = _evaluate(record, code, now, max_attempts)
            pipe.multi()
            if result.outcome in (VerifyOutcome.CONSUMED, VerifyOutcome.LOCKED):
                pipe.delete(key)
            elif result.outcome == VerifyOutcome.MISMATCH:
                pipe.set(key, result.record.to_json(), keepttl=True)
            return result

        # WATCH/MULTI: a concurrent consume of the same key aborts and retries,
        # so only one caller can observe CONSUMED.
        with _redis_call("consume"):
            return self.client.transaction(_apply, key, value_from_callable=True)
