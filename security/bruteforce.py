"""
Admin login brute-force protection.

Blocks a client after more than max_attempts failed logins inside
attempt_window. Each new block doubles the previous one (1min, 2min,
4min ...) up to max_block. The escalation count survives window resets
and expired blocks; only a successful login or the periodic cleanup
forgets it.

State lives in memory only. Call cleanup() periodically.
"""
import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from flask import current_app

from security.decision import GuardDecision
from utils.client_ip import normalize_identifier

logger = logging.getLogger(__name__)


@dataclass
class LoginAttemptRecord:
    attempts: int
    first_attempt_time: datetime
    block_count: int = 0
    blocked_until: Optional[datetime] = None


@dataclass(frozen=True)
class FailureOutcome:
    should_block: bool
    block_seconds: Optional[int] = None
    attempts_left: Optional[int] = None

    @property
    def decision(self) -> GuardDecision:
        if self.should_block:
            return GuardDecision.rate_limited(self.block_seconds)
        return GuardDecision.allow()


class LoginGuard:
    def __init__(
        self,
        attempt_window: int = 60,
        max_attempts: int = 5,
        base_block: int = 60,
        max_block: int = 3600,
        block_retention: int = 600,
    ):
        self.attempt_window = timedelta(seconds=attempt_window)
        self.max_attempts = max_attempts
        self.base_block = base_block
        self.max_block = max_block
        self.block_retention = timedelta(seconds=block_retention)
        self._lock = threading.Lock()
        self._records: Dict[str, LoginAttemptRecord] = {}

    @classmethod
    def from_config(cls, config) -> "LoginGuard":
        return cls(
            attempt_window=config.get("LOGIN_ATTEMPT_WINDOW_SECONDS", 60),
            max_attempts=config.get("LOGIN_MAX_ATTEMPTS", 5),
            base_block=config.get("LOGIN_BASE_BLOCK_SECONDS", 60),
            max_block=config.get("LOGIN_MAX_BLOCK_SECONDS", 3600),
            block_retention=config.get("LOGIN_BLOCK_RETENTION_SECONDS", 600),
        )

    def block_seconds(self, block_count: int) -> int:
        """Duration of the block_count-th block (1-based)."""
        return min(self.base_block * 2 ** (block_count - 1), self.max_block)

    def is_blocked(self, identifier: str, now: Optional[datetime] = None) -> GuardDecision:
        ip = normalize_identifier(identifier)
        now = now or datetime.utcnow()

        with self._lock:
            record = self._records.get(ip)
            if record is None or record.blocked_until is None:
                return GuardDecision.allow()

            if now < record.blocked_until:
                remaining = math.ceil((record.blocked_until - now).total_seconds())
                return GuardDecision.rate_limited(max(remaining, 1))

            # block expired: fresh counting window, escalation memory kept
            record.attempts = 0
            record.first_attempt_time = now
            record.blocked_until = None
            return GuardDecision.allow()

    def record_failure(self, identifier: str, now: Optional[datetime] = None) -> FailureOutcome:
        ip = normalize_identifier(identifier)
        now = now or datetime.utcnow()

        with self._lock:
            record = self._records.get(ip)
            if record is None:
                self._records[ip] = LoginAttemptRecord(attempts=1, first_attempt_time=now)
                return FailureOutcome(False, attempts_left=self.max_attempts - 1)

            # lost a race with the request that set the block
            if record.blocked_until is not None and now < record.blocked_until:
                remaining = math.ceil((record.blocked_until - now).total_seconds())
                return FailureOutcome(True, block_seconds=max(remaining, 1))

            if now - record.first_attempt_time > self.attempt_window:
                record.attempts = 1
                record.first_attempt_time = now
                record.blocked_until = None
                return FailureOutcome(False, attempts_left=self.max_attempts - 1)

            record.attempts += 1

            if record.attempts > self.max_attempts:
                record.block_count += 1
                seconds = self.block_seconds(record.block_count)
                record.blocked_until = now + timedelta(seconds=seconds)
                logger.warning(
                    "[LOGIN_RATE_LIMIT] IP %s blocked for %ss after %d failed attempts (block #%d)",
                    ip, seconds, record.attempts, record.block_count,
                )
                return FailureOutcome(True, block_seconds=seconds)

            return FailureOutcome(False, attempts_left=self.max_attempts - record.attempts)

    def record_success(self, identifier: str) -> None:
        with self._lock:
            self._records.pop(normalize_identifier(identifier), None)

    def _is_expired(self, record: LoginAttemptRecord, now: datetime) -> bool:
        if record.blocked_until is None:
            return now - record.first_attempt_time > self.attempt_window
        return now > record.blocked_until + self.block_retention

    def cleanup(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        removed = self._remove_expired(self._expired_identifiers(now), now)
        if removed:
            logger.info("[LOGIN_RATE_LIMIT] Cleaned up %d expired records", removed)
        return removed

    def _expired_identifiers(self, now: datetime) -> List[str]:
        with self._lock:
            return [ip for ip, rec in self._records.items() if self._is_expired(rec, now)]

    def _remove_expired(self, candidates: List[str], now: datetime) -> int:
        removed = 0
        for ip in candidates:
            with self._lock:
                rec = self._records.get(ip)
                # may have failed again since the snapshot
                if rec is not None and self._is_expired(rec, now):
                    del self._records[ip]
                    removed += 1
        return removed

    def record_for(self, identifier: str) -> Optional[LoginAttemptRecord]:
        with self._lock:
            return self._records.get(normalize_identifier(identifier))

    def tracked(self) -> int:
        with self._lock:
            return len(self._records)


def get_login_guard() -> LoginGuard:
    return current_app.extensions["login_guard"]
