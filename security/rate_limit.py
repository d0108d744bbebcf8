import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from flask import current_app

from security.ban_store import BanStore, BanStoreUnavailable
from security.decision import GuardDecision
from utils.client_ip import normalize_identifier

logger = logging.getLogger(__name__)


@dataclass
class VoteRecord:
    last_request_at: Optional[datetime]  # None until the first counted request
    request_count: int
    window_start: datetime


def _ceil_seconds(delta: timedelta) -> int:
    return max(1, math.ceil(delta.total_seconds()))


class VoteGuard:
    """
    Throttle for the public vote endpoint.

    One vote per client every min_interval; more than burst_max votes inside
    burst_window escalates to a durable ban of ban_duration written to the
    ban store. Once banned, the store is authoritative and the in-memory
    record is dropped.

    Every check runs under a single lock, including the ban store read and
    the escalation write, so a check always sees a ban written by the
    previous one.
    """

    def __init__(
        self,
        ban_store: BanStore,
        min_interval: int = 30,
        burst_window: int = 300,
        burst_max: int = 10,
        ban_hours: int = 12,
    ):
        self.ban_store = ban_store
        self.min_interval = timedelta(seconds=min_interval)
        self.burst_window = timedelta(seconds=burst_window)
        self.burst_max = burst_max
        self.ban_duration = timedelta(hours=ban_hours)
        self._lock = threading.Lock()
        self._records: Dict[str, VoteRecord] = {}

    @classmethod
    def from_config(cls, config, ban_store: BanStore) -> "VoteGuard":
        return cls(
            ban_store,
            min_interval=config.get("VOTE_MIN_INTERVAL_SECONDS", 30),
            burst_window=config.get("VOTE_BURST_WINDOW_SECONDS", 300),
            burst_max=config.get("VOTE_BURST_MAX_REQUESTS", 10),
            ban_hours=config.get("VOTE_BAN_HOURS", 12),
        )

    def check_and_record(self, identifier: str, now: Optional[datetime] = None) -> GuardDecision:
        ip = normalize_identifier(identifier)
        now = now or datetime.utcnow()

        with self._lock:
            try:
                banned_until = self.ban_store.get(ip)
                if banned_until is not None:
                    if banned_until > now:
                        return GuardDecision.banned(_ceil_seconds(banned_until - now))
                    self.ban_store.delete(ip)
            except BanStoreUnavailable:
                # fail closed: nothing is counted, the client just retries later
                logger.error("Ban store unavailable, denying vote from %s", ip)
                return GuardDecision.rate_limited(int(self.min_interval.total_seconds()))

            record = self._records.get(ip)
            if record is None:
                record = VoteRecord(last_request_at=None, request_count=0, window_start=now)
                self._records[ip] = record

            if record.last_request_at is not None:
                elapsed = now - record.last_request_at
                if elapsed < self.min_interval:
                    return GuardDecision.rate_limited(_ceil_seconds(self.min_interval - elapsed))

            if now - record.window_start > self.burst_window:
                record.request_count = 0
                record.window_start = now

            record.request_count += 1
            record.last_request_at = now

            if record.request_count > self.burst_max:
                return self._escalate(ip, now)

            return GuardDecision.allow()

    def _escalate(self, ip: str, now: datetime) -> GuardDecision:
        banned_until = now + self.ban_duration
        try:
            self.ban_store.upsert(ip, banned_until)
        except BanStoreUnavailable:
            # keep the over-limit record so every later request escalates again
            logger.error("Could not persist ban for %s, keeping in-memory record", ip)
            return GuardDecision.banned(None, escalated=True)

        self._records.pop(ip, None)
        logger.warning(
            "[VOTE_RATE_LIMIT] IP %s banned until %s after exceeding %d votes in %ds",
            ip, banned_until.isoformat(), self.burst_max, int(self.burst_window.total_seconds()),
        )
        return GuardDecision.banned(_ceil_seconds(self.ban_duration), escalated=True)

    def _is_stale(self, record: VoteRecord, now: datetime) -> bool:
        # a stale record decides exactly like a freshly created one
        quiet = record.last_request_at is None or now - record.last_request_at >= self.min_interval
        return quiet and now - record.window_start > self.burst_window

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """Drop records of clients that went quiet. Returns how many were removed."""
        now = now or datetime.utcnow()
        removed = self._remove_stale(self._stale_identifiers(now), now)
        if removed:
            logger.info("[VOTE_RATE_LIMIT] Cleaned up %d idle records", removed)
        return removed

    def _stale_identifiers(self, now: datetime) -> List[str]:
        with self._lock:
            return [ip for ip, rec in self._records.items() if self._is_stale(rec, now)]

    def _remove_stale(self, candidates: List[str], now: datetime) -> int:
        # a candidate may have voted since the snapshot; re-check before deleting
        removed = 0
        for ip in candidates:
            with self._lock:
                rec = self._records.get(ip)
                if rec is not None and self._is_stale(rec, now):
                    del self._records[ip]
                    removed += 1
        return removed

    def tracked(self) -> int:
        with self._lock:
            return len(self._records)

    def record_for(self, identifier: str) -> Optional[VoteRecord]:
        with self._lock:
            return self._records.get(normalize_identifier(identifier))


def get_vote_guard() -> VoteGuard:
    return current_app.extensions["vote_guard"]
