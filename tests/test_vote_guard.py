"""
tests/test_vote_guard.py - vote throttle and escalating ban
===========================================================

Runs the guard against an in-memory ban store with an explicit clock.
"""
import threading
from datetime import timedelta
from unittest import mock

from conftest import MemoryBanStore, BrokenBanStore
from security.decision import DenyReason
from security.rate_limit import VoteGuard

IP = "1.2.3.4"


def _at(t0, seconds):
    return t0 + timedelta(seconds=seconds)


class TestMinimumInterval:
    def test_first_vote_allowed(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        assert guard.check_and_record(IP, now=t0).allowed

    def test_second_vote_inside_interval_is_rate_limited(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        guard.check_and_record(IP, now=t0)

        decision = guard.check_and_record(IP, now=_at(t0, 10))
        assert not decision.allowed
        assert decision.reason is DenyReason.RATE_LIMITED
        assert decision.retry_after == 20

    def test_retry_after_is_rounded_up(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        guard.check_and_record(IP, now=t0)

        decision = guard.check_and_record(IP, now=t0 + timedelta(seconds=29, milliseconds=500))
        assert decision.retry_after == 1

    def test_exactly_interval_later_is_allowed(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        guard.check_and_record(IP, now=t0)
        assert guard.check_and_record(IP, now=_at(t0, 30)).allowed

    def test_denied_attempt_does_not_move_the_clock(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        guard.check_and_record(IP, now=t0)
        guard.check_and_record(IP, now=_at(t0, 20))

        assert guard.check_and_record(IP, now=_at(t0, 30)).allowed
        assert guard.record_for(IP).request_count == 2

    def test_identifiers_are_independent(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        guard.check_and_record(IP, now=t0)
        assert guard.check_and_record("5.6.7.8", now=_at(t0, 1)).allowed

    def test_blank_identifier_uses_unknown_bucket(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        assert guard.check_and_record("", now=t0).allowed
        decision = guard.check_and_record(None, now=_at(t0, 5))
        assert decision.reason is DenyReason.RATE_LIMITED
        assert guard.record_for("unknown") is not None


class TestBurstEscalation:
    def test_eleventh_vote_in_window_bans(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        for i in range(10):
            assert guard.check_and_record(IP, now=_at(t0, 30 * i)).allowed

        now = _at(t0, 300)
        decision = guard.check_and_record(IP, now=now)
        assert not decision.allowed
        assert decision.reason is DenyReason.BANNED
        assert decision.escalated
        assert decision.retry_after == 12 * 3600
        assert ban_store.entries[IP] == now + timedelta(hours=12)

    def test_escalation_drops_in_memory_record(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        for i in range(11):
            guard.check_and_record(IP, now=_at(t0, 30 * i))
        assert guard.record_for(IP) is None
        assert guard.tracked() == 0

    def test_banned_client_is_denied_by_store(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        for i in range(11):
            guard.check_and_record(IP, now=_at(t0, 30 * i))

        decision = guard.check_and_record(IP, now=_at(t0, 3600))
        assert decision.reason is DenyReason.BANNED
        assert not decision.escalated
        assert decision.retry_after == 12 * 3600 - 3300

    def test_spaced_out_votes_reset_the_window(self, ban_store, t0):
        # 35s apart: the window restarts at t=315, so no burst is ever seen
        guard = VoteGuard(ban_store)
        for i in range(11):
            assert guard.check_and_record(IP, now=_at(t0, 35 * i)).allowed
        assert ban_store.entries == {}
        assert guard.record_for(IP).request_count == 2

    def test_ban_expires_and_is_removed(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        ban_store.upsert(IP, _at(t0, 60))

        assert guard.check_and_record(IP, now=_at(t0, 30)).reason is DenyReason.BANNED
        assert guard.check_and_record(IP, now=_at(t0, 61)).allowed
        assert IP not in ban_store.entries

    def test_custom_thresholds(self, ban_store, t0):
        guard = VoteGuard(ban_store, min_interval=1, burst_window=10, burst_max=2, ban_hours=1)
        assert guard.check_and_record(IP, now=t0).allowed
        assert guard.check_and_record(IP, now=_at(t0, 1)).allowed
        decision = guard.check_and_record(IP, now=_at(t0, 2))
        assert decision.escalated
        assert ban_store.entries[IP] == _at(t0, 2) + timedelta(hours=1)


class TestBanStoreFailures:
    def test_unreadable_store_fails_closed(self, t0):
        guard = VoteGuard(BrokenBanStore())
        decision = guard.check_and_record(IP, now=t0)
        assert not decision.allowed
        assert decision.reason is DenyReason.RATE_LIMITED
        assert decision.retry_after == 30
        assert guard.record_for(IP) is None

    def test_failed_ban_write_keeps_denying(self, t0):
        guard = VoteGuard(BrokenBanStore(fail_reads=False), burst_max=1, min_interval=1)
        assert guard.check_and_record(IP, now=t0).allowed

        decision = guard.check_and_record(IP, now=_at(t0, 1))
        assert decision.reason is DenyReason.BANNED
        assert decision.retry_after is None
        assert guard.record_for(IP) is not None

        again = guard.check_and_record(IP, now=_at(t0, 2))
        assert again.reason is DenyReason.BANNED


class TestCleanup:
    def test_removes_quiet_records(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        guard.check_and_record(IP, now=t0)
        guard.check_and_record("5.6.7.8", now=_at(t0, 290))

        assert guard.cleanup(now=_at(t0, 301)) == 1
        assert guard.record_for(IP) is None
        assert guard.record_for("5.6.7.8") is not None

    def test_keeps_records_inside_window(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        guard.check_and_record(IP, now=t0)
        assert guard.cleanup(now=_at(t0, 300)) == 0
        assert guard.tracked() == 1

    def test_record_refreshed_after_snapshot_is_kept(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        guard.check_and_record(IP, now=t0)
        now = _at(t0, 400)
        snapshot = guard._stale_identifiers

        def snapshot_then_vote(at):
            stale = snapshot(at)
            assert guard.check_and_record(IP, now=at).allowed
            return stale

        with mock.patch.object(guard, "_stale_identifiers", side_effect=snapshot_then_vote):
            assert guard.cleanup(now=now) == 0

        record = guard.record_for(IP)
        assert record.last_request_at == now
        assert record.request_count == 1

    def test_cleanup_does_not_change_decisions(self, ban_store, t0):
        guard = VoteGuard(ban_store)
        guard.check_and_record(IP, now=t0)
        guard.cleanup(now=_at(t0, 400))
        assert guard.check_and_record(IP, now=_at(t0, 400)).allowed


class TestConcurrency:
    def test_concurrent_votes_admit_exactly_one(self, t0):
        guard = VoteGuard(MemoryBanStore())
        barrier = threading.Barrier(16)
        results = []

        def worker():
            barrier.wait()
            results.append(guard.check_and_record(IP, now=t0).allowed)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1

    def test_concurrent_escalation_writes_one_ban(self, t0):
        store = MemoryBanStore()
        guard = VoteGuard(store, min_interval=0, burst_max=3)
        barrier = threading.Barrier(10)
        results = []

        def worker():
            barrier.wait()
            results.append(guard.check_and_record(IP, now=t0))

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for d in results if d.allowed) == 3
        assert sum(1 for d in results if d.escalated) == 1
        assert store.writes == 1
