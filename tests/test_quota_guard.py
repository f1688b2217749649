"""
Tests for QuotaGuard - API key authentication and daily quota accounting
"""

import threading
from datetime import timedelta

import pytest

from gateway.core.errors import MissingKey, InvalidKey, Expired, LimitExceeded
from gateway.services.quota_service import QuotaGuard
from conftest import InMemoryAccountStore


@pytest.fixture
def guard(account_store, account_locks, clock):
    return QuotaGuard(account_store, account_locks, now=clock)


class TestAuthentication:
    """Key lookup and expiry checks"""

    @pytest.mark.parametrize("api_key", [None, ""])
    def test_missing_key_rejected(self, guard, api_key):
        with pytest.raises(MissingKey):
            guard.authenticate(api_key)

    def test_unknown_key_rejected(self, guard, account_store, make_account):
        make_account(account_store, api_key="known")

        with pytest.raises(InvalidKey):
            guard.authenticate("unknown")

    def test_expired_key_rejected_even_with_quota_left(self, guard, account_store, make_account, now):
        account = make_account(
            account_store,
            expires_at=now - timedelta(minutes=1),
            daily_count=0,
            daily_limit=100,
        )

        with pytest.raises(Expired):
            guard.authenticate(account.api_key)

        stored = account_store.find_by_id(account.id)
        assert stored.daily_count == 0

    def test_key_valid_until_expiry_instant(self, guard, account_store, make_account, now):
        account = make_account(account_store, expires_at=now)

        result = guard.authenticate(account.api_key)

        assert result.id == account.id

    def test_accepted_request_increments_counter(self, guard, account_store, make_account, now):
        account = make_account(account_store, daily_count=5)

        result = guard.authenticate(account.api_key)

        assert result.daily_count == 6
        stored = account_store.find_by_id(account.id)
        assert stored.daily_count == 6
        assert stored.last_request_day == now.date()


class TestDailyLimit:
    """Quota enforcement within one calendar day"""

    def test_limit_plus_one_request_rejected(self, guard, account_store, make_account):
        account = make_account(account_store, daily_limit=3, daily_count=0)

        for _ in range(3):
            guard.authenticate(account.api_key)

        with pytest.raises(LimitExceeded):
            guard.authenticate(account.api_key)

        assert account_store.find_by_id(account.id).daily_count == 3

    def test_rejected_request_does_not_write(self, guard, account_store, make_account):
        account = make_account(account_store, daily_limit=2, daily_count=2)
        saves_before = account_store.saves

        with pytest.raises(LimitExceeded):
            guard.authenticate(account.api_key)

        assert account_store.saves == saves_before

    def test_lowered_limit_below_usage_rejects(self, guard, account_store, make_account):
        account = make_account(account_store, daily_limit=10, daily_count=12)

        with pytest.raises(LimitExceeded):
            guard.authenticate(account.api_key)

        assert account_store.find_by_id(account.id).daily_count == 12


class TestDayRollover:
    """A counter recorded on an earlier day counts as zero"""

    def test_exhausted_yesterday_accepted_today(self, guard, account_store, make_account, now):
        yesterday = now.date() - timedelta(days=1)
        account = make_account(account_store, daily_limit=10, daily_count=10, last_request_day=yesterday)

        result = guard.authenticate(account.api_key)

        assert result.daily_count == 1
        assert result.last_request_day == now.date()

    def test_lazy_and_eager_reset_converge(self, account_locks, clock, make_account, now):
        yesterday = now.date() - timedelta(days=1)
        lazy_store = InMemoryAccountStore()
        eager_store = InMemoryAccountStore()
        lazy = make_account(lazy_store, daily_limit=10, daily_count=10, last_request_day=yesterday)
        eager = make_account(eager_store, daily_limit=10, daily_count=10, last_request_day=yesterday)

        eager_store.update_all_daily_count_to_zero(before_day=now.date())
        QuotaGuard(lazy_store, account_locks, now=clock).authenticate(lazy.api_key)
        QuotaGuard(eager_store, account_locks, now=clock).authenticate(eager.api_key)

        lazy_after = lazy_store.find_by_id(lazy.id)
        eager_after = eager_store.find_by_id(eager.id)
        assert (lazy_after.daily_count, lazy_after.last_request_day) == (1, now.date())
        assert (eager_after.daily_count, eager_after.last_request_day) == (1, now.date())

    def test_counter_restarts_after_midnight(self, guard, account_store, make_account, clock, now):
        account = make_account(account_store, daily_limit=2, daily_count=0)
        guard.authenticate(account.api_key)
        guard.authenticate(account.api_key)
        with pytest.raises(LimitExceeded):
            guard.authenticate(account.api_key)

        clock.current = now + timedelta(days=1)
        result = guard.authenticate(account.api_key)

        assert result.daily_count == 1
        assert result.last_request_day == (now + timedelta(days=1)).date()


class TestConcurrentRequests:
    """Per-account serialization of the read-check-increment sequence"""

    def _race(self, guard, api_key, threads):
        barrier = threading.Barrier(threads)
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                guard.authenticate(api_key)
                outcome = "ok"
            except LimitExceeded:
                outcome = "limit"
            with outcomes_lock:
                outcomes.append(outcome)

        workers = [threading.Thread(target=worker) for _ in range(threads)]
        for t in workers:
            t.start()
        for t in workers:
            t.join(timeout=10)
        return outcomes

    def test_last_slot_admits_exactly_one(self, account_locks, clock, make_account):
        store = InMemoryAccountStore(read_delay=0.05)
        account = make_account(store, daily_limit=5, daily_count=4)
        guard = QuotaGuard(store, account_locks, now=clock)

        outcomes = self._race(guard, account.api_key, threads=2)

        assert sorted(outcomes) == ["limit", "ok"]
        assert store.find_by_id(account.id).daily_count == 5

    def test_counter_never_exceeds_limit_under_load(self, account_locks, clock, make_account):
        store = InMemoryAccountStore(read_delay=0.01)
        account = make_account(store, daily_limit=10, daily_count=7)
        guard = QuotaGuard(store, account_locks, now=clock)

        outcomes = self._race(guard, account.api_key, threads=8)

        assert outcomes.count("ok") == 3
        assert outcomes.count("limit") == 5
        assert store.find_by_id(account.id).daily_count == 10

    def test_different_accounts_do_not_block_each_other(self, account_locks, clock, make_account):
        store = InMemoryAccountStore()
        first = make_account(store, daily_limit=1, daily_count=0)
        second = make_account(store, daily_limit=1, daily_count=0)
        guard = QuotaGuard(store, account_locks, now=clock)

        with account_locks.hold(first.id):
            result = guard.authenticate(second.api_key)

        assert result.daily_count == 1
