import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, Optional
from redis.exceptions import RedisError
from gateway.core.config import settings
from gateway.core.errors import LockUnavailable
from gateway.core.redis_lock import RedisLockClient

logger = logging.getLogger(__name__)


class _AccountLock:
    __slots__ = ("lock", "__weakref__")

    def __init__(self):
        self.lock = threading.Lock()


class AccountLocks:
    """
    Per-account mutual exclusion for read-check-write sequences on quota state.

    A threading.Lock per account id serializes requests handled by this
    process. When a RedisLockClient is given, a distributed lock on
    `quota_lock:{account_id}` is taken inside the local one so requests
    handled by other workers are serialized too.

    Waiting for either lock is bounded by block_seconds; a wait that runs
    out raises LockUnavailable.
    """

    def __init__(
        self,
        redis_client: Optional[RedisLockClient] = None,
        timeout_seconds: int = 10,
        block_seconds: int = 5,
    ):
        self.redis_client = redis_client
        self.timeout_seconds = timeout_seconds
        self.block_seconds = block_seconds
        # Entries disappear once no request holds or waits on them
        self._locks: "weakref.WeakValueDictionary[str, _AccountLock]" = weakref.WeakValueDictionary()
        self._registry_lock = threading.Lock()

    def _local_lock(self, account_id: str) -> _AccountLock:
        with self._registry_lock:
            entry = self._locks.get(account_id)
            if entry is None:
                entry = _AccountLock()
                self._locks[account_id] = entry
            return entry

    @contextmanager
    def hold(self, account_id: str) -> Iterator[None]:
        entry = self._local_lock(account_id)
        if not entry.lock.acquire(timeout=self.block_seconds):
            logger.warning(f"AccountLocks: Local lock wait timed out - {account_id}")
            raise LockUnavailable(f"Could not acquire lock for account {account_id}")
        try:
            lock_key = f"quota_lock:{account_id}"
            token = None
            if self.redis_client is not None:
                try:
                    token = self.redis_client.acquire_lock(
                        lock_key,
                        timeout_seconds=self.timeout_seconds,
                        block_seconds=self.block_seconds,
                    )
                except RedisError as e:
                    logger.warning(f"AccountLocks: Redis unavailable, using local lock only - {account_id}: {e}")
                else:
                    if token is None:
                        raise LockUnavailable(f"Could not acquire lock for account {account_id}")
            try:
                yield
            finally:
                if token is not None:
                    self.redis_client.release_lock(lock_key, token)
        finally:
            entry.lock.release()


_locks_instance: Optional[AccountLocks] = None


def get_account_locks() -> AccountLocks:
    """Get the process-wide AccountLocks instance"""
    global _locks_instance
    if _locks_instance is None:
        redis_client = RedisLockClient() if settings.account_lock_backend == "redis" else None
        _locks_instance = AccountLocks(
            redis_client=redis_client,
            timeout_seconds=settings.lock_timeout_seconds,
            block_seconds=settings.lock_block_seconds,
        )
    return _locks_instance
