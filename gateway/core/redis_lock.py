import logging
import time
import uuid
from typing import Optional
import redis
from redis.exceptions import RedisError
from gateway.core.config import settings

logger = logging.getLogger(__name__)

# Delete the key only if it still holds our token, so an expired lock that
# another worker has since taken is never released by us.
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class RedisLockClient:
    """Redis-backed distributed locks (SET NX EX) shared by all gateway workers"""

    def __init__(self, redis_url: str = None, password: Optional[str] = None, client: Optional[redis.Redis] = None):
        """Initialize lock client (lazy connection unless a client is injected)"""
        self.redis_url = redis_url or settings.redis_url
        self.password = password if password is not None else settings.redis_password
        self._client = client

    def _ensure_connected(self) -> redis.Redis:
        """Return a live client, connecting on first use. Raises RedisError if unreachable."""
        if self._client is None:
            client_kwargs = {
                'decode_responses': True,
                'socket_connect_timeout': 2,
                'socket_timeout': 2,
                'retry_on_timeout': False,
            }
            # settings.redis_password takes precedence over a password in the URL
            if self.password:
                client_kwargs['password'] = self.password
            client = redis.from_url(self.redis_url, **client_kwargs)
            client.ping()
            self._client = client
            logger.info("RedisLockClient: Connected to Redis")
        return self._client

    def ping(self) -> bool:
        """Check if Redis connection is alive"""
        try:
            self._ensure_connected().ping()
            return True
        except RedisError:
            self._client = None
            return False

    def acquire_lock(self, lock_key: str, timeout_seconds: int = 10, block_seconds: int = 5) -> Optional[str]:
        """
        Acquire a distributed lock.

        Args:
            lock_key: Unique key for the lock
            timeout_seconds: How long the lock will be held (auto-release)
            block_seconds: How long to wait trying to acquire the lock

        Returns:
            The lock token if acquired, None if the wait timed out.

        Raises:
            RedisError: Redis is unreachable.
        """
        try:
            client = self._ensure_connected()
            end_time = time.monotonic() + block_seconds
            token = str(uuid.uuid4())

            while True:
                if client.set(lock_key, token, nx=True, ex=timeout_seconds):
                    logger.debug(f"RedisLockClient: Lock acquired - {lock_key}")
                    return token
                if time.monotonic() >= end_time:
                    break
                time.sleep(0.05)

            logger.warning(f"RedisLockClient: Failed to acquire lock - {lock_key}")
            return None
        except RedisError as e:
            logger.error(f"RedisLockClient: Error acquiring lock {lock_key}: {e}")
            self._client = None
            raise

    def release_lock(self, lock_key: str, token: str):
        """Release a lock previously returned by acquire_lock"""
        try:
            self._ensure_connected().eval(_RELEASE_SCRIPT, 1, lock_key, token)
            logger.debug(f"RedisLockClient: Lock released - {lock_key}")
        except RedisError as e:
            # The lock expires on its own after timeout_seconds
            logger.error(f"RedisLockClient: Error releasing lock {lock_key}: {e}")
            self._client = None
