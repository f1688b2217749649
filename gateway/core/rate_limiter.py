from slowapi import Limiter
from slowapi.util import get_remote_address
from gateway.core.config import settings

# IP-keyed limiter for unauthenticated endpoints (registration).
# Daily per-account quotas are enforced by QuotaGuard, not here.
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",  # In-memory storage (can upgrade to Redis later)
    enabled=settings.rate_limit_enabled,
)

REGISTER_RATE_LIMIT = settings.register_rate_limit
