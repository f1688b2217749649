from fastapi import Depends, Header, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session
from typing import Optional
from gateway.core.config import settings
from gateway.core.database import get_db
from gateway.core.errors import AdminUnauthorized, MissingKey
from gateway.core.locks import get_account_locks
from gateway.models.account import Account
from gateway.services.account_store import SqlAlchemyAccountStore
from gateway.services.account_service import AccountService
from gateway.services.quota_service import QuotaGuard
import hmac
import logging

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Require the X-API-Key header without metering the request"""
    if not api_key:
        raise MissingKey()
    return api_key


def require_api_key(
    api_key: Optional[str] = Security(api_key_header),
    db: Session = Depends(get_db),
) -> Account:
    """
    Dependency for quota-gated routes.
    Authenticates the X-API-Key header and consumes one request from the
    account's daily quota before the route handler runs.
    """
    guard = QuotaGuard(SqlAlchemyAccountStore(db), get_account_locks())
    return guard.authenticate(api_key)


def require_admin(x_admin_token: Optional[str] = Header(None)):
    """Admin routes are operator-trusted; a token is enforced only when one is configured"""
    if not settings.admin_token:
        return
    if not x_admin_token or not hmac.compare_digest(x_admin_token, settings.admin_token):
        logger.warning("require_admin: Unauthorized")
        raise AdminUnauthorized()


def get_account_service(db: Session = Depends(get_db)) -> AccountService:
    return AccountService(
        SqlAlchemyAccountStore(db),
        get_account_locks(),
        trial_days=settings.trial_days,
        default_daily_limit=settings.default_daily_limit,
        near_expiry_days=settings.near_expiry_days,
        high_usage_percent=settings.high_usage_percent,
    )
