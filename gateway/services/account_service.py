from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from sqlalchemy.exc import IntegrityError
from gateway.core.errors import AccountNotFound, DuplicateAccount, ValidationFailed, MissingKey
from gateway.core.locks import AccountLocks
from gateway.models.account import Account
from gateway.services.account_store import AccountStore, AccountFilter
import secrets
import uuid
import logging

logger = logging.getLogger(__name__)


@dataclass
class AccountStats:
    total: int
    active: int
    expired: int
    near_expiry: int
    high_usage: int

    def to_dict(self) -> dict:
        return {
            "totalUsers": self.total,
            "activeUsers": self.active,
            "expiredUsers": self.expired,
            "nearExpiryUsers": self.near_expiry,
            "highUsageUsers": self.high_usage,
        }


def compute_stats(
    store: AccountStore,
    now: datetime,
    near_expiry_days: int = 3,
    high_usage_percent: int = 80,
) -> AccountStats:
    """Aggregate account counts against a single `now` snapshot"""
    return AccountStats(
        total=store.count_where(AccountFilter()),
        active=store.count_where(AccountFilter(expires_after=now)),
        expired=store.count_where(AccountFilter(expires_before=now)),
        near_expiry=store.count_where(
            AccountFilter(expires_after=now, expires_before=now + timedelta(days=near_expiry_days))
        ),
        high_usage=store.count_where(
            AccountFilter(usage_percent_at_least=high_usage_percent, usage_day=now.date())
        ),
    )


def generate_api_key() -> str:
    return secrets.token_hex(32)


class AccountService:
    def __init__(
        self,
        store: AccountStore,
        locks: AccountLocks,
        now: Callable[[], datetime] = datetime.now,
        trial_days: int = 30,
        default_daily_limit: int = 100,
        near_expiry_days: int = 3,
        high_usage_percent: int = 80,
    ):
        self.store = store
        self.locks = locks
        self.now = now
        self.trial_days = trial_days
        self.default_daily_limit = default_daily_limit
        self.near_expiry_days = near_expiry_days
        self.high_usage_percent = high_usage_percent
        self.logger = logging.getLogger(__name__)

    def _ensure_unique(self, account_id: Optional[str], contact_email: Optional[str], contact_channel_id: Optional[str]):
        if contact_email:
            other = self.store.find_by_contact_email(contact_email)
            if other is not None and other.id != account_id:
                raise DuplicateAccount()
        if contact_channel_id:
            other = self.store.find_by_contact_channel_id(contact_channel_id)
            if other is not None and other.id != account_id:
                raise DuplicateAccount()

    def _save(self, account: Account):
        try:
            self.store.save(account)
        except IntegrityError:
            # Lost a race with a concurrent registration/update on a unique column
            raise DuplicateAccount()

    def register(
        self,
        display_name: str,
        contact_email: str,
        contact_channel_id: str,
        daily_limit: Optional[int] = None,
    ) -> Account:
        self.logger.info(f"register: Entry - channel: {contact_channel_id}")

        if not display_name or not contact_email or not contact_channel_id:
            raise ValidationFailed("Name, email, and Telegram ID are required")
        if daily_limit is None:
            daily_limit = self.default_daily_limit
        if daily_limit <= 0:
            raise ValidationFailed("Valid maximum requests per day is required")

        self._ensure_unique(None, contact_email, contact_channel_id)

        now = self.now()
        account = Account(
            id=str(uuid.uuid4()),
            display_name=display_name,
            contact_email=contact_email,
            contact_channel_id=contact_channel_id,
            api_key=generate_api_key(),
            expires_at=now + timedelta(days=self.trial_days),
            daily_limit=daily_limit,
            daily_count=0,
            last_request_day=now.date(),
            created_at=now,
        )
        self._save(account)

        self.logger.info(f"register: Success - account: {account.id}, expires_at: {account.expires_at}")
        return account

    def get_by_api_key(self, api_key: Optional[str]) -> Account:
        if not api_key:
            raise MissingKey()
        account = self.store.find_by_api_key(api_key)
        if account is None:
            raise AccountNotFound()
        return account

    def get_by_channel_id(self, contact_channel_id: str) -> Account:
        account = self.store.find_by_contact_channel_id(contact_channel_id)
        if account is None:
            raise AccountNotFound()
        return account

    def list_accounts(self) -> List[Account]:
        return self.store.find_all()

    def count_accounts(self) -> int:
        return self.store.count_where(AccountFilter())

    def get_stats(self) -> AccountStats:
        self.logger.info("get_stats: Entry")
        stats = compute_stats(
            self.store,
            self.now(),
            near_expiry_days=self.near_expiry_days,
            high_usage_percent=self.high_usage_percent,
        )
        self.logger.info(f"get_stats: Success - {stats}")
        return stats

    def _mutate(self, account: Account, apply: Callable[[Account], None]) -> Account:
        """Re-read the account under its lock, apply the change and persist it"""
        with self.locks.hold(account.id):
            fresh = self.store.find_by_id(account.id)
            if fresh is None:
                raise AccountNotFound()
            apply(fresh)
            self._save(fresh)
        return fresh

    def update_profile(
        self,
        api_key: Optional[str],
        display_name: Optional[str] = None,
        contact_email: Optional[str] = None,
        contact_channel_id: Optional[str] = None,
    ) -> Account:
        account = self.get_by_api_key(api_key)
        self.logger.info(f"update_profile: Entry - account: {account.id}")
        self._ensure_unique(account.id, contact_email, contact_channel_id)

        def apply(target: Account):
            if display_name:
                target.display_name = display_name
            if contact_email:
                target.contact_email = contact_email
            if contact_channel_id:
                target.contact_channel_id = contact_channel_id

        account = self._mutate(account, apply)
        self.logger.info(f"update_profile: Success - account: {account.id}")
        return account

    def extend_expiry(self, api_key: Optional[str], days: int) -> Account:
        account = self.get_by_api_key(api_key)
        return self._extend(account, days)

    def _extend(self, account: Account, days: int) -> Account:
        if days is None or days <= 0:
            raise ValidationFailed("Valid number of days is required")
        self.logger.info(f"extend_expiry: Entry - account: {account.id}, days: {days}")

        def apply(target: Account):
            target.expires_at = target.expires_at + timedelta(days=days)

        account = self._mutate(account, apply)
        self.logger.info(f"extend_expiry: Success - account: {account.id}, expires_at: {account.expires_at}")
        return account

    def update_limit(self, api_key: Optional[str], daily_limit: int) -> Account:
        account = self.get_by_api_key(api_key)
        return self._set_limit(account, daily_limit)

    def _set_limit(self, account: Account, daily_limit: int) -> Account:
        if daily_limit is None or daily_limit <= 0:
            raise ValidationFailed("Valid maximum requests per day is required")
        self.logger.info(f"update_limit: Entry - account: {account.id}, limit: {daily_limit}")

        def apply(target: Account):
            target.daily_limit = daily_limit

        return self._mutate(account, apply)

    def admin_update(
        self,
        contact_channel_id: str,
        display_name: Optional[str] = None,
        contact_email: Optional[str] = None,
        daily_limit: Optional[int] = None,
        expiry_days: Optional[int] = None,
    ) -> Account:
        account = self.get_by_channel_id(contact_channel_id)
        self.logger.info(f"admin_update: Entry - account: {account.id}")

        if daily_limit is not None and daily_limit <= 0:
            raise ValidationFailed("Valid maximum requests per day is required")
        if expiry_days is not None and expiry_days <= 0:
            raise ValidationFailed("Valid number of days is required")
        self._ensure_unique(account.id, contact_email, None)

        def apply(target: Account):
            if display_name:
                target.display_name = display_name
            if contact_email:
                target.contact_email = contact_email
            if daily_limit is not None:
                target.daily_limit = daily_limit
            if expiry_days is not None:
                target.expires_at = target.expires_at + timedelta(days=expiry_days)

        account = self._mutate(account, apply)
        self.logger.info(f"admin_update: Success - account: {account.id}")
        return account

    def reset_daily(self, contact_channel_id: str) -> Account:
        account = self.get_by_channel_id(contact_channel_id)
        self.logger.info(f"reset_daily: Entry - account: {account.id}")

        def apply(target: Account):
            target.daily_count = 0

        account = self._mutate(account, apply)
        self.logger.info(f"reset_daily: Success - account: {account.id}")
        return account


def account_to_dict(account: Account, today, include_api_key: bool = False) -> dict:
    """Public snapshot of an account; dailyCount is the count effective for `today`"""
    data = {
        "id": account.id,
        "displayName": account.display_name,
        "contactEmail": account.contact_email,
        "contactChannelId": account.contact_channel_id,
        "expiresAt": account.expires_at,
        "dailyLimit": account.daily_limit,
        "dailyCount": account.effective_daily_count(today),
        "lastRequestDay": account.last_request_day,
        "createdAt": account.created_at,
    }
    if include_api_key:
        data["apiKey"] = account.api_key
    return data
