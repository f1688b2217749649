from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, date
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from gateway.models.account import Account
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountFilter:
    """
    Predicate over accounts, understood by every AccountStore.

    Unset fields match everything. The usage test compares the count recorded
    for `usage_day` against the limit with integer arithmetic, so a count
    recorded on another day never matches.
    """

    expires_at_or_after: Optional[datetime] = None
    expires_before: Optional[datetime] = None
    expires_after: Optional[datetime] = None
    usage_percent_at_least: Optional[int] = None
    usage_day: Optional[date] = None

    def __post_init__(self):
        if self.usage_percent_at_least is not None and self.usage_day is None:
            raise ValueError("usage_day is required with usage_percent_at_least")

    def matches(self, account: Account) -> bool:
        if self.expires_at_or_after is not None and not account.expires_at >= self.expires_at_or_after:
            return False
        if self.expires_before is not None and not account.expires_at < self.expires_before:
            return False
        if self.expires_after is not None and not account.expires_at > self.expires_after:
            return False
        if self.usage_percent_at_least is not None:
            used = account.effective_daily_count(self.usage_day)
            if used * 100 < account.daily_limit * self.usage_percent_at_least:
                return False
        return True


class AccountStore(ABC):
    """Persistence boundary for accounts. Implementations keep no state across calls."""

    @abstractmethod
    def find_by_id(self, account_id: str) -> Optional[Account]:
        ...

    @abstractmethod
    def find_by_api_key(self, api_key: str) -> Optional[Account]:
        ...

    @abstractmethod
    def find_by_contact_channel_id(self, contact_channel_id: str) -> Optional[Account]:
        ...

    @abstractmethod
    def find_by_contact_email(self, contact_email: str) -> Optional[Account]:
        ...

    @abstractmethod
    def find_all(self) -> List[Account]:
        ...

    @abstractmethod
    def save(self, account: Account) -> None:
        ...

    @abstractmethod
    def count_where(self, account_filter: AccountFilter) -> int:
        ...

    @abstractmethod
    def find_where(self, account_filter: AccountFilter) -> List[Account]:
        ...

    @abstractmethod
    def update_all_daily_count_to_zero(self, before_day: Optional[date] = None) -> int:
        """Zero daily_count for every account, or only those last counted before `before_day`."""
        ...


class SqlAlchemyAccountStore(AccountStore):
    """AccountStore over a SQLAlchemy session (one session per request or job run)"""

    def __init__(self, db: Session):
        self.db = db
        self.logger = logging.getLogger(__name__)

    def _query(self):
        # Always reload rows so a re-read under an account lock sees committed state
        return self.db.query(Account).populate_existing()

    def _criteria(self, account_filter: AccountFilter) -> list:
        criteria = []
        if account_filter.expires_at_or_after is not None:
            criteria.append(Account.expires_at >= account_filter.expires_at_or_after)
        if account_filter.expires_before is not None:
            criteria.append(Account.expires_at < account_filter.expires_before)
        if account_filter.expires_after is not None:
            criteria.append(Account.expires_at > account_filter.expires_after)
        if account_filter.usage_percent_at_least is not None:
            criteria.append(Account.last_request_day == account_filter.usage_day)
            criteria.append(
                Account.daily_count * 100 >= Account.daily_limit * account_filter.usage_percent_at_least
            )
        return criteria

    def find_by_id(self, account_id: str) -> Optional[Account]:
        return self._query().filter(Account.id == account_id).first()

    def find_by_api_key(self, api_key: str) -> Optional[Account]:
        return self._query().filter(Account.api_key == api_key).first()

    def find_by_contact_channel_id(self, contact_channel_id: str) -> Optional[Account]:
        return self._query().filter(Account.contact_channel_id == contact_channel_id).first()

    def find_by_contact_email(self, contact_email: str) -> Optional[Account]:
        return self._query().filter(Account.contact_email == contact_email).first()

    def find_all(self) -> List[Account]:
        return self._query().order_by(Account.created_at).all()

    def save(self, account: Account) -> None:
        try:
            self.db.add(account)
            self.db.commit()
            self.db.refresh(account)
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error(f"save: Failure - account: {account.id}, error: {e}")
            raise

    def count_where(self, account_filter: AccountFilter) -> int:
        return self.db.query(Account).filter(*self._criteria(account_filter)).count()

    def find_where(self, account_filter: AccountFilter) -> List[Account]:
        return self._query().filter(*self._criteria(account_filter)).order_by(Account.created_at).all()

    def update_all_daily_count_to_zero(self, before_day: Optional[date] = None) -> int:
        self.logger.info(f"update_all_daily_count_to_zero: Entry - before_day: {before_day}")
        try:
            query = self.db.query(Account)
            if before_day is not None:
                query = query.filter(Account.last_request_day < before_day)
            rows_updated = query.update({Account.daily_count: 0}, synchronize_session=False)
            self.db.commit()
            self.logger.info(f"update_all_daily_count_to_zero: Success - rows updated: {rows_updated}")
            return rows_updated
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error(f"update_all_daily_count_to_zero: Failure - {e}")
            raise
