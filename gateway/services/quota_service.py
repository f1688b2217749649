from datetime import datetime
from typing import Callable, Optional
from gateway.core.errors import MissingKey, InvalidKey, Expired, LimitExceeded
from gateway.core.locks import AccountLocks
from gateway.models.account import Account
from gateway.services.account_store import AccountStore
import logging

logger = logging.getLogger(__name__)


class QuotaGuard:
    def __init__(
        self,
        store: AccountStore,
        locks: AccountLocks,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.locks = locks
        self.now = now
        self.logger = logging.getLogger(__name__)

    def authenticate(self, api_key: Optional[str]) -> Account:
        """
        Authenticate a request by API key and meter it against the daily quota.

        The check and the increment run under the account's lock, so two
        concurrent requests can never both take the last remaining slot.
        A counter recorded on an earlier day counts as zero; a rejected
        request leaves the stored counter untouched.

        Raises:
            MissingKey, InvalidKey, Expired, LimitExceeded
        """
        if not api_key:
            self.logger.info("authenticate: Rejected - missing key")
            raise MissingKey()

        account = self.store.find_by_api_key(api_key)
        if account is None:
            self.logger.info("authenticate: Rejected - invalid key")
            raise InvalidKey()

        account_id = account.id
        self.logger.info(f"authenticate: Entry - account: {account_id}")

        with self.locks.hold(account_id):
            account = self.store.find_by_id(account_id)
            if account is None:
                raise InvalidKey()

            now = self.now()
            if account.is_expired(now):
                self.logger.info(f"authenticate: Rejected - expired - account: {account_id}")
                raise Expired()

            today = now.date()
            used = account.effective_daily_count(today)
            if used >= account.daily_limit:
                self.logger.info(
                    f"authenticate: Rejected - limit exceeded - account: {account_id}, "
                    f"count: {used}/{account.daily_limit}"
                )
                raise LimitExceeded()

            account.daily_count = used + 1
            account.last_request_day = today
            self.store.save(account)

        self.logger.info(
            f"authenticate: Success - account: {account_id}, count: {account.daily_count}/{account.daily_limit}"
        )
        return account
