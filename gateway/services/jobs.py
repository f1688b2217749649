import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Awaitable, Callable, List, Tuple
from starlette.concurrency import run_in_threadpool
from gateway.core.config import SchedulerConfig, Settings
from gateway.core.database import SessionLocal
from gateway.notifier import messages
from gateway.notifier.telegram import TelegramNotifier
from gateway.services.account_service import compute_stats
from gateway.services.account_store import AccountStore, AccountFilter, SqlAlchemyAccountStore

logger = logging.getLogger(__name__)

DAILY_RESET = "daily_reset"
EXPIRY_CHECK = "expiry_check"
USAGE_CHECK = "usage_check"
JOB_NAMES = (DAILY_RESET, EXPIRY_CHECK, USAGE_CHECK)


@dataclass
class JobResult:
    job: str
    matched: int = 0
    sent: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {"job": self.job, "matched": self.matched, "sent": self.sent, "failed": self.failed}


class NotificationJobs:
    """
    The scheduled sweeps. Every run derives its working set from the store,
    so running a job twice re-sends its notices.
    """

    def __init__(
        self,
        store: AccountStore,
        notifier,
        config: SchedulerConfig,
        admin_chat_id: str = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.notifier = notifier
        self.config = config
        self.admin_chat_id = admin_chat_id
        self.now = now
        self.logger = logging.getLogger(__name__)

    async def run(self, name: str) -> JobResult:
        if name == DAILY_RESET:
            return await self.daily_reset()
        if name == EXPIRY_CHECK:
            return await self.expiry_check()
        if name == USAGE_CHECK:
            return await self.usage_check()
        raise KeyError(name)

    async def _send(self, semaphore: asyncio.Semaphore, chat_id: str, text: str) -> bool:
        async with semaphore:
            try:
                return bool(await asyncio.wait_for(
                    self.notifier.notify(chat_id, text),
                    timeout=self.config.send_timeout_seconds,
                ))
            except asyncio.TimeoutError:
                self.logger.error(f"_send: Failure - chat: {chat_id}, timed out")
            except Exception as e:
                self.logger.error(f"_send: Failure - chat: {chat_id}, error: {e}")
            return False

    async def _deliver(self, result: JobResult, deliveries: List[Tuple[str, str]]) -> JobResult:
        """Send all messages concurrently; one failed delivery never stops the others"""
        semaphore = asyncio.Semaphore(max(1, self.config.notify_concurrency))
        outcomes = await asyncio.gather(
            *(self._send(semaphore, chat_id, text) for chat_id, text in deliveries)
        )
        result.sent += sum(1 for ok in outcomes if ok)
        result.failed += sum(1 for ok in outcomes if not ok)
        return result

    async def daily_reset(self) -> JobResult:
        """Zero stale daily counters, then send the operator digest"""
        self.logger.info("daily_reset: Entry")
        now = self.now()
        result = JobResult(job=DAILY_RESET)

        result.matched = await run_in_threadpool(self.store.update_all_daily_count_to_zero, now.date())
        stats = await run_in_threadpool(
            compute_stats,
            self.store,
            now,
            self.config.expiry_warning_days,
            self.config.high_usage_percent,
        )

        if not self.admin_chat_id:
            self.logger.warning("daily_reset: Admin chat ID not configured, digest not sent")
        else:
            await self._deliver(result, [(self.admin_chat_id, messages.daily_digest(stats))])

        self.logger.info(f"daily_reset: Success - reset: {result.matched}, stats: {stats}")
        return result

    async def expiry_check(self) -> JobResult:
        """Notify accounts expiring today and warn those expiring within the warning window"""
        self.logger.info("expiry_check: Entry")
        today = self.now().date()
        day_start = datetime.combine(today, time.min)
        tomorrow = day_start + timedelta(days=1)
        window_end = day_start + timedelta(days=self.config.expiry_warning_days)

        expiring_today = await run_in_threadpool(
            self.store.find_where, AccountFilter(expires_at_or_after=day_start, expires_before=tomorrow)
        )
        expiring_soon = await run_in_threadpool(
            self.store.find_where, AccountFilter(expires_at_or_after=tomorrow, expires_before=window_end)
        )
        self.logger.info(
            f"expiry_check: Found {len(expiring_today)} expiring today, {len(expiring_soon)} expiring soon"
        )

        deliveries = [(a.contact_channel_id, messages.expiry_notice(a)) for a in expiring_today]
        for account in expiring_soon:
            days_left = (account.expires_at.date() - today).days
            deliveries.append((account.contact_channel_id, messages.expiry_warning(account, days_left)))

        result = JobResult(job=EXPIRY_CHECK, matched=len(deliveries))
        await self._deliver(result, deliveries)
        self.logger.info(f"expiry_check: Success - {result}")
        return result

    async def usage_check(self) -> JobResult:
        """Notify accounts that have used at least high_usage_percent of today's quota"""
        self.logger.info("usage_check: Entry")
        today = self.now().date()
        accounts = await run_in_threadpool(
            self.store.find_where,
            AccountFilter(usage_percent_at_least=self.config.high_usage_percent, usage_day=today),
        )
        self.logger.info(f"usage_check: Found {len(accounts)} accounts approaching their limit")

        deliveries = [
            (a.contact_channel_id, messages.high_usage_notice(a, a.effective_daily_count(today)))
            for a in accounts
        ]
        result = JobResult(job=USAGE_CHECK, matched=len(deliveries))
        await self._deliver(result, deliveries)
        self.logger.info(f"usage_check: Success - {result}")
        return result


def create_job_runner(settings: Settings) -> Callable[[str], Awaitable[JobResult]]:
    """Build a runner that executes one job with a fresh database session per run"""
    notifier = TelegramNotifier(settings.notification_config())
    scheduler_config = settings.scheduler_config()
    admin_chat_id = settings.notification_config().admin_chat_id

    async def run(name: str) -> JobResult:
        db = SessionLocal()
        try:
            jobs = NotificationJobs(
                SqlAlchemyAccountStore(db),
                notifier,
                scheduler_config,
                admin_chat_id=admin_chat_id,
            )
            return await jobs.run(name)
        finally:
            db.close()

    return run
