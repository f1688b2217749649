"""
Pytest configuration for testing
"""

import os
import threading
import time
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set up environment variables for testing before any imports
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ACCOUNT_LOCK_BACKEND"] = "local"
os.environ["TELEGRAM_BOT_TOKEN"] = "test-bot-token"
os.environ["ADMIN_CHAT_ID"] = "admin-chat"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["REDIS_PASSWORD"] = ""
os.environ.pop("ADMIN_TOKEN", None)

from gateway.core.config import SchedulerConfig  # noqa: E402
from gateway.core.database import Base, get_db  # noqa: E402
from gateway.core.locks import AccountLocks  # noqa: E402
from gateway.models.account import Account  # noqa: E402
from gateway.services.account_store import AccountStore, AccountFilter  # noqa: E402

# Tuesday morning, well away from any day boundary
NOW = datetime(2026, 3, 10, 9, 0, 0)


class InMemoryAccountStore(AccountStore):
    """
    AccountStore fake holding plain row dicts. Every read builds fresh
    Account objects, like a database round-trip. `read_delay` widens the
    window between read and write to make lost updates observable.
    """

    def __init__(self, read_delay: float = 0.0):
        self._rows = {}
        self._mutex = threading.Lock()
        self.read_delay = read_delay
        self.saves = 0

    @staticmethod
    def _row(account: Account) -> dict:
        return {column.key: getattr(account, column.key) for column in Account.__table__.columns}

    def _all(self):
        with self._mutex:
            rows = [dict(row) for row in self._rows.values()]
        return [Account(**row) for row in rows]

    def _first(self, predicate):
        found = next((a for a in self._all() if predicate(a)), None)
        if self.read_delay:
            time.sleep(self.read_delay)
        return found

    def find_by_id(self, account_id):
        return self._first(lambda a: a.id == account_id)

    def find_by_api_key(self, api_key):
        return self._first(lambda a: a.api_key == api_key)

    def find_by_contact_channel_id(self, contact_channel_id):
        return self._first(lambda a: a.contact_channel_id == contact_channel_id)

    def find_by_contact_email(self, contact_email):
        return self._first(lambda a: a.contact_email == contact_email)

    def find_all(self):
        return sorted(self._all(), key=lambda a: a.created_at)

    def save(self, account):
        row = self._row(account)
        with self._mutex:
            for other in self._rows.values():
                if other["id"] == row["id"]:
                    continue
                for column in ("api_key", "contact_email", "contact_channel_id"):
                    if other[column] == row[column]:
                        raise IntegrityError(f"duplicate {column}", params=None, orig=Exception(column))
            self._rows[row["id"]] = row
            self.saves += 1

    def count_where(self, account_filter):
        return len(self.find_where(account_filter))

    def find_where(self, account_filter: AccountFilter):
        return [a for a in self.find_all() if account_filter.matches(a)]

    def update_all_daily_count_to_zero(self, before_day=None):
        updated = 0
        with self._mutex:
            for row in self._rows.values():
                if before_day is None or row["last_request_day"] < before_day:
                    row["daily_count"] = 0
                    updated += 1
        return updated


class FakeNotifier:
    """Records deliveries; chat ids listed in `fail_for` raise instead"""

    def __init__(self, fail_for=(), result=True):
        self.sent = []
        self.fail_for = set(fail_for)
        self.result = result

    async def notify(self, chat_id, message):
        if chat_id in self.fail_for:
            raise RuntimeError(f"transport error for {chat_id}")
        self.sent.append((chat_id, message))
        return self.result


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock(now):
    """Mutable clock: set clock.current to move time"""

    class Clock:
        current = now

        def __call__(self):
            return self.current

    return Clock()


@pytest.fixture
def account_store():
    return InMemoryAccountStore()


@pytest.fixture
def account_locks():
    return AccountLocks()


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def scheduler_config():
    return SchedulerConfig(send_timeout_seconds=1.0, job_timeout_seconds=5.0)


@pytest.fixture
def make_account(now):
    """Factory that builds (and optionally stores) an account with sensible defaults"""
    counter = {"n": 0}

    def _make(store=None, **overrides):
        counter["n"] += 1
        n = counter["n"]
        fields = dict(
            id=f"account-{n}",
            display_name=f"User {n}",
            contact_email=f"user{n}@example.com",
            contact_channel_id=f"chat-{n}",
            api_key=f"key-{n}",
            expires_at=now + timedelta(days=30),
            daily_limit=100,
            daily_count=0,
            last_request_day=now.date(),
            created_at=now - timedelta(days=1) + timedelta(seconds=n),
        )
        fields.update(overrides)
        account = Account(**fields)
        if store is not None:
            store.save(account)
        return account

    return _make


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Create a new database session for a test"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def client(db_engine):
    """Test client whose requests use the in-memory database"""
    from fastapi.testclient import TestClient
    from gateway.main import app

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
