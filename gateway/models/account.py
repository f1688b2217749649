from sqlalchemy import Column, String, Integer, DateTime, Date
from gateway.core.database import Base
from datetime import datetime, date


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String, primary_key=True, index=True)
    display_name = Column(String, nullable=False)
    contact_email = Column(String, unique=True, index=True, nullable=False)
    contact_channel_id = Column(String, unique=True, index=True, nullable=False)  # Telegram chat id
    api_key = Column(String, unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)  # naive, server-local
    daily_limit = Column(Integer, nullable=False, default=100)
    daily_count = Column(Integer, nullable=False, default=0)
    last_request_day = Column(Date, nullable=False, default=date.today)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    def effective_daily_count(self, today: date) -> int:
        """Requests consumed on `today`; a count recorded for another day reads as 0."""
        if self.last_request_day != today:
            return 0
        return self.daily_count or 0

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at
