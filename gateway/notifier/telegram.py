import httpx
from gateway.core.config import NotificationConfig
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Best-effort delivery of HTML messages through the Telegram Bot API"""

    def __init__(self, config: NotificationConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self.logger = logging.getLogger(__name__)

    @property
    def send_url(self) -> str:
        return f"{self.config.api_base.rstrip('/')}/bot{self.config.bot_token}/sendMessage"

    async def notify(self, chat_id: str, message: str) -> bool:
        """
        Send `message` to a Telegram chat.

        Returns True when Telegram accepted the message. Never raises:
        a missing token, HTTP errors and transport errors are logged and
        reported as False so the calling job keeps going.
        """
        self.logger.info(f"notify: Entry - chat: {chat_id}")

        if not self.config.bot_token:
            self.logger.error("notify: Failure - Telegram bot token not configured")
            return False
        if not chat_id:
            self.logger.warning("notify: Skipped - no chat id")
            return False

        payload = {
            "chat_id": chat_id,
            "text": message,
            "parse_mode": "HTML",
        }

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.send_url, json=payload, timeout=self.config.send_timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self.config.send_timeout_seconds) as client:
                    response = await client.post(self.send_url, json=payload)
            response.raise_for_status()
            self.logger.info(f"notify: Success - chat: {chat_id}")
            return True
        except httpx.HTTPStatusError as e:
            # Exception text embeds the URL, which carries the bot token
            self.logger.error(f"notify: Failure - chat: {chat_id}, status: {e.response.status_code}")
        except httpx.TimeoutException:
            self.logger.error(f"notify: Failure - chat: {chat_id}, timed out after {self.config.send_timeout_seconds}s")
        except Exception as e:
            self.logger.error(f"notify: Failure - chat: {chat_id}, error: {type(e).__name__}")
        return False
