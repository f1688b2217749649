"""Telegram message templates (HTML parse mode: <b> and line breaks only)."""

from html import escape
from gateway.models.account import Account

SIGN_OFF = "Thank you for using Mirai API!"


def expiry_notice(account: Account) -> str:
    return (
        "<b>⚠️ API Key Expiry Notice</b>\n\n"
        f"Hello {escape(account.display_name)},\n\n"
        "Your API key has expired. Please extend your subscription to continue using our services.\n\n"
        f"{SIGN_OFF}"
    )


def expiry_warning(account: Account, days_left: int) -> str:
    unit = "day" if days_left == 1 else "days"
    return (
        "<b>⚠️ API Key Expiry Warning</b>\n\n"
        f"Hello {escape(account.display_name)},\n\n"
        f"Your API key will expire in {days_left} {unit}. "
        "Please extend your subscription to avoid service interruption.\n\n"
        f"{SIGN_OFF}"
    )


def high_usage_notice(account: Account, used: int) -> str:
    return (
        "<b>⚠️ API Request Limit Notice</b>\n\n"
        f"Hello {escape(account.display_name)},\n\n"
        f"You have reached {used}/{account.daily_limit} of your daily API request limit.\n\n"
        "Your limit will reset tomorrow.\n\n"
        f"{SIGN_OFF}"
    )


def daily_digest(stats) -> str:
    return (
        "<b>📊 Mirai API Daily Summary</b>\n\n"
        f"Total Users: {stats.total}\n"
        f"Active Users: {stats.active}\n"
        f"Expired Users: {stats.expired}\n"
        f"Users Expiring Soon: {stats.near_expiry}\n"
        f"High Usage Users: {stats.high_usage}\n"
    )
