from datetime import timedelta
from fastapi import APIRouter, Depends
from gateway.core.envelope import success
from gateway.core.middleware import require_api_key
from gateway.models.account import Account

router = APIRouter()


@router.get("")
def get_quota(account: Account = Depends(require_api_key)):
    """Quota-gated: consumes one request and reports what is left for today"""
    today = account.last_request_day
    used = account.effective_daily_count(today)
    return success({
        "limit": account.daily_limit,
        "used": used,
        "remaining": max(0, account.daily_limit - used),
        "resetsOn": today + timedelta(days=1),
    })
