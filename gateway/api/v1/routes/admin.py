from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from gateway.core.envelope import success
from gateway.core.middleware import get_account_service, require_admin
from gateway.services.account_service import AccountService, account_to_dict
from gateway.services.scheduler import get_scheduler
import logging

router = APIRouter(dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)


class AdminUpdateRequest(BaseModel):
    displayName: Optional[str] = None
    contactEmail: Optional[str] = None
    dailyLimit: Optional[int] = Field(None, gt=0)
    expiryDays: Optional[int] = Field(None, gt=0, description="Days to add to the current expiry")


@router.get("/users")
def list_users(service: AccountService = Depends(get_account_service)):
    today = date.today()
    accounts = service.list_accounts()
    logger.info(f"list_users: Success - count: {len(accounts)}")
    return success([account_to_dict(account, today) for account in accounts])


@router.get("/users/telegram/{channel_id}")
def get_user_by_channel(channel_id: str, service: AccountService = Depends(get_account_service)):
    account = service.get_by_channel_id(channel_id)
    return success(account_to_dict(account, date.today(), include_api_key=True))


@router.put("/users/telegram/{channel_id}")
def update_user_by_channel(
    channel_id: str,
    body: AdminUpdateRequest,
    service: AccountService = Depends(get_account_service),
):
    account = service.admin_update(
        channel_id,
        display_name=body.displayName,
        contact_email=body.contactEmail,
        daily_limit=body.dailyLimit,
        expiry_days=body.expiryDays,
    )
    return success(account_to_dict(account, date.today()), message="User updated successfully")


@router.post("/users/reset-daily/{channel_id}")
def reset_daily(channel_id: str, service: AccountService = Depends(get_account_service)):
    service.reset_daily(channel_id)
    return success(message="Daily requests reset successfully")


@router.get("/stats/api")
def api_stats(service: AccountService = Depends(get_account_service)):
    return success(service.get_stats().to_dict())


@router.get("/stats/users/count")
def users_count(service: AccountService = Depends(get_account_service)):
    return success({"totalUsers": service.count_accounts()})


@router.post("/jobs/{job_name}/run")
async def run_job(job_name: str):
    """Run a scheduled job immediately (duplicates notices already sent today)"""
    logger.info(f"run_job: Entry - {job_name}")
    result = await get_scheduler().run_job(job_name)
    return success(result.to_dict())
