from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from gateway.core.envelope import success
from gateway.core.middleware import get_api_key, get_account_service
from gateway.core.rate_limiter import limiter, REGISTER_RATE_LIMIT
from gateway.services.account_service import AccountService, account_to_dict
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


class RegisterRequest(BaseModel):
    displayName: str = Field(..., min_length=1)
    contactEmail: str = Field(..., min_length=3)
    contactChannelId: str = Field(..., min_length=1, description="Telegram chat id")
    dailyLimit: Optional[int] = Field(None, gt=0)


class UpdateProfileRequest(BaseModel):
    displayName: Optional[str] = None
    contactEmail: Optional[str] = None
    contactChannelId: Optional[str] = None


class ExtendRequest(BaseModel):
    days: int = Field(..., gt=0)


class UpdateLimitRequest(BaseModel):
    dailyLimit: int = Field(..., gt=0)


@router.post("/register")
@limiter.limit(REGISTER_RATE_LIMIT)
def register(
    request: Request,
    body: RegisterRequest,
    service: AccountService = Depends(get_account_service),
):
    """Register an account and issue its API key (valid for the trial period)"""
    account = service.register(
        display_name=body.displayName,
        contact_email=body.contactEmail,
        contact_channel_id=body.contactChannelId,
        daily_limit=body.dailyLimit,
    )
    return success({"apiKey": account.api_key, "expiresAt": account.expires_at})


@router.get("/status")
def get_status(
    api_key: str = Depends(get_api_key),
    service: AccountService = Depends(get_account_service),
):
    """Account snapshot for the caller's key. Does not consume quota."""
    account = service.get_by_api_key(api_key)
    snapshot = account_to_dict(account, date.today())
    snapshot.pop("id")
    snapshot.pop("createdAt")
    return success(snapshot)


@router.put("/update")
def update_profile(
    body: UpdateProfileRequest,
    api_key: str = Depends(get_api_key),
    service: AccountService = Depends(get_account_service),
):
    service.update_profile(
        api_key,
        display_name=body.displayName,
        contact_email=body.contactEmail,
        contact_channel_id=body.contactChannelId,
    )
    return success(message="User updated successfully")


@router.post("/extend")
def extend_expiry(
    body: ExtendRequest,
    api_key: str = Depends(get_api_key),
    service: AccountService = Depends(get_account_service),
):
    account = service.extend_expiry(api_key, body.days)
    return success({"newExpiresAt": account.expires_at})


@router.post("/update-limit")
def update_limit(
    body: UpdateLimitRequest,
    api_key: str = Depends(get_api_key),
    service: AccountService = Depends(get_account_service),
):
    account = service.update_limit(api_key, body.dailyLimit)
    return success({"dailyLimit": account.daily_limit})
