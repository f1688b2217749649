from fastapi import APIRouter
from gateway.api.v1.routes import member, quota, admin

api_router = APIRouter()

api_router.include_router(member.router, prefix="/member", tags=["member"])
api_router.include_router(quota.router, prefix="/quota", tags=["quota"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
