"""
Admin / observability endpoints
===============================

GET   /api/v1/admin/health               -- simple health check
PATCH /api/v1/admin/trucks/{truck_id}/rc -- approve or reject a truck's RC
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.api.dependencies import get_current_user, get_db
from loadmatch.api.middleware import limiter
from loadmatch.api.schemas import HealthResponse, RCVerifyRequest, TruckResponse
from loadmatch.config import settings
from loadmatch.infrastructure.models import UserModel
from loadmatch.services.listings import ListingService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.patch(
    "/trucks/{truck_id}/rc",
    response_model=TruckResponse,
    summary="Verify a truck's registration certificate",
)
@limiter.limit(settings.rate_limit)
async def verify_truck_rc(
    request: Request,
    truck_id: int,
    body: RCVerifyRequest,
    user: UserModel = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).verify_rc(user, truck_id, body.status)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
