"""
Public system information
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from errands.api.schemas import GCashInfo
from errands.db.database import get_db
from errands.domain.services.system_setting_service import SystemSettingService

router = APIRouter()


@router.get(
    "/gcash-info",
    response_model=GCashInfo,
    summary="GCash account for balance payments",
)
async def get_gcash_info(db: AsyncSession = Depends(get_db)):
    service = SystemSettingService(db)
    return await service.get_gcash_info()
