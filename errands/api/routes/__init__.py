"""
API Routes
"""
from fastapi import APIRouter

from errands.api.routes.posts import router as posts_router
from errands.api.routes.balance import router as balance_router
from errands.api.routes.admin import router as admin_router
from errands.api.routes.system import router as system_router

router = APIRouter()

router.include_router(posts_router, prefix="/posts", tags=["Posts"])
router.include_router(balance_router, prefix="/balance", tags=["Balance"])
router.include_router(admin_router, prefix="/admin", tags=["Admin"])
router.include_router(system_router, prefix="/system", tags=["System"])
