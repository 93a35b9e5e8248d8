from fastapi import APIRouter
from app.modules.docchat.api.router import v1 as docchat_router
from app.modules.docchat.api.router import admin as admin_router

router = APIRouter()
router.include_router(docchat_router)
router.include_router(admin_router)
