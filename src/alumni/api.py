from fastapi import APIRouter

from alumni.modules.registrations import router as registrations_router
from alumni.modules.registrations.admin_router import router as admin_registrations_router

api_router = APIRouter()

api_router.include_router(registrations_router, prefix="/registrations", tags=["Registrations"])

api_router.include_router(
    admin_registrations_router,
    prefix="/admin/registrations",
    tags=["Admin - Registrations"],
)
