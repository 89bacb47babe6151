"""V1 API router aggregation."""

from fastapi import APIRouter

from app.api.v1.billing import router as billing_router
from app.api.v1.hooks import router as hooks_router
from app.api.v1.scans import router as scans_router
from app.api.v1.sync import router as sync_router
from app.api.v1.system import router as system_router
from app.api.v1.tenants import router as tenants_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(tenants_router)
v1_router.include_router(scans_router)
v1_router.include_router(sync_router)
v1_router.include_router(billing_router)
v1_router.include_router(hooks_router)
v1_router.include_router(system_router)
