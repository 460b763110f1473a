"""API route aggregation.

All routers registered here get mounted in main.py. Health and auth
routers are open; protected routes inside the auth router declare
their own role_protected() dependency.
"""

from fastapi import APIRouter

from authcore.api.auth import router as auth_router
from authcore.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
