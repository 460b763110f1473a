"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and the
credential store is reachable. The in-memory backend is always "ok".
"""

from fastapi import APIRouter
from sqlalchemy import text

from authcore import __version__
from authcore.config import settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health and store connectivity."""
    checks = {"server": "ok", "version": __version__, "store": "ok"}

    if settings.store_backend == "sql":
        from authcore.db.engine import get_engine

        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            checks["store"] = f"error: {e}"

    status = "healthy" if checks["store"] == "ok" else "degraded"
    return {"status": status, "store_backend": settings.store_backend, **checks}
