from __future__ import annotations

from app.api.routes.health import router as health_router
from app.api.routes.sanitize import router as sanitize_router

__all__ = ["health_router", "sanitize_router"]
