from .admin import router as admin_router
from .health import router as health_router
from .possibility import router as possibility_router

__all__ = ["admin_router", "health_router", "possibility_router"]
