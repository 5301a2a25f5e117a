# API module
from .endpoints import admin_router, router

__all__ = ["admin_router", "router"]
