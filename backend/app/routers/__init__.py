"""Lead Allocation Engine - API Routers"""
from .accounts import router as accounts_router
from .admin import router as admin_router
from .scheduler import router as scheduler_router

__all__ = [
    "accounts_router",
    "admin_router",
    "scheduler_router",
]
