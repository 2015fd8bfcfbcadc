# Routers package
from . import auth_router
from . import admin_router

__all__ = [
    "auth_router",
    "admin_router",
]
