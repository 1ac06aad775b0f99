"""
API v1 package initialization.

Collects the v1 routers mounted by the application under the API prefix.
"""

from printease.api.v1.admin import router as admin_router
from printease.api.v1.auth import router as auth_router
from printease.api.v1.batches import router as batches_router
from printease.api.v1.chat import router as chat_router
from printease.api.v1.dealer import router as dealer_router
from printease.api.v1.notifications import router as notifications_router
from printease.api.v1.orders import router as orders_router

ROUTERS = [
    auth_router,
    orders_router,
    chat_router,
    admin_router,
    dealer_router,
    notifications_router,
    batches_router,
]

__all__ = [
    "ROUTERS",
    "admin_router",
    "auth_router",
    "batches_router",
    "chat_router",
    "dealer_router",
    "notifications_router",
    "orders_router",
]
