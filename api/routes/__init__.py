"""API Routes Package."""

from api.routes import health, orders, settings

__all__ = [
    "health",
    "orders",
    "settings",
]
