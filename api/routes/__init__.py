"""API Routes Package."""

from api.routes import health, line_items

__all__ = [
    "health",
    "line_items",
]
