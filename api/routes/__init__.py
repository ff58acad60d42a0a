"""API Routes Package."""

from api.routes import health, consolidation

__all__ = [
    "health",
    "consolidation",
]
