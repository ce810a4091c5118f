"""API Routes Package."""

from api.routes import health, coa

__all__ = [
    "health",
    "coa",
]
