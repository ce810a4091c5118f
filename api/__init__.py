"""API Package.

FastAPI server for COA template assignment.
"""

from api.server import create_app

__all__ = [
    "create_app",
]
