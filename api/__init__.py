"""API Package.

FastAPI server for the line-items service.
"""

from api.server import create_app, app

__all__ = [
    "create_app",
    "app",
]
