"""API Package.

FastAPI server for the e-invoice consolidation engine.
"""

from api.server import create_app, app

__all__ = [
    "create_app",
    "app",
]
