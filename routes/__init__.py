"""
API route modules.
"""

from routes.versioning import router as versioning_router

__all__ = [
    "versioning_router",
]
