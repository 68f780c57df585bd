"""
API route modules.
"""

from .diagnostics import router as diagnostics_router
from .feeds import router as feeds_router
from .misc import router as misc_router
from .posts import router as posts_router

__all__ = [
    "diagnostics_router",
    "feeds_router",
    "misc_router",
    "posts_router",
]
