# HTTP Routes
# Session legs and registration CRUD

from .sessions import router as sessions_router
from .registrations import router as registrations_router

__all__ = [
    "sessions_router",
    "registrations_router",
]
