from .admin import router as admin_router
from .profile import router as profile_router

__all__ = [
    'admin_router',
    'profile_router',
]
