from .clerk_sync import router as clerk_sync_router

__all__ = [
    "clerk_sync_router",
]
