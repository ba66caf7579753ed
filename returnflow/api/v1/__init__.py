"""API v1 routers."""

from returnflow.api.v1.returns import router as returns_router

__all__ = ["returns_router"]
