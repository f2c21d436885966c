"""HTTP routes."""

from linkhop.api.redirect import router as redirect_router

__all__ = ["redirect_router"]
