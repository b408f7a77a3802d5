"""
lidmap API Routes Package.

Example:
    from api.routes import lid_router

    app.include_router(lid_router)
"""

from api.routes.lid import router as lid_router


__all__ = [
    "lid_router",
]
