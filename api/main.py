"""
lidmap - WhatsApp contact identity resolution
FastAPI Application Entry Point

Run with:

    uvicorn api.main:app --host 0.0.0.0 --port 8000

The WhatsApp bridge pushes contact/message events to /api/lid/events/* and
serves the chat directory used by backfill scans.
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.routes import lid_router
from api.services.bridge_client import BridgeDirectoryClient
from api.services.contact_store import ContactStore, NotInitializedError
from api.services.lid_mapping import LidMappingService
from config.seed_config import load_seed_contacts
from config.settings import settings

logger = logging.getLogger(__name__)


def build_service() -> LidMappingService:
    """Construct the service from settings."""
    store = ContactStore(
        settings.contacts_file,
        backup_path=settings.backup_path or None,
        backup_keep=settings.backup_keep,
    )
    return LidMappingService(
        store,
        directory=BridgeDirectoryClient(settings.bridge_url, timeout=settings.bridge_timeout),
        seeds=load_seed_contacts(settings.resolved_seed_file),
        auto_save=settings.auto_save,
        save_timeout=settings.save_timeout,
        message_limit=settings.scan_message_limit,
        chat_delay=settings.scan_chat_delay,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    if app.state.lid_service is None:
        app.state.lid_service = build_service()

    service: LidMappingService = app.state.lid_service
    # Raises SnapshotLoadError on a corrupt snapshot
    await service.start()
    logger.info("LID mapping service started")

    yield

    await service.close()
    logger.info("LID mapping service stopped")


def create_app(service: Optional[LidMappingService] = None) -> FastAPI:
    """Create the FastAPI app, optionally around a prebuilt service."""
    app = FastAPI(
        title="lidmap",
        description="WhatsApp contact identity resolution (phone <-> LID <-> push name)",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.lid_service = service

    @app.exception_handler(NotInitializedError)
    async def not_initialized_handler(request: Request, exc: NotInitializedError):
        return JSONResponse(status_code=503, content={"success": False, "error": str(exc)})

    @app.get("/health")
    async def health(request: Request):
        svc = request.app.state.lid_service
        ready = bool(svc and svc.is_initialized)
        return {"status": "healthy" if ready else "starting", "initialized": ready}

    app.include_router(lid_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("api.main:app", host=settings.host, port=settings.port)
