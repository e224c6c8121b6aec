"""REST API module for PipaPal.

This module provides HTTP endpoints for:
- Registration, login and user profiles
- Requesting, claiming and completing waste collections
- The recyclable materials marketplace
- Impact dashboards, badges and activities
- Chat between users and real-time updates via WebSocket
- Eco tips, feedback and the recycling centre directory
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthManager
from config import settings_conf
from database import close as db_close, init_db
from ecotips import EcoTipGenerator
from materials import MaterialsManager
from notifications import ConnectionRegistry
from pickups import CollectionManager
from storage import DatabaseStorage, Storage, create_storage

# Configure logging
logging.basicConfig(
    level=settings_conf.get('log_level', 'INFO'),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render every HTTP error as ``{"message": detail}``."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report request validation failures as 400 with field level detail."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "message": "Validation failed",
            "errors": jsonable_encoder(exc.errors())
        }
    )


def create_app(
    storage: Optional[Storage] = None,
    registry: Optional[ConnectionRegistry] = None,
    settings: Optional[Dict[str, Any]] = None
) -> FastAPI:
    """Build the application and wire its services onto ``app.state``.

    Args:
        storage: Storage backend. Defaults to the one named by the settings.
        registry: WebSocket connection registry. A new one is created if omitted.
        settings: Settings dictionary. Defaults to ``settings.conf``.
    """
    settings = settings if settings is not None else settings_conf
    storage = storage if storage is not None else create_storage(settings)
    registry = registry if registry is not None else ConnectionRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown events."""
        logger.info("Initializing API...")
        if isinstance(storage, DatabaseStorage):
            await init_db(settings.get('db_url'))
        await storage.initialize()

        yield

        logger.info("Shutting down API...")
        await storage.close()
        if isinstance(storage, DatabaseStorage):
            await db_close()

    app = FastAPI(
        title="PipaPal API",
        description="REST API for the PipaPal waste collection platform",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.state.settings = settings
    app.state.storage = storage
    app.state.registry = registry
    app.state.auth = AuthManager(storage, settings)
    app.state.collections = CollectionManager(storage, registry)
    app.state.materials = MaterialsManager(storage, registry)
    app.state.ecotips = EcoTipGenerator(settings)

    # Import and include all routers
    from .auth import router as auth_router
    from .chat import router as chat_router
    from .collections import router as collections_router
    from .ecotips import router as ecotips_router
    from .feedback import router as feedback_router
    from .impact import router as impact_router
    from .materials import router as materials_router
    from .recycling_centers import router as recycling_centers_router
    from .websockets import router as websocket_router

    app.include_router(auth_router)
    app.include_router(collections_router)
    app.include_router(impact_router)
    app.include_router(materials_router)
    app.include_router(chat_router)
    app.include_router(ecotips_router)
    app.include_router(feedback_router)
    app.include_router(recycling_centers_router)
    app.include_router(websocket_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()

__all__ = ['app', 'create_app']
