"""
FastAPI application factory.

Run with:
    uvicorn api.app:create_app --factory --port 8000
or `infoline serve`.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, is_dataclass
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database import DataStore
from infoline import __version__
from infoline.config import Settings, configure_logging, get_settings
from infoline.runtime import close_store, create_services, create_store
from services import (
    AuthenticationError,
    InfoLineError,
    NotFoundError,
    PermissionDeniedError,
    TransitionError,
    ValidationError,
)

from .router import router


logger = logging.getLogger(__name__)

ERROR_STATUS = [
    (AuthenticationError, 401),
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (ValidationError, 400),
    (TransitionError, 409),
]


def error_status(exc: InfoLineError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


async def infoline_error_handler(request: Request, exc: InfoLineError) -> JSONResponse:
    status = error_status(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")

    details = exc.details
    if isinstance(details, list):
        details = [asdict(d) if is_dataclass(d) else d for d in details]

    return JSONResponse(
        status_code=status,
        content=jsonable_encoder({"error": exc.code, "message": exc.message, "details": details}),
    )


def create_app(store: Optional[DataStore] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        store: Store to serve; when omitted one is created from settings at startup
        settings: Settings to use instead of the environment
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_store = None
        if app.state.services is None:
            owned_store = await create_store(settings)
            app.state.services = create_services(owned_store, settings)
        logger.info(f"İnfoLine API ready (storage: {type(app.state.services.store).__name__})")
        try:
            yield
        finally:
            if owned_store is not None:
                await close_store(owned_store)
                app.state.services = None

    application = FastAPI(
        title="İnfoLine API",
        version=__version__,
        description="School data collection and approval workflow",
        debug=settings.app.debug,
        lifespan=lifespan,
    )
    application.state.services = create_services(store, settings) if store is not None else None

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(InfoLineError, infoline_error_handler)
    application.include_router(router, prefix="/api")

    if store is None:
        configure_logging(settings.app.log_level)

    return application
