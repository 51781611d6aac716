"""
SignFlow - Main FastAPI Application
Backend for multi-recipient electronic signing of documents.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from signflow.config import get_cors_origins, get_settings
from signflow.dependencies import Services, build_services
from signflow.email import EmailService
from signflow.exceptions import (
    AppException,
    app_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from signflow.gcs import GCSStorage
from signflow.routers import health, positions, public_signing, recipients, tasks
from signflow.supabase_client import SupabaseRepository
from signflow.utils.logging import RequestIdMiddleware, get_logger, setup_logging

logger = get_logger(__name__)

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = app.state.services.settings if app.state.services else get_settings()
    setup_logging(
        environment=settings.environment,
        level=logging.DEBUG if settings.debug else logging.INFO,
    )
    logger.info(f"Starting SignFlow v{APP_VERSION} ({settings.environment})")

    if app.state.services is None:
        repository = await SupabaseRepository.connect(settings)
        app.state.services = build_services(
            settings=settings,
            repository=repository,
            storage=GCSStorage(settings),
            email_sender=EmailService(settings),
        )
    yield
    logger.info("Shutting down SignFlow")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    Passing `services` skips the connections made at startup, which is
    how the tests run the API against in-memory collaborators.
    """
    settings = services.settings if services else get_settings()

    app = FastAPI(
        title="SignFlow",
        description="""Backend service for multi-recipient electronic signing.

## Authentication

Owner endpoints accept either:

### 1. Google ID Token
`Authorization: Bearer <google_id_token>`

### 2. Admin Secret + User ID (server-to-server)
- `X-Admin-Secret`: Admin API secret
- `X-User-ID`: owner id (required with the admin secret)

Public signing endpoints under `/v1/public/sign/{token}` need no
authentication; the token is the credential.
""",
        version=APP_VERSION,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "tasks", "description": "Signing tasks, files and final documents"},
            {"name": "recipients", "description": "Recipients of a task"},
            {"name": "positions", "description": "Signature field placement"},
            {"name": "signing", "description": "Public signing flow (token-based)"},
            {"name": "health", "description": "Health check endpoints"},
        ],
    )
    app.state.services = services

    # Middleware
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Routers
    app.include_router(health.router)
    app.include_router(tasks.router)
    app.include_router(recipients.router)
    app.include_router(positions.router)
    app.include_router(public_signing.router)

    return app


app = create_app()
