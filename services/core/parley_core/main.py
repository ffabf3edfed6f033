"""Parley Core API - Main Application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from parley_core.api.middleware.request_logging import RequestLoggingMiddleware
from parley_core.api.routes import chats as chats_routes
from parley_core.api.routes import integrations as integrations_routes
from parley_core.api.routes import messages as messages_routes
from parley_core.api.routes import sync_status as sync_status_routes
from parley_core.api.routes import user_platform as user_platform_routes
from parley_core.config import get_settings
from parley_core.observability import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="parley-core",
    )
    app.state.settings = settings
    yield
    # Shutdown


app = FastAPI(
    title="Parley Core API",
    description="Multi-platform message synchronization and delivery tracking",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request ids, access logs and the catch-all 500
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


# Include API routers
app.include_router(chats_routes.router)
app.include_router(integrations_routes.router)
app.include_router(messages_routes.router)
app.include_router(sync_status_routes.router)
app.include_router(user_platform_routes.router)


@app.get("/healthz")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"ok": True, "service": "parley-core"}
