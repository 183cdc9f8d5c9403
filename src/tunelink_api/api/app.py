"""FastAPI application factory and configuration."""

import asyncio
import logging
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from importlib.metadata import PackageNotFoundError, version
from typing import Any

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from rich.console import Console
from rich.logging import RichHandler
from sqlalchemy import Engine
from tunelink import LinkParser, Matcher

from tunelink_api.api.container import Services
from tunelink_api.api.exceptions import register_exception_handlers
from tunelink_api.api.routes import conversions, health, tasks
from tunelink_api.db import SqlTaskStore, create_db_engine, init_db
from tunelink_api.schemas.events import conversion_event_adapter
from tunelink_api.services.adapters import AdapterProvider
from tunelink_api.services.conversion import ConversionEngine
from tunelink_api.services.event_emitter import (
    EventEmitter,
    EventStream,
    WebhookRegistry,
)
from tunelink_api.services.protocols import TaskStore
from tunelink_api.services.task_tracker import TaskTracker
from tunelink_api.settings import Settings, get_settings


def setup_logging() -> None:
    """Configure logging with Rich handler for all loggers including uvicorn."""
    settings = get_settings()
    console = Console(force_terminal=True)

    handler = RichHandler(
        console=console, rich_tracebacks=True, show_path=False, markup=True
    )
    handler.setFormatter(logging.Formatter("%(name)s - %(message)s", datefmt="[%X]"))

    # Configure root logger
    logging.root.handlers = [handler]
    logging.root.setLevel(settings.log_level)

    # Configure uvicorn loggers to use Rich
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False


logger = logging.getLogger(__name__)


def create_services(
    settings: Settings,
    store: TaskStore,
    engine: Engine | None = None,
    adapters: AdapterProvider | None = None,
    link_parser: LinkParser | None = None,
    webhooks: WebhookRegistry | None = None,
) -> Services:
    """Create all application services with proper dependency wiring.

    Args:
        settings: Application settings.
        store: Backing task store.
        engine: Database engine behind the store, disposed at shutdown.
        adapters: Adapter provider. Built from settings if not provided.
        link_parser: Link parser. Creates one if not provided.
        webhooks: Webhook registry. Creates one if not provided.

    Returns:
        Services container with all application services.
    """
    tracker = TaskTracker(
        store,
        clock=lambda: datetime.now(UTC),
        id_generator=lambda: str(uuid.uuid4()),
        max_retries=settings.max_task_retries,
    )

    # SSE subscribers see every event the emitter publishes
    event_stream = EventStream()
    emitter = EventEmitter([event_stream])

    adapters = adapters or AdapterProvider(settings.api_config)
    webhooks = webhooks or WebhookRegistry()

    conversion_engine = ConversionEngine(
        adapters,
        tracker,
        emitter,
        matcher=Matcher(settings.matcher_config),
        config=settings.conversion_config,
        webhooks=webhooks,
    )

    return Services(
        tracker=tracker,
        emitter=emitter,
        event_stream=event_stream,
        conversion_engine=conversion_engine,
        adapters=adapters,
        webhooks=webhooks,
        link_parser=link_parser or LinkParser(),
        default_app=settings.default_app,
        engine=engine,
    )


def create_api_router() -> APIRouter:
    """Create the API router with all routes under /api prefix."""
    api_router = APIRouter(prefix="/api")
    api_router.include_router(health.router)
    api_router.include_router(conversions.router)
    api_router.include_router(tasks.router)
    return api_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()
    logger.info("Starting application...")

    # Tests install their own services before startup
    services: Services | None = getattr(app.state, "services", None)
    if services is None:
        engine = create_db_engine(settings.db_path)
        await asyncio.to_thread(init_db, engine)
        logger.info("Task database ready at %s", settings.db_path)

        services = create_services(settings, SqlTaskStore(engine), engine=engine)
        app.state.services = services
    logger.info(
        "Services initialized, default app platforms: %s",
        ", ".join(services.default_app.configured_platforms),
    )

    # No pipeline runs yet, so unfinished tasks belong to a previous process
    await asyncio.to_thread(services.tracker.fail_interrupted)

    yield

    # Cancel running conversions, flush webhooks, release clients
    await services.close()


def custom_openapi(app: FastAPI) -> dict[str, Any]:
    """Generate OpenAPI schema with the SSE event union included.

    SSE event schemas aren't auto-discovered by FastAPI since they're
    returned via StreamingResponse. This function injects them into
    the OpenAPI schema so client types can be generated.
    """
    if app.openapi_schema:
        return app.openapi_schema

    schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    json_schema = conversion_event_adapter.json_schema(
        ref_template="#/components/schemas/{model}"
    )
    defs = json_schema.pop("$defs", {})
    schema["components"]["schemas"].update(defs)
    schema["components"]["schemas"]["ConversionEvent"] = json_schema

    path = "/api/tasks/{task_id}/events"
    if path in schema["paths"]:
        schema["paths"][path]["get"]["responses"]["200"]["content"] = {
            "text/event-stream": {
                "schema": {"$ref": "#/components/schemas/ConversionEvent"},
            }
        }

    app.openapi_schema = schema
    return schema


def _package_version() -> str:
    try:
        return version("tunelink")
    except PackageNotFoundError:
        return "0.0.0"


def create_app(services: Services | None = None) -> FastAPI:
    """Create and configure the main FastAPI application.

    Args:
        services: Pre-built services. When omitted, services are created
            during startup from settings.
    """
    settings = get_settings()

    app = FastAPI(
        title="tunelink",
        description="Music link conversion API",
        version=_package_version(),
        lifespan=lifespan,
        debug=settings.debug,
    )
    if services is not None:
        app.state.services = services

    # Custom OpenAPI schema to include SSE event types
    app.openapi = lambda: custom_openapi(app)  # type: ignore[method-assign]

    # Register exception handlers
    register_exception_handlers(app)

    # CORS middleware (type ignore needed due to Starlette typing limitations)
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API routes under /api prefix
    app.include_router(create_api_router())

    return app


setup_logging()

# Create app instance for uvicorn
app = create_app()
