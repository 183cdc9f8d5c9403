"""Services container for dependency injection.

This module provides the Services container and dependency injection
utilities for accessing services from FastAPI routes via app.state.
"""

import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy import Engine
from tunelink import DeveloperApp, LinkParser

from tunelink_api.services.adapters import AdapterProvider
from tunelink_api.services.conversion import ConversionEngine
from tunelink_api.services.event_emitter import (
    EventEmitter,
    EventStream,
    WebhookRegistry,
)
from tunelink_api.services.task_tracker import TaskTracker

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Container for application services with proper lifecycle management.

    All services are created at startup and cleaned up at shutdown.
    Stored in FastAPI's app.state for proper request scoping.
    """

    tracker: TaskTracker
    emitter: EventEmitter
    event_stream: EventStream
    conversion_engine: ConversionEngine
    adapters: AdapterProvider
    webhooks: WebhookRegistry
    link_parser: LinkParser
    default_app: DeveloperApp
    engine: Engine | None = None

    def apps(self) -> dict[str, DeveloperApp]:
        """Apps known to the service, by ID."""
        return {self.default_app.id: self.default_app}

    async def close(self) -> None:
        """Clean up resources. Called at application shutdown."""
        await self.conversion_engine.shutdown()
        await self.webhooks.aclose()
        self.adapters.close()
        self.link_parser.close()
        if self.engine is not None:
            self.engine.dispose()
        logger.info("Services cleaned up")


def get_services(request: Request) -> Services:
    """Get services from request's app state (dependency injection).

    Args:
        request: FastAPI request object.

    Returns:
        Services container.

    Raises:
        RuntimeError: If services not initialized (app not running).
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized. Is the app running?")
    return services
