"""FastAPI dependency injection factories.

This module provides type-safe dependency injection for FastAPI routes.
Dependencies are defined as Annotated types for clean, reusable injection.

Usage in routes:
    from tunelink_api.api.deps import ConversionEngineDep, AppDep

    @router.post("/conversions")
    async def convert(engine: ConversionEngineDep, app: AppDep) -> ...:
        ...
"""

import logging
from typing import Annotated

from fastapi import Depends, Header
from tunelink import DeveloperApp, LinkParser

from tunelink_api.api.container import Services, get_services
from tunelink_api.services.conversion import ConversionEngine
from tunelink_api.services.event_emitter import EventStream
from tunelink_api.services.task_tracker import TaskTracker
from tunelink_api.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# -- Settings --

SettingsDep = Annotated[Settings, Depends(get_settings)]

# -- Service dependencies (request-scoped via app.state) --

ServicesDep = Annotated[Services, Depends(get_services)]


def _get_tracker(services: ServicesDep) -> TaskTracker:
    """Get task tracker from services container."""
    return services.tracker


def _get_conversion_engine(services: ServicesDep) -> ConversionEngine:
    """Get conversion engine from services container."""
    return services.conversion_engine


def _get_event_stream(services: ServicesDep) -> EventStream:
    """Get SSE event stream from services container."""
    return services.event_stream


def _get_link_parser(services: ServicesDep) -> LinkParser:
    """Get link parser from services container."""
    return services.link_parser


TaskTrackerDep = Annotated[TaskTracker, Depends(_get_tracker)]
ConversionEngineDep = Annotated[ConversionEngine, Depends(_get_conversion_engine)]
EventStreamDep = Annotated[EventStream, Depends(_get_event_stream)]
LinkParserDep = Annotated[LinkParser, Depends(_get_link_parser)]

# -- Calling app --


def _get_app(
    services: ServicesDep,
    x_app_id: Annotated[str | None, Header()] = None,
) -> DeveloperApp:
    """Resolve the developer app from the X-App-Id header.

    Requests without the header, or naming an unknown app, run as the
    default app.
    """
    if x_app_id is None:
        return services.default_app
    app = services.apps().get(x_app_id)
    if app is None:
        logger.debug("Unknown app %s, using default app", x_app_id)
        return services.default_app
    return app


AppDep = Annotated[DeveloperApp, Depends(_get_app)]
