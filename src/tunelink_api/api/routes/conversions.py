"""Conversion API endpoints.

Track links are converted inline. Playlist links start (or return) an
idempotent conversion task whose progress streams from /tasks/{id}/events.
"""

import asyncio

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from tunelink import EntityKind, TrackConversion

from tunelink_api.api.deps import AppDep, ConversionEngineDep, LinkParserDep
from tunelink_api.api.exceptions import ErrorResponse
from tunelink_api.core.models import Task
from tunelink_api.schemas.conversions import (
    ConversionRequest,
    ParseRequest,
    ParseResponse,
)

router = APIRouter(tags=["conversions"])


@router.post(
    "/conversions",
    responses={
        200: {"model": TrackConversion, "description": "Track converted"},
        202: {"model": Task, "description": "Playlist conversion task"},
        400: {"model": ErrorResponse, "description": "Unsupported link"},
        422: {"model": ErrorResponse, "description": "Link cannot be converted"},
        502: {"model": ErrorResponse, "description": "Source platform failed"},
    },
)
async def create_conversion(
    request: ConversionRequest,
    parser: LinkParserDep,
    engine: ConversionEngineDep,
    app: AppDep,
) -> JSONResponse:
    """Convert a track, or start converting a playlist.

    Resubmitting a playlist with the same targets returns the existing task.
    """
    link = await asyncio.to_thread(parser.parse, request.url, app=app.id)

    if link.entity == EntityKind.TRACK:
        conversion = await engine.convert_track(link, request.target_platforms, app)
        return JSONResponse(content=conversion.model_dump(mode="json"))

    task = await engine.convert_playlist(link, request.target_platforms, app)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED, content=task.model_dump(mode="json")
    )


@router.post(
    "/links/parse",
    responses={400: {"model": ErrorResponse, "description": "Unsupported link"}},
)
async def parse_link(
    request: ParseRequest, parser: LinkParserDep, app: AppDep
) -> ParseResponse:
    """Parse a link into its platform, entity kind and ID."""
    link = await asyncio.to_thread(
        parser.parse,
        request.url,
        app=app.id,
        target_platform=request.target_platform,
    )
    return ParseResponse(link=link)
