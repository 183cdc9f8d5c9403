"""Conversion API schemas."""

from typing import Literal

from pydantic import BaseModel, Field
from tunelink import MAX_URL_LENGTH, LinkInfo, Platform


class ConversionRequest(BaseModel):
    """Request to convert a track or playlist link."""

    url: str = Field(
        min_length=1,
        max_length=MAX_URL_LENGTH,
        description="Track or playlist URL on a supported platform",
        examples=[
            "https://www.deezer.com/track/3135556",
            "https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M",
        ],
    )
    target_platforms: list[Platform] | None = Field(
        default=None,
        description="Platforms to convert to. Defaults to every configured platform.",
    )


class ParseRequest(BaseModel):
    """Request to parse a link without converting it."""

    url: str = Field(min_length=1, max_length=MAX_URL_LENGTH)
    target_platform: Platform | None = None


class ParseResponse(BaseModel):
    """A parsed link."""

    link: LinkInfo


class CancelTaskResponse(BaseModel):
    """Response when task cancellation is requested."""

    task_id: str
    message: Literal["Cancellation requested"] = "Cancellation requested"


class HealthResponse(BaseModel):
    status: str
    platforms: list[Platform] = Field(default_factory=list)
