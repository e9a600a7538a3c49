"""Schemas and scaling rules for transcoding.

Resolution tiers map to fixed target dimensions. Targets are never larger
than the source and always even, as required by common video codecs.
"""

from enum import Enum

from pydantic import BaseModel, Field

from pavilion.core.exceptions import ProcessingError


class Resolution(str, Enum):
    """Named resolution tiers."""
    RES_720P = "720p"
    RES_480P = "480p"
    RES_360P = "360p"
    ORIGINAL = "original"


# Resolution dimensions mapping; ORIGINAL passes the source dimensions through
RESOLUTION_DIMENSIONS = {
    Resolution.RES_720P: (1280, 720),
    Resolution.RES_480P: (854, 480),
    Resolution.RES_360P: (640, 360),
}

MIN_DIMENSION = 2


class VideoMetadata(BaseModel):
    """Technical metadata extracted from a media file."""
    duration: float = Field(default=0.0, ge=0, description="Duration in seconds")
    width: int = Field(..., ge=0)
    height: int = Field(..., ge=0)
    format: str = Field(default="", description="Container format name")
    video_codec: str = ""
    audio_codec: str = ""
    bitrate: int = Field(default=0, ge=0, description="Overall bitrate in bps")


def parse_resolution(value: str) -> Resolution:
    """Resolve a tier name to a Resolution.

    Raises:
        ProcessingError: If the tier is not supported
    """
    try:
        return Resolution(value)
    except ValueError:
        raise ProcessingError(f"Unsupported resolution: {value}")


def _make_even(value: int, bound: int) -> int:
    if value % 2 != 0:
        value = value + 1 if value + 1 <= bound else value - 1
    return max(value, MIN_DIMENSION)


def compute_target_dimensions(
    resolution: Resolution | str,
    source_width: int,
    source_height: int,
) -> tuple[int, int]:
    """Compute output dimensions for a tier without upscaling.

    When the tier exceeds the source in either dimension, the target is
    recomputed from the source aspect ratio: landscape sources cap the width
    and derive the height, portrait and square sources cap the height and
    derive the width. Odd results are incremented, or decremented when the
    increment would exceed the source.

    Args:
        resolution: Tier name or Resolution
        source_width: Source frame width
        source_height: Source frame height

    Returns:
        (width, height) tuple

    Raises:
        ProcessingError: If the tier is unknown or the source has no frame size
    """
    tier = resolution if isinstance(resolution, Resolution) else parse_resolution(resolution)

    if source_width <= 0 or source_height <= 0:
        raise ProcessingError(
            f"Invalid source dimensions: {source_width}x{source_height}"
        )

    if tier == Resolution.ORIGINAL:
        width, height = source_width, source_height
    else:
        width, height = RESOLUTION_DIMENSIONS[tier]

    if width > source_width or height > source_height:
        if source_width > source_height:
            width = min(width, source_width)
            height = (source_height * width) // source_width
        else:
            height = min(height, source_height)
            width = (source_width * height) // source_height

    return _make_even(width, source_width), _make_even(height, source_height)


def format_dimensions(width: int, height: int) -> str:
    """Format dimensions as the encoder's WxH size argument."""
    return f"{width}x{height}"
