"""FFmpeg transcoding utilities.

MetadataProbe wraps ffprobe; FFmpegTranscoder encodes one resolution tier
per call, capping the target to the source so nothing is upscaled.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from pavilion.core.exceptions import ProcessingError
from pavilion.modules.transcoding.process import ManagedProcess
from pavilion.modules.transcoding.schemas import (
    RESOLUTION_DIMENSIONS,
    Resolution,
    VideoMetadata,
    compute_target_dimensions,
    format_dimensions,
    parse_resolution,
)


@dataclass
class FFmpegConfig:
    """Configuration for FFmpeg transcoding."""
    ffmpeg_path: str = "ffmpeg"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    preset: str = "fast"
    timeout: Optional[float] = None


@dataclass
class TranscodeOutput:
    """Result of a transcoding operation."""
    output_path: str
    resolution: str
    width: int
    height: int
    file_size: int


def _to_float(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_probe_output(raw: bytes | str) -> VideoMetadata:
    """Parse ffprobe JSON output into VideoMetadata.

    Args:
        raw: ffprobe stdout (``-print_format json -show_format -show_streams``)

    Returns:
        VideoMetadata for the first video stream

    Raises:
        ProcessingError: If the output is not JSON or has no video stream
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProcessingError("Failed to parse ffprobe output", cause=e)

    if not isinstance(data, dict):
        raise ProcessingError("Unexpected ffprobe output")

    streams = data.get("streams") or []
    fmt = data.get("format") or {}

    video_stream = next(
        (s for s in streams if s.get("codec_type") == "video"), None
    )
    if video_stream is None:
        raise ProcessingError("No video stream found")

    audio_stream = next(
        (s for s in streams if s.get("codec_type") == "audio"), None
    )

    return VideoMetadata(
        duration=max(_to_float(fmt.get("duration")), 0.0),
        width=max(_to_int(video_stream.get("width")), 0),
        height=max(_to_int(video_stream.get("height")), 0),
        format=fmt.get("format_name", "") or "",
        video_codec=video_stream.get("codec_name", "") or "",
        audio_codec=(audio_stream or {}).get("codec_name", "") or "",
        bitrate=max(_to_int(fmt.get("bit_rate")), 0),
    )


class MetadataProbe:
    """Extracts technical metadata with ffprobe."""

    def __init__(
        self,
        ffprobe_path: str = "ffprobe",
        timeout: Optional[float] = 30.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings, logger: Optional[logging.Logger] = None) -> "MetadataProbe":
        return cls(
            ffprobe_path=settings.FFPROBE_PATH,
            timeout=settings.FFPROBE_TIMEOUT_SECONDS,
            logger=logger,
        )

    def build_probe_command(self, input_path: str) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            input_path,
        ]

    async def get_metadata(self, input_path: str) -> VideoMetadata:
        """Get video metadata using ffprobe.

        Args:
            input_path: Path to the media file

        Returns:
            VideoMetadata

        Raises:
            ProcessingError: If the file is missing, ffprobe fails or times
                out, or the output cannot be parsed
        """
        if not os.path.isfile(input_path):
            raise ProcessingError(f"Input file not found: {input_path}")

        process = ManagedProcess(
            self.build_probe_command(input_path),
            capture_stdout=True,
            timeout=self.timeout,
            logger=self.logger,
        )
        result = await process.run()

        if not result.succeeded:
            self.logger.warning(
                f"ffprobe exited with code {result.returncode} for {input_path}: "
                f"{result.diagnostics()}"
            )
            raise ProcessingError(
                f"ffprobe exited with code {result.returncode}"
            )

        return parse_probe_output(result.stdout)


class FFmpegTranscoder:
    """FFmpeg-based video transcoder for the named resolution tiers."""

    def __init__(
        self,
        config: Optional[FFmpegConfig] = None,
        probe: Optional[MetadataProbe] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize transcoder.

        Args:
            config: Encoder settings
            probe: Probe used when the caller does not supply source metadata
            logger: Logger instance
        """
        self.config = config or FFmpegConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.probe = probe or MetadataProbe(logger=self.logger)

    @classmethod
    def from_settings(
        cls,
        settings,
        probe: Optional[MetadataProbe] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "FFmpegTranscoder":
        config = FFmpegConfig(
            ffmpeg_path=settings.FFMPEG_PATH,
            video_codec=settings.FFMPEG_VIDEO_CODEC,
            audio_codec=settings.FFMPEG_AUDIO_CODEC,
            preset=settings.FFMPEG_PRESET,
            timeout=settings.FFMPEG_TIMEOUT_SECONDS,
        )
        return cls(
            config=config,
            probe=probe or MetadataProbe.from_settings(settings, logger=logger),
            logger=logger,
        )

    def build_transcode_command(
        self,
        input_path: str,
        output_path: str,
        width: int,
        height: int,
    ) -> list[str]:
        """Build FFmpeg command for transcoding.

        Returns:
            FFmpeg command as list of arguments
        """
        return [
            self.config.ffmpeg_path,
            "-i", input_path,
            "-c:v", self.config.video_codec,
            "-c:a", self.config.audio_codec,
            "-s", format_dimensions(width, height),
            "-preset", self.config.preset,
            "-y",  # Overwrite output
            output_path,
        ]

    async def transcode(
        self,
        input_path: str,
        output_path: str,
        resolution: Resolution | str,
        source: Optional[VideoMetadata] = None,
    ) -> TranscodeOutput:
        """Transcode video to a resolution tier.

        Args:
            input_path: Source media file
            output_path: Destination file, overwritten if present
            resolution: Tier name
            source: Source metadata; probed from input_path when omitted

        Returns:
            TranscodeOutput with the final dimensions and output size

        Raises:
            ProcessingError: For unknown tiers, encoder failure, or a missing
                or empty output file
        """
        tier = parse_resolution(resolution) if isinstance(resolution, str) else resolution

        if source is None:
            source = await self.probe.get_metadata(input_path)

        width, height = compute_target_dimensions(tier, source.width, source.height)

        if (width, height) != RESOLUTION_DIMENSIONS.get(tier, (source.width, source.height)):
            self.logger.info(
                f"Skipping upscale for {tier.value}: "
                f"source {source.width}x{source.height}, target {width}x{height}"
            )

        cmd = self.build_transcode_command(input_path, output_path, width, height)
        self.logger.info(
            f"Starting transcode to {tier.value} ({width}x{height})",
            extra={"command": " ".join(cmd)},
        )

        process = ManagedProcess(cmd, timeout=self.config.timeout, logger=self.logger)
        result = await process.run()

        if not result.succeeded:
            self.logger.warning(
                f"ffmpeg exited with code {result.returncode} for {tier.value}: "
                f"{result.diagnostics()}"
            )
            raise ProcessingError(
                f"ffmpeg exited with code {result.returncode} for {tier.value}"
            )

        try:
            file_size = os.path.getsize(output_path)
        except OSError as e:
            raise ProcessingError(f"Output file not created: {output_path}", cause=e)

        if file_size == 0:
            raise ProcessingError(f"Output file is empty: {output_path}")

        return TranscodeOutput(
            output_path=output_path,
            resolution=tier.value,
            width=width,
            height=height,
            file_size=file_size,
        )

