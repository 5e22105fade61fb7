"""
Video duration probing using FFprobe.

The prober only works on local file paths. Uploads arrive as in-memory
buffers and go straight to object storage, so the upload pipeline writes
a temp copy just for this step.

Why FFprobe:
- Industry standard, battle-tested
- Handles any container format we're likely to receive
- Available everywhere (including Docker)
"""

import asyncio
import json
import logging
import os
import subprocess
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class ProbeError(Exception):
    """Raised when a video's duration can't be determined."""
    pass


class DurationProber(Protocol):
    """Protocol for duration probing."""

    async def probe_duration(self, path: str) -> float:
        """Return the duration in seconds of the video at path."""
        ...


def parse_duration(ffprobe_output: str) -> float:
    """
    Pull the duration out of FFprobe's JSON output.

    Prefers the container (format) duration and falls back to the first
    video stream. FFprobe reports "N/A" for streams without timing info.
    """
    try:
        info = json.loads(ffprobe_output)
    except json.JSONDecodeError as e:
        raise ProbeError(f"Unreadable FFprobe output: {e}")

    candidates = [info.get("format", {}).get("duration")]
    for stream in info.get("streams", []):
        if stream.get("codec_type") == "video":
            candidates.append(stream.get("duration"))
            break

    for value in candidates:
        if value in (None, "", "N/A"):
            continue
        try:
            duration = float(value)
        except (TypeError, ValueError):
            continue
        if duration >= 0:
            return duration

    raise ProbeError("No duration found in video metadata")


class FFprobeDurationProber:
    """
    Duration prober backed by the ffprobe binary.

    subprocess.run is blocking, so it runs in a worker thread with a
    timeout; a hung ffprobe shouldn't hold a request forever.
    """

    def __init__(self, ffprobe_path: str = "ffprobe", timeout_seconds: float = 30.0):
        """
        Initialize prober.

        Args:
            ffprobe_path: Path to ffprobe binary (default assumes it's in PATH)
            timeout_seconds: Upper bound for a single probe
        """
        self._ffprobe = ffprobe_path
        self._timeout = timeout_seconds

        # verify ffprobe is available
        try:
            result = subprocess.run(
                [self._ffprobe, "-version"],
                capture_output=True,
                text=True,
                timeout=5
            )
            if result.returncode != 0:
                raise RuntimeError("FFprobe not working properly")
            logger.info("FFprobe duration prober initialized")
        except FileNotFoundError:
            raise RuntimeError(
                "FFprobe not found. Install with: apt-get install ffmpeg"
            )

    async def probe_duration(self, path: str) -> float:
        cmd = [
            self._ffprobe,
            "-v", "error",
            "-print_format", "json",
            "-show_entries", "format=duration:stream=codec_type,duration",
            path,
        ]

        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired:
            raise ProbeError(f"FFprobe timed out after {self._timeout:.0f}s")
        except OSError as e:
            raise ProbeError(f"FFprobe could not run: {e}")

        if result.returncode != 0:
            raise ProbeError(f"FFprobe failed: {result.stderr.strip()}")

        duration = parse_duration(result.stdout)

        logger.debug(
            "Probed video duration",
            extra={"path": path, "duration": duration}
        )

        return duration


class MockDurationProber:
    """
    Mock prober for local development without FFmpeg.

    Returns a fixed duration, but still insists the file exists so the
    upload pipeline's temp-file handling gets exercised.
    """

    def __init__(self, duration_seconds: float = 30.0):
        self._duration = duration_seconds
        logger.info("Initialized mock duration prober")

    async def probe_duration(self, path: str) -> float:
        if not os.path.exists(path):
            raise ProbeError(f"File not found: {path}")
        return self._duration


def create_duration_prober(
    mock_mode: bool = False,
    ffprobe_path: str = "ffprobe",
    timeout_seconds: float = 30.0,
    mock_duration_seconds: Optional[float] = None,
) -> DurationProber:
    """
    Factory function for duration prober.

    Args:
        mock_mode: If True, return mock prober (no FFmpeg required)

    Returns:
        DurationProber implementation
    """
    if mock_mode:
        if mock_duration_seconds is None:
            return MockDurationProber()
        return MockDurationProber(mock_duration_seconds)

    return FFprobeDurationProber(ffprobe_path, timeout_seconds)
