"""
Video processing infrastructure.

Reads playback duration from local video files using FFprobe.
"""

from .prober import (
    DurationProber,
    FFprobeDurationProber,
    MockDurationProber,
    ProbeError,
    create_duration_prober,
)

__all__ = [
    "DurationProber",
    "FFprobeDurationProber",
    "MockDurationProber",
    "ProbeError",
    "create_duration_prober",
]
