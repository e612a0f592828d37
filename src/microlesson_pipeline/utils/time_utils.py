"""
Time utility functions for the micro-lesson pipeline.
"""

import re

_ISO8601_DURATION = re.compile(
    r'^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$'
)


def parse_iso8601_duration(duration: str) -> float:
    """
    Parse an ISO-8601 duration such as ``PT1H2M30S`` to seconds.

    Args:
        duration: Duration string as returned by the YouTube Data API

    Returns:
        Duration in seconds
    """
    match = _ISO8601_DURATION.match((duration or "").strip())
    if not match or duration.strip() in ("P", "PT"):
        raise ValueError(f"Invalid ISO-8601 duration: {duration}")

    parts = {k: float(v) if v else 0.0 for k, v in match.groupdict().items()}
    return parts["days"] * 86400 + parts["hours"] * 3600 + parts["minutes"] * 60 + parts["seconds"]


def ffmpeg_time(seconds: float) -> str:
    """Render seconds as an ffmpeg ``-ss``/``-t`` argument."""
    return f"{max(0.0, seconds):.3f}"
