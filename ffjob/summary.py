"""Reduce a probe document to the handful of values a job needs."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import timedelta

from ffjob.errors import SummaryError
from ffjob.probe import Probe


@dataclass
class Summary:
    duration: timedelta = timedelta()
    has_video: bool = False
    has_audio: bool = False
    width: int = 0
    height: int = 0


def parse_duration(value: str) -> timedelta:
    """
    Parse an ffprobe duration such as ``"35.968000"`` (seconds).

    An empty string means "no duration" and parses to zero.

    Raises:
        SummaryError: If value is not a finite number
    """
    if value == "":
        return timedelta()
    try:
        seconds = float(value)
    except ValueError as e:
        raise SummaryError(f"invalid duration {value!r}") from e
    if not math.isfinite(seconds):
        raise SummaryError(f"invalid duration {value!r}")
    frac, whole = math.modf(seconds)
    return timedelta(seconds=int(whole), microseconds=round(frac * 1e6))


def parse_summary(probe: Probe) -> Summary:
    """
    Summarize probe.

    The duration is the longest stream duration; when no stream reports one
    the container (format) duration is used instead.
    """
    summary = Summary()
    for stream in probe.streams:
        if stream.duration:
            duration = parse_duration(stream.duration)
            if duration > summary.duration:
                summary.duration = duration
        if stream.codec_type == "video":
            summary.has_video = True
            summary.width = stream.width
            summary.height = stream.height
        elif stream.codec_type == "audio":
            summary.has_audio = True
    if not summary.duration:
        summary.duration = parse_duration(probe.format.duration)
    return summary
