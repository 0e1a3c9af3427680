"""
ffjob: supervise ffmpeg jobs and ffprobe inspections.

This package provides:
- Runner: probes inputs with ffprobe and runs ffmpeg with live progress
- JobError / is_invalid_input: failures carrying the tool's last stderr lines
- ProgressListener: HTTP endpoint for ffmpeg ``-progress <url>`` delivery
"""

from ffjob.errors import (
    FFJobError,
    JobCancelledError,
    JobError,
    MalformedMetadataError,
    ProbeError,
    SummaryError,
    is_invalid_input,
)
from ffjob.probe import Probe
from ffjob.progress.listener import ProgressListener
from ffjob.runner import JobState, Progress, RunOptions, Runner
from ffjob.summary import Summary, parse_summary

__version__ = "0.1.0"
