"""
ffmpeg progress subsystem.

This package provides the progress protocol decoder and its two transports:
- ProgressAssembler: turns ``key=value`` lines into ProgressRecord values
- ProgressPipe: os.pipe() transport read by the supervisor
- ProgressListener: local HTTP transport
"""

from ffjob.progress.protocol import ProgressAssembler, ProgressLine, ProgressRecord
from ffjob.progress.pipe import ClosedPipeError, ProgressPipe
from ffjob.progress.listener import ProgressListener
