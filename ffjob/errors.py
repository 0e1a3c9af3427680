"""
Exceptions raised by ffjob.

JobError is the failure shape shared by Runner.run and Runner.probe: it pairs
the underlying process failure with the last lines the tool wrote to stderr.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

# Diagnostic substrings that mean the input itself is unusable. Callers with
# their own list can pass it to is_invalid_input(markers=...).
INVALID_INPUT_MARKERS: Tuple[str, ...] = (
    "Invalid data found when processing input",
    "Non-monotonous DTS in output stream",
)


class FFJobError(Exception):
    """Base class for ffjob failures."""


class JobError(FFJobError):
    """
    External process failure with captured diagnostics.

    Attributes:
        cause: Underlying failure (CalledProcessError, OSError, JobCancelledError, ...)
        lines: Snapshot of the diagnostic buffer, oldest first
    """

    def __init__(self, cause: BaseException, lines: Iterable[str] = ()) -> None:
        self.cause = cause
        self.lines: Tuple[str, ...] = tuple(lines)
        super().__init__(cause, self.lines)
        self.__cause__ = cause

    def contains(self, substring: str) -> bool:
        """True if any diagnostic line contains substring."""
        return any(substring in line for line in self.lines)

    def __str__(self) -> str:
        if not self.lines:
            return str(self.cause)
        return "{}:\n{}".format(self.cause, "\n".join(f"  {line}" for line in self.lines))


class ProbeError(FFJobError):
    """Probing the input failed while preparing a run."""


class MalformedMetadataError(FFJobError):
    """ffprobe output could not be decoded as a metadata document."""


class SummaryError(FFJobError, ValueError):
    """A duration string in the metadata document is not a number."""


class JobCancelledError(FFJobError):
    """The job was cancelled before the process finished."""


def _chain(err: Optional[BaseException]) -> Iterable[BaseException]:
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__ or err.__context__


def find_job_error(err: Optional[BaseException]) -> Optional[JobError]:
    """Return the first JobError in err's exception chain, if any."""
    for e in _chain(err):
        if isinstance(e, JobError):
            return e
    return None


def is_invalid_input(
    err: Optional[BaseException],
    markers: Sequence[str] = INVALID_INPUT_MARKERS,
) -> bool:
    """
    Report whether err was caused by unusable input.

    True when err is, or was raised from, a JobError whose diagnostics
    contain one of markers.
    """
    job_error = find_job_error(err)
    if job_error is None:
        return False
    return any(job_error.contains(marker) for marker in markers)
