"""
ffmpeg / ffprobe runner.

Runner.probe() inspects an input with ffprobe. Runner.run() supervises one
ffmpeg job: it launches the process, streams ``-progress`` output through a
ProgressAssembler (over a pipe or a local HTTP listener), keeps the last
stderr lines in a DiagnosticBuffer, and reports success or a JobError.

Each run uses three threads joined by a TaskGroup:

- progress: consumes progress lines from the pipe, or runs the listener
  and receives its records; the progress callback only runs here
- shutdown: waits for the process to finish or for cancellation, then closes
  the progress source; on cancellation it also terminates the process
- process: starts ffmpeg, drains stderr into the diagnostic buffer, waits

The first failure among them is raised, except the ClosedPipeError the
shutdown thread itself causes by closing the pipe.
"""

from __future__ import annotations

import enum
import logging
import math
import subprocess
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ffjob.config import FFJobConfig
from ffjob.diagnostics import DEFAULT_LIMIT, DiagnosticBuffer
from ffjob.errors import (
    FFJobError,
    JobCancelledError,
    JobError,
    ProbeError,
    SummaryError,
)
from ffjob.probe import Probe
from ffjob.progress.listener import ProgressListener
from ffjob.progress.pipe import ClosedPipeError, ProgressPipe
from ffjob.progress.protocol import ProgressAssembler, ProgressRecord
from ffjob.summary import Summary, parse_summary
from ffjob.tasks import TaskGroup

logger = logging.getLogger(__name__)

# Command line arguments for ffmpeg and ffprobe.
# See https://ffmpeg.org/ffprobe-all.html for reference.
F_HIDE_BANNER = "-hide_banner"
F_VERBOSE = "-v"
F_INPUT = "-i"
F_OVERWRITE = "-y"
F_PROGRESS = "-progress"
F_STATS_PERIOD = "-stats_period"
F_SEEKABLE = "-seekable"
F_XERROR = "-xerror"
F_NOSTDIN = "-nostdin"

F_PROBE_PRINT_FORMAT = "-print_format"
F_PROBE_SHOW_FORMAT = "-show_format"
F_PROBE_SHOW_STREAMS = "-show_streams"

PRINT_FORMAT_JSON = "json"
VERBOSE_ERROR = "error"

PROGRESS_PIPE_SINK = "pipe:1"

HTTP_PREFIXES = ("http://", "https://")

DEFAULT_PROGRESS_PERIOD_SEC = 1.0
DEFAULT_KILL_GRACE_SEC = 2.0

# Minimum time the shutdown thread lets the consumer finish reading after a
# normal exit before it force-closes the progress source. The wait is at
# least two progress periods.
DRAIN_TIMEOUT_SEC = 1.0


class JobState(enum.Enum):
    """Lifecycle of one Runner.run() call."""
    IDLE = 1
    METADATA_RESOLVED = 2
    LAUNCHED = 3
    STREAMING = 4
    EXITING = 5
    SUCCEEDED = 6
    FAILED = 7


@dataclass(frozen=True)
class Progress:
    """Normalized progress handed to RunOptions.progress."""
    speed: float  # 10.8x
    complete: float  # 0..1, nan/inf when the input duration is unknown
    done: bool = False

    @property
    def known(self) -> bool:
        """False when complete is not a finite number."""
        return math.isfinite(self.complete)


@dataclass(frozen=True)
class RunOptions:
    """
    Options for Runner.run().

    Attributes:
        input: Input file path or URL
        output: Output file path
        progress: Optional callback, invoked from the progress thread only
        progress_period: Seconds between progress reports (<= 0: runner default)
        input_args: Arguments placed before ``-i <input>``
        args: Output arguments placed after the input
        probe: Pre-fetched probe of input; probed on demand when None
        cancel: Optional event; setting it cancels the job
        use_listener: Deliver progress over a local HTTP listener instead of stdout
        on_state_change: Optional callback for JobState transitions
    """
    input: str
    output: str
    progress: Optional[Callable[[Progress], None]] = None
    progress_period: float = 0.0
    input_args: Sequence[str] = ()
    args: Sequence[str] = ()
    probe: Optional[Probe] = None
    cancel: Optional[threading.Event] = None
    use_listener: bool = False
    on_state_change: Optional[Callable[[JobState], None]] = None


def is_http(addr: str) -> bool:
    return addr.startswith(HTTP_PREFIXES)


def format_period(seconds: float) -> str:
    """Format seconds the way ffmpeg's -stats_period expects (1 -> "1", 0.5 -> "0.5")."""
    return format(seconds, "g")


def build_run_args(
    input: str,
    output: str,
    progress_sink: str,
    period: float,
    input_args: Sequence[str] = (),
    args: Sequence[str] = (),
) -> List[str]:
    """Build the ffmpeg argument list (without the binary)."""
    cmd = [
        F_HIDE_BANNER, F_OVERWRITE,
        F_VERBOSE, VERBOSE_ERROR,
        F_XERROR,
        F_NOSTDIN,
        F_PROGRESS, progress_sink,
        F_STATS_PERIOD, format_period(period),
    ]
    # Seeking over http needs an explicit hint
    if is_http(input):
        cmd += [F_SEEKABLE, "1"]
    # Some arguments must precede the input
    cmd += list(input_args)
    cmd += [F_INPUT, input]
    cmd += list(args)
    cmd.append(output)
    return cmd


def build_probe_args(file_path: str) -> List[str]:
    """Build the ffprobe argument list (without the binary)."""
    cmd = [
        F_HIDE_BANNER,
        F_VERBOSE, VERBOSE_ERROR,
        F_PROBE_PRINT_FORMAT, PRINT_FORMAT_JSON,
        F_PROBE_SHOW_FORMAT,
        F_PROBE_SHOW_STREAMS,
    ]
    if is_http(file_path):
        cmd += [F_SEEKABLE, "1"]
    cmd.append(file_path)
    return cmd


def completion(record: ProgressRecord, summary: Summary) -> float:
    """
    Fraction of the input already written.

    A zero duration yields nan (nothing written yet) or inf, never an exception.
    """
    elapsed = record.out_time.total_seconds()
    total = summary.duration.total_seconds()
    if total:
        return elapsed / total
    return math.nan if elapsed == 0 else math.inf


class Runner:
    """
    Entry point for probing inputs and supervising ffmpeg jobs.

    Args:
        binary: ffmpeg executable
        binary_probe: ffprobe executable
        stderr_lines: Diagnostic lines kept for JobError
        progress_period: Default seconds between progress reports
        kill_grace: Seconds between SIGTERM and SIGKILL on cancellation
        listener_host: Interface the progress listener binds
    """

    def __init__(
        self,
        binary: str = "ffmpeg",
        binary_probe: str = "ffprobe",
        stderr_lines: int = DEFAULT_LIMIT,
        progress_period: float = DEFAULT_PROGRESS_PERIOD_SEC,
        kill_grace: float = DEFAULT_KILL_GRACE_SEC,
        listener_host: str = "localhost",
    ) -> None:
        self.binary = binary
        self.binary_probe = binary_probe
        self.stderr_lines = stderr_lines
        self.progress_period = progress_period
        self.kill_grace = kill_grace
        self.listener_host = listener_host

    @classmethod
    def from_config(cls, config: FFJobConfig) -> "Runner":
        return cls(
            binary=config.binary,
            binary_probe=config.binary_probe,
            stderr_lines=config.stderr_lines,
            progress_period=config.progress_period,
            kill_grace=config.kill_grace,
            listener_host=config.listener_host,
        )

    def probe(self, file_path: str, timeout: Optional[float] = None) -> Probe:
        """
        Run ffprobe on file_path and return the decoded result.

        Args:
            file_path: Input path or URL
            timeout: Optional seconds after which ffprobe is killed

        Raises:
            JobError: ffprobe could not start, timed out, or exited non-zero
            MalformedMetadataError: ffprobe output is not a valid metadata document
        """
        cmd = [self.binary_probe, *build_probe_args(file_path)]
        logs = DiagnosticBuffer(self.stderr_lines)
        logger.debug("Running ffprobe", extra={"binary": self.binary_probe, "ffprobe_args": cmd[1:]})

        try:
            completed = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            if e.stderr:
                logs.write(e.stderr)
            logger.error(f"[FFPROBE] timed out after {timeout}s probing {file_path}")
            raise JobError(e, logs.lines()) from e
        except OSError as e:
            logger.error(f"[FFPROBE] failed to start {self.binary_probe}: {e}")
            raise JobError(e, logs.lines()) from e

        logs.write(completed.stderr)
        if completed.returncode != 0:
            err = subprocess.CalledProcessError(completed.returncode, cmd)
            logger.error(
                f"[FFPROBE] exited with code {completed.returncode} probing {file_path}",
                extra={"returncode": completed.returncode, "logs": "\n".join(logs.lines())},
            )
            raise JobError(err, logs.lines()) from err

        probe = Probe.from_json(completed.stdout)

        try:
            summary = parse_summary(probe)
        except SummaryError as e:
            logger.warning(f"[FFPROBE] could not summarize {file_path}: {e}")
        else:
            logger.debug(
                f"[FFPROBE] {file_path}: {len(probe.streams)} streams, duration {summary.duration}",
                extra={"streams": len(probe.streams), "duration_sec": int(summary.duration.total_seconds())},
            )
        return probe

    def run(self, opt: RunOptions) -> None:
        """
        Perform an ffmpeg operation such as encoding opt.input into opt.output.

        Raises:
            ProbeError: opt.probe was not given and probing the input failed
            SummaryError: The probe holds an unparseable duration
            JobError: ffmpeg failed, could not start, or the job was cancelled
        """
        probe = opt.probe
        if probe is None:
            try:
                probe = self.probe(opt.input)
            except FFJobError as e:
                raise ProbeError(f"probe: {e}") from e

        try:
            summary = parse_summary(probe)
        except SummaryError as e:
            raise SummaryError(f"summary: {e}") from e

        period = opt.progress_period if opt.progress_period > 0 else self.progress_period
        _Job(self, opt, summary, period).run()


class _Job:
    """State of a single Runner.run() call."""

    def __init__(self, runner: Runner, opt: RunOptions, summary: Summary, period: float) -> None:
        self._runner = runner
        self._opt = opt
        self._summary = summary
        self._period = period

        self._logs = DiagnosticBuffer(runner.stderr_lines)
        self._group = TaskGroup(parent=opt.cancel, name="ffjob")
        self._finished = threading.Event()  # set once the process task returns
        self._consumer_done = threading.Event()

        self._state = JobState.IDLE
        self._state_lock = threading.Lock()

        self._process: Optional[subprocess.Popen] = None
        self._process_lock = threading.Lock()
        self._terminated = False

        self._pipe: Optional[ProgressPipe] = None
        self._listener: Optional[ProgressListener] = None

    def run(self) -> None:
        self._set_state(JobState.METADATA_RESOLVED)
        try:
            if self._opt.use_listener:
                self._listener = ProgressListener(self._on_record, host=self._runner.listener_host)
                sink = self._listener.addr
            else:
                self._pipe = ProgressPipe()
                sink = PROGRESS_PIPE_SINK

            args = build_run_args(
                self._opt.input,
                self._opt.output,
                sink,
                self._period,
                self._opt.input_args,
                self._opt.args,
            )
            self._cmd = [self._runner.binary, *args]
            logger.info(
                "Running ffmpeg",
                extra={
                    "binary": self._runner.binary,
                    "ffmpeg_args": args,
                    "input": self._opt.input,
                    "output": self._opt.output,
                },
            )

            self._group.go(self._consume, "progress")
            self._group.go(self._coordinate, "shutdown")
            self._group.go(self._execute, "process")
            self._group.wait()
        except Exception as e:
            lines = self._logs.lines()
            logger.error(f"ffmpeg failed: {e}", extra={"error": str(e), "logs": "\n".join(lines)})
            self._set_state(JobState.FAILED)
            raise JobError(e, lines) from e
        finally:
            if self._pipe is not None:
                self._pipe.close()
            if self._listener is not None:
                self._listener.stop()

        self._set_state(JobState.SUCCEEDED)
        logger.info("ffmpeg finished", extra={"output": self._opt.output})

    def _set_state(self, new_state: JobState) -> None:
        # States only move forward; threads race to report them
        with self._state_lock:
            old_state = self._state
            if new_state.value <= old_state.value:
                return
            self._state = new_state
        # Notify outside lock
        if old_state != new_state:
            logger.debug(f"Job state: {old_state.name} -> {new_state.name}")
            if self._opt.on_state_change:
                self._opt.on_state_change(new_state)

    def _on_record(self, record: ProgressRecord) -> None:
        self._set_state(JobState.STREAMING)
        if self._opt.progress is None:
            return
        self._opt.progress(Progress(
            speed=record.speed,
            complete=completion(record, self._summary),
            done=record.done,
        ))

    def _consume(self) -> None:
        """Progress thread."""
        try:
            if self._listener is not None:
                self._listener.run()
                return
            try:
                ProgressAssembler(self._on_record).run(self._pipe.lines())
            except ClosedPipeError:
                # Read end closed by _coordinate()
                logger.debug("Progress pipe closed by shutdown")
        finally:
            self._consumer_done.set()

    def _drain_timeout(self) -> float:
        return max(DRAIN_TIMEOUT_SEC, 2 * self._period)

    def _coordinate(self) -> None:
        """
        Shutdown thread.

        After a normal exit the consumer gets _drain_timeout() seconds to
        finish. With the pipe transport a progress callback slower than that
        across the remaining backlog loses the records still unread when the
        read end is closed, the final ``done`` record included. The listener
        transport only waits for requests to finish; records already received
        are always delivered.
        """
        exited = self._group.wait_any(self._finished) and not self._group.cancelled()
        if exited:
            # Let the consumer read what the process wrote before it exited
            drain = self._drain_timeout()
            if self._listener is not None:
                self._listener.wait_idle(timeout=drain)
            elif not self._consumer_done.wait(drain):
                logger.warning("Progress stream still open after ffmpeg exited, closing")
        else:
            logger.info("Cancelling ffmpeg job")

        if self._listener is not None:
            self._listener.stop()
        else:
            self._pipe.close_read()

        if not exited:
            self._terminate()
            if not self._finished.wait(self._runner.kill_grace):
                logger.warning("ffmpeg did not terminate, killing")
                self._kill()

    def _execute(self) -> None:
        """Process thread."""
        try:
            self._run_process()
        finally:
            self._finished.set()

    def _run_process(self) -> None:
        stdout = self._pipe.write_fd if self._pipe is not None else subprocess.DEVNULL
        try:
            if self._group.cancelled():
                raise JobCancelledError("job cancelled before ffmpeg started")
            process = subprocess.Popen(
                self._cmd,
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=subprocess.PIPE,
            )
        finally:
            # The child holds its own copy; EOF on the read end follows its exit
            if self._pipe is not None:
                self._pipe.close_write()

        with self._process_lock:
            self._process = process
        logger.info(f"Started ffmpeg PID={process.pid}", extra={"pid": process.pid})
        self._set_state(JobState.LAUNCHED)
        if self._group.cancelled():
            self._terminate()

        try:
            for raw in process.stderr:
                self._logs.write(raw)
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    logger.debug(f"[FFMPEG] {line}")
            returncode = process.wait()
        finally:
            process.stderr.close()
            if process.poll() is None:
                process.kill()
                process.wait()

        self._set_state(JobState.EXITING)
        logger.info(
            f"ffmpeg PID={process.pid} exited with code {returncode}",
            extra={"pid": process.pid, "returncode": returncode},
        )
        if returncode != 0:
            with self._process_lock:
                terminated = self._terminated
            if terminated:
                raise JobCancelledError("job cancelled")
            raise subprocess.CalledProcessError(returncode, self._cmd)

    def _terminate(self) -> None:
        with self._process_lock:
            process = self._process
            if process is None or process.poll() is not None:
                return
            self._terminated = True
        logger.debug(f"Terminating ffmpeg PID={process.pid}")
        try:
            process.terminate()
        except OSError as e:
            logger.debug(f"Error terminating ffmpeg: {e}")

    def _kill(self) -> None:
        with self._process_lock:
            process = self._process
        if process is None or process.poll() is not None:
            return
        try:
            process.kill()
        except OSError as e:
            logger.debug(f"Error killing ffmpeg: {e}")
