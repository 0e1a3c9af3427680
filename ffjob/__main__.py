#!/usr/bin/env python3
"""
ffjob command line.

Allows ffjob to be run as a module: python3 -m ffjob

    python3 -m ffjob probe input.mp4
    python3 -m ffjob run input.mp4 output.mp4 --preset default -- -t 5 -ac 2
    python3 -m ffjob presets
"""

import argparse
import json
import logging
import sys
import threading
from typing import List, Optional

from ffjob.config import load_config
from ffjob.errors import FFJobError, is_invalid_input
from ffjob.presets import all_variants, get_variant
from ffjob.runner import Progress, RunOptions, Runner
from ffjob.summary import parse_summary

logger = logging.getLogger("ffjob")

EXIT_FAILURE = 1
EXIT_INVALID_INPUT = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ffjob", description="Supervise ffmpeg jobs")
    sub = parser.add_subparsers(dest="command", required=True)

    probe = sub.add_parser("probe", help="Inspect an input with ffprobe")
    probe.add_argument("input")
    probe.add_argument("--json", action="store_true", help="Print the raw ffprobe document")
    probe.add_argument("--timeout", type=float, default=None, help="Kill ffprobe after SEC seconds")

    run = sub.add_parser("run", help="Run ffmpeg with progress reporting")
    run.add_argument("input")
    run.add_argument("output")
    run.add_argument("--preset", default=None, help="Output argument preset (see 'presets')")
    run.add_argument("--listener", action="store_true", help="Receive progress over local HTTP")
    run.add_argument("--timeout", type=float, default=None, help="Cancel the job after SEC seconds")
    run.add_argument("--period", type=float, default=0.0, help="Seconds between progress reports")
    run.add_argument("extra", nargs=argparse.REMAINDER, help="Extra ffmpeg output arguments after --")

    sub.add_parser("presets", help="List output argument presets")
    return parser


def _print_progress(p: Progress) -> None:
    if p.known:
        print(f"progress: {p.complete * 100:.1f}% (speed {p.speed:g}x)", flush=True)
    else:
        print(f"progress: unknown (speed {p.speed:g}x)", flush=True)


def _cmd_probe(runner: Runner, ns: argparse.Namespace) -> int:
    probe = runner.probe(ns.input, timeout=ns.timeout)
    if ns.json:
        print(json.dumps(json.loads(probe.raw), indent=2))
        return 0
    summary = parse_summary(probe)
    print(f"Duration: {summary.duration}")
    print(f"Video: {summary.has_video} ({summary.width}x{summary.height})")
    print(f"Audio: {summary.has_audio}")
    return 0


def _cmd_run(runner: Runner, ns: argparse.Namespace) -> int:
    args: List[str] = []
    if ns.preset is not None:
        args += get_variant(ns.preset).args
    extra = ns.extra[1:] if ns.extra[:1] == ["--"] else ns.extra
    args += extra

    cancel = threading.Event()
    timer: Optional[threading.Timer] = None
    if ns.timeout is not None:
        timer = threading.Timer(ns.timeout, cancel.set)
        timer.daemon = True
        timer.start()
    try:
        runner.run(RunOptions(
            input=ns.input,
            output=ns.output,
            progress=_print_progress,
            progress_period=ns.period,
            args=args,
            cancel=cancel,
            use_listener=ns.listener,
        ))
    except KeyboardInterrupt:
        cancel.set()
        raise
    finally:
        if timer is not None:
            timer.cancel()
    print("done")
    return 0


def _cmd_presets() -> int:
    for variant in all_variants():
        print(f"{variant.name}: {' '.join(variant.args)}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ns = _build_parser().parse_args(argv)
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    if ns.command == "presets":
        return _cmd_presets()

    runner = Runner.from_config(config)
    try:
        if ns.command == "probe":
            return _cmd_probe(runner, ns)
        return _cmd_run(runner, ns)
    except KeyError as e:
        print(f"error: unknown preset {e}", file=sys.stderr)
        return EXIT_FAILURE
    except FFJobError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_INVALID_INPUT if is_invalid_input(e) else EXIT_FAILURE


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("ffjob interrupted")
        sys.exit(130)
