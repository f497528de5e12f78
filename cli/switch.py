#!/usr/bin/env python3
"""
Blue-green deployment switcher.

Detects the active color, starts the other color, waits for all replicas to
be healthy, repoints the router, verifies traffic and stops the old color.

Usage:
    bgswitch-switch [--force-color blue|green] [--project-dir DIR] [--env-file FILE]
    bgswitch-switch --bootstrap [--force-color blue|green]

Exit codes:
    0 = Success
    1 = Invalid arguments, missing configuration, corrupt pointer or lock busy
    2 = Build/start failed
    3 = Health check failed (target torn down, previous color still serving)
    4 = Router reload failed (DEGRADED)
    5 = Verification failed (DEGRADED)
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from bgswitch import VERSION
from bgswitch.common.artifacts import write_json_atomic
from bgswitch.common.config import SwitchSettings, load_settings
from bgswitch.common.errors import EXIT_INVALID, EXIT_OK, ConfigCorrupt, ConfigInvalid, LockBusy, ReloadFailed, VerifyFailed
from bgswitch.common.run_lock import RunLock
from bgswitch.deploy.colors import Color, other, parse_color
from bgswitch.deploy.factory import build_orchestrator
from bgswitch.deploy.orchestrator import SwitchAttempt
from bgswitch.deploy.store import FileColorStore
from bgswitch.metrics.exporter import SwitchMetrics

logger = logging.getLogger("bgswitch.cli.switch")

LOCK_NAME = ".bgswitch.lock"


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(EXIT_INVALID, f"Error: {message}\n")


def _color_arg(value: str) -> Color:
    try:
        return parse_color(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    p = _Parser(prog="bgswitch-switch", description="Zero-downtime blue/green traffic switch")
    p.add_argument("--force-color", type=_color_arg, default=None, metavar="blue|green",
                   help="Force switch to a specific color (default: the inactive one)")
    p.add_argument("--project-dir", default=".", help="Project root holding .env and nginx/upstreams")
    p.add_argument("--env-file", default=None, help="Path to .env (default: <project-dir>/.env)")
    p.add_argument("--config", default=None, help="Optional YAML settings file")
    p.add_argument("--summary-json", default=None, help="Also write the attempt summary as JSON here")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    p.add_argument("--no-lock", action="store_true", help="Skip the single-run lock (not recommended)")
    p.add_argument("--bootstrap", action="store_true",
                   help="Create the active pointer (--force-color or blue) if missing, then exit")
    p.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return p


def recovery_hint(attempt: SwitchAttempt, settings: SwitchSettings) -> List[str]:
    """Manual recovery guidance for degraded outcomes."""
    if attempt.error is None or not attempt.error.degraded or attempt.target is None or attempt.source is None:
        return []
    back = attempt.source if attempt.source != attempt.target else other(attempt.target)
    compose = settings.compose_command
    lines = [f"The active pointer now names {attempt.target}; {attempt.source} replicas were NOT stopped."]
    if isinstance(attempt.error, ReloadFailed):
        lines.append(f"Fix the router config, then reload manually: {compose} exec {settings.router_service} nginx -s reload")
    elif isinstance(attempt.error, VerifyFailed):
        lines.append(f"Check what the router serves: curl -s {settings.probe_url}")
    if back == attempt.source:
        lines.append(f"To send traffic back: bgswitch-switch --force-color {back}")
    return lines


def print_summary(attempt: SwitchAttempt, settings: SwitchSettings) -> None:
    print("")
    print("=========================================")
    if attempt.ok:
        print("  Deployment switch complete!")
        print(f"  Active: {attempt.target}")
        print(f"  Replicas: {attempt.replicas}")
    else:
        print(f"  Deployment switch {attempt.outcome.value.upper() if attempt.outcome else 'FAILED'}")
        print(f"  Source: {attempt.source or '-'}  Target: {attempt.target or '-'}")
        print(f"  Stopped in: {attempt.stopped_in.value if attempt.stopped_in else '-'}")
        print(f"  Error: {attempt.error_kind}: {attempt.error.message if attempt.error else '-'}")
        if attempt.error is not None and attempt.error.degraded:
            print(f"  Router pointer already names {attempt.target}; nothing was reverted.")
        if attempt.previous_serving is True:
            print(f"  Previous color {attempt.source} is still serving traffic.")
        elif attempt.previous_serving is False:
            print("  Previous color is NOT confirmed serving traffic.")
    for w in attempt.warnings:
        print(f"  Warning: {w}")
    print("=========================================")
    for line in recovery_hint(attempt, settings):
        print(f"MANUAL RECOVERY: {line}", file=sys.stderr)


def bootstrap(settings: SwitchSettings, default: Color) -> int:
    """Initialise the active pointer of a fresh environment."""
    store = FileColorStore(settings.upstreams)
    try:
        color = store.bootstrap(default)
    except ConfigCorrupt as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code
    print(f"Active color: {color} ({store.active_path})")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s: %(message)s")

    try:
        settings = load_settings(args.project_dir, env_file=args.env_file, config_path=args.config)
    except ConfigInvalid as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code

    if args.bootstrap:
        return bootstrap(settings, args.force_color or Color.BLUE)

    print("=========================================")
    print("  Blue-Green Deployment Switch")
    print("=========================================")

    metrics = SwitchMetrics()
    orchestrator = build_orchestrator(settings, metrics=metrics)
    lock = None if args.no_lock else RunLock(Path(settings.project_dir) / LOCK_NAME)
    try:
        if lock is not None:
            lock.acquire()
        try:
            attempt = orchestrator.run(args.force_color)
        finally:
            if lock is not None:
                lock.release()
    except LockBusy as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code

    print_summary(attempt, settings)
    if args.summary_json:
        write_json_atomic(args.summary_json, attempt.to_dict())
    if settings.metrics_textfile is not None:
        try:
            metrics.write_textfile(settings.metrics_textfile)
        except OSError as e:
            logger.warning("Could not write metrics textfile %s: %s", settings.metrics_textfile, e)
    return attempt.exit_code


if __name__ == "__main__":
    sys.exit(main())
