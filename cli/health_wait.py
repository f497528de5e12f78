#!/usr/bin/env python3
"""
Health check wait.

Polls the platform until all replicas of a color are healthy.

Usage:
    bgswitch-health-wait <color> [timeout-seconds] [poll-interval]

Exit codes:
    0 = All replicas healthy
    1 = Timeout (or invalid arguments / configuration)
"""

import argparse
import logging
import sys
from typing import List, Optional

from bgswitch.common.config import load_settings
from bgswitch.common.errors import ConfigInvalid, HealthTimeout
from bgswitch.deploy.colors import parse_color
from bgswitch.deploy.factory import build_platform
from bgswitch.deploy.health_gate import HealthGate


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="bgswitch-health-wait", description="Wait for a color's replicas to be healthy")
    p.add_argument("color", help="blue or green (or its service name, e.g. app_blue)")
    p.add_argument("timeout", nargs="?", type=float, default=None, help="Maximum seconds to wait")
    p.add_argument("interval", nargs="?", type=float, default=None, help="Seconds between polls")
    p.add_argument("--project-dir", default=".")
    p.add_argument("--env-file", default=None)
    args = p.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")

    name = args.color[4:] if args.color.startswith("app_") else args.color
    try:
        color = parse_color(name)
        settings = load_settings(args.project_dir, env_file=args.env_file, require_env_file=False)
    except (ValueError, ConfigInvalid) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    timeout = args.timeout if args.timeout is not None else settings.health_timeout_s
    interval = args.interval if args.interval is not None else settings.health_interval_s
    if timeout <= 0 or interval <= 0:
        print("Error: timeout and interval must be > 0", file=sys.stderr)
        return 1

    gate = HealthGate(build_platform(settings))
    try:
        gate.wait(color, timeout, interval)
    except HealthTimeout as e:
        print(f"Timeout: {e.message}", file=sys.stderr)
        if e.logs:
            print(f"--- Last lines of {color.service} logs ---", file=sys.stderr)
            print(e.logs, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
