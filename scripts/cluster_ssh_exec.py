#!/usr/bin/env python3
"""Run a file of shell commands on every host in a host list.

The commands file is streamed to ``bash -s`` on each host in turn, so the
commands execute in order in a single remote shell. Remote output is shown
as it arrives, prefixed with the host name. A failing host is logged and the
run continues; the exit code is non-zero if any host failed.

Example:
    cluster_ssh_exec.py hosts.txt update-multipath.sh
"""

from __future__ import annotations

import argparse
from pathlib import Path

from fleetops.fanout import FanoutRunner, read_host_list
from fleetops.logger import logger, set_verbose


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="Execute a commands file on every host listed in a host list file.",
    )
    parser.add_argument(
        "host_list_file",
        type=Path,
        help="Path to the file containing a list of hostnames (one per line).",
    )
    parser.add_argument(
        "commands_file_path",
        type=Path,
        help="Path to the file containing commands to be executed on each host.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output.")
    try:
        return parser.parse_args(argv)
    except SystemExit as e:
        # argparse uses 2 for usage errors
        if e.code == 2:  # noqa: PLR2004
            raise SystemExit(1) from None
        raise


def main(argv: list[str] | None = None) -> None:
    """Main entry point.

    Raises:
        SystemExit: With 1 on bad input or when any host failed.
    """
    args = parse_arguments(argv)
    set_verbose(args.verbose)

    try:
        hosts = read_host_list(args.host_list_file)
        summary = FanoutRunner().exec_script(hosts, args.commands_file_path)
    except FileNotFoundError as e:
        logger.error("Error: %s", e)
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        logger.info("⏹️ Execution interrupted by user")
        raise SystemExit(130) from None

    raise SystemExit(summary.exit_code)


if __name__ == "__main__":
    main()
