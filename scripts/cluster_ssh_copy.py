#!/usr/bin/env python3
"""Copy one file to the same path on every host in a host list.

For each non-empty line of the host list the file's directory is created
with ``sudo mkdir -p`` and the file is uploaded over SFTP, preserving
modification time and mode. Hosts are processed one after another; a failure
on one host does not stop the run. The exit code is non-zero if any host
failed.

Example:
    cluster_ssh_copy.py hosts.txt /etc/multipath.conf
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
        description="Copy a file to every host listed in a host list file.",
    )
    parser.add_argument(
        "host_list_file",
        type=Path,
        help="Path to the file containing a list of hostnames (one per line).",
    )
    parser.add_argument(
        "source_file_path",
        type=Path,
        help="Path to the file to be copied (e.g. /etc/multipath.conf).",
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
        summary = FanoutRunner().copy_file(hosts, args.source_file_path)
    except FileNotFoundError as e:
        logger.error("Error: %s", e)
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        logger.info("⏹️ Copy interrupted by user")
        raise SystemExit(130) from None

    raise SystemExit(summary.exit_code)


if __name__ == "__main__":
    main()
