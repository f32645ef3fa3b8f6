#!/usr/bin/env python3
"""Long-running CPU, memory and disk burn-in with stress-ng.

Runs a single stress-ng invocation loading every core, ``BURNIN_VM_WORKERS``
memory workers and ``BURNIN_HDD_WORKERS`` verifying disk workers for the
requested number of hours, then writes ``burnin_report_<stamp>.txt`` with
host details, the stress configuration, the result status and the raw
stress-ng log. Ctrl+C or SIGTERM stops stress-ng and still produces a
report (exit status 130 in the report).

Example:
    sudo burnin.py 24
"""

from __future__ import annotations

import argparse
import shutil
from datetime import datetime
from zoneinfo import ZoneInfo

from fleetops.logger import add_file_handler, logger, set_timezone, set_verbose
from fleetops.models import BurnInConfig
from fleetops.results_manager import BurnInReport
from fleetops.stress import ProcessTracker, stress_ng_burnin_command
from fleetops.system import check_install_tool, host_facts, require_root

INTERRUPTED_EXIT = 130


class BurnInRunner:
    """Runs stress-ng once and reports on it."""

    def __init__(self, config: BurnInConfig) -> None:
        """Initialise the runner with its configuration."""
        self.config = config
        self.zone = ZoneInfo(config.timezone)
        self.tracker = ProcessTracker()

    def prepare(self) -> None:
        """Install stress-ng and create the work directory.

        Raises:
            RuntimeError: If stress-ng cannot be installed.
        """
        if not check_install_tool("stress-ng"):
            msg = "stress-ng is not available and could not be installed"
            raise RuntimeError(msg)
        self.config.work_dir.mkdir(parents=True, exist_ok=True)
        self.config.log_dir.mkdir(parents=True, exist_ok=True)

    def stress(self) -> int:
        """Run stress-ng to completion.

        Returns:
            The stress-ng exit code, or 130 when interrupted.
        """
        command = stress_ng_burnin_command(self.config)
        logger.info("Command: %s", " ".join(command))
        try:
            with self.tracker.guard():
                process = self.tracker.start(command, stdout=None, stderr=None)
                return process.wait()
        except KeyboardInterrupt:
            logger.warning("⏹️ Burn-in interrupted, stopping stress-ng")
            return INTERRUPTED_EXIT

    def run(self) -> int:
        """Prepare, stress, report and clean up.

        Returns:
            The stress-ng exit code (130 when interrupted).
        """
        self.prepare()
        start = datetime.now(tz=self.zone)
        logger.info("🔥 Starting %g hour burn-in", self.config.duration_hours)
        logger.info("Work dir: %s", self.config.work_dir)

        try:
            exit_code = self.stress()
        finally:
            shutil.rmtree(self.config.work_dir, ignore_errors=True)

        notes = []
        if exit_code == INTERRUPTED_EXIT:
            notes.append("  [ NOTE ] Test was interrupted by a signal (SIGINT/SIGTERM).")
        report = BurnInReport(
            config=self.config,
            host=host_facts(),
            start_time=start,
            end_time=datetime.now(tz=self.zone),
            exit_code=exit_code,
            extra_notes=notes,
        )
        report.save()
        self.config.raw_log.unlink(missing_ok=True)
        return exit_code


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(description="stress-ng burn-in with a final report.")
    parser.add_argument(
        "hours",
        nargs="?",
        type=float,
        default=None,
        help="Duration in hours (default: BURNIN_DURATION_HOURS or 72).",
    )
    parser.add_argument("--env-file", default=".env", help="dotenv file with BURNIN_* settings.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point.

    Raises:
        SystemExit: With the stress-ng exit code, or 1 on setup failure.
    """
    args = parse_arguments(argv)
    set_verbose(args.verbose)

    try:
        require_root()
        config = BurnInConfig.from_dotenv(args.env_file)
        set_timezone(config.timezone)
    except (PermissionError, ValueError) as e:
        logger.error("Error: %s", e)
        raise SystemExit(1) from e

    if args.hours is not None:
        if args.hours <= 0:
            logger.error("Error: duration must be positive")
            raise SystemExit(1)
        config.duration_hours = args.hours

    started = datetime.now(tz=ZoneInfo(config.timezone))
    handler = add_file_handler(config.log_dir / f"burnin_{started:%Y%m%d-%H%M%S}.log")
    try:
        exit_code = BurnInRunner(config).run()
    except RuntimeError as e:
        logger.error("Error: %s", e)
        raise SystemExit(1) from e
    finally:
        logger.removeHandler(handler)
        handler.close()

    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
