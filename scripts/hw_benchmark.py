#!/usr/bin/env python3
"""Hardware health benchmark with optional burn-in.

Checks network latency per NIC, disk throughput and latency per target and
CPU hashing speed, then writes a timestamped summary report. When every
check passed and burn-in is enabled, the host is put under sustained load
(rate-limited download plus stress-ng) for a fixed duration.

Settings come from a ``.env`` file overlaid by environment variables, for
example::

    NIC_IP_PAIRS=eth0,8.8.8.8;eth1,192.168.1.1
    TEST_TARGETS=/mnt/data,/dev/sdb
    ALLOW_RAW_WRITE=false
    LATENCY_THRESHOLD_MS=20
"""

from __future__ import annotations

import argparse
from contextlib import suppress
from pathlib import Path
from typing import TYPE_CHECKING

from fleetops.disks import detect_physical_disks
from fleetops.logger import logger, set_timezone, set_verbose
from fleetops.models import BenchmarkConfig
from fleetops.probes import CpuProbe, DiskProbe, NetworkProbe
from fleetops.results_manager import ResultsManager
from fleetops.stress import BurnInPhase, ProcessTracker, sigterm_as_interrupt

if TYPE_CHECKING:
    from collections.abc import Callable

CONFIRM_WORD = "YES"


class BenchmarkRunner:
    """Runs the health checks, writes the report and gates the burn-in.

    ``prompt`` is used for the raw-write confirmation and the pause on
    failure; it defaults to :func:`input`.
    """

    def __init__(
        self,
        config: BenchmarkConfig,
        assume_yes: bool = False,
        prompt: Callable[[str], str] = input,
    ) -> None:
        """Initialise the runner with configuration and a fresh result set."""
        self.config = config
        self.assume_yes = assume_yes
        self.prompt = prompt
        self.results = ResultsManager(config.timezone)
        self.network_probe = NetworkProbe(config.latency_threshold_ms, config.ping_count)
        self.disk_probe = DiskProbe(
            config.disk_test_size_mb, config.latency_test_count, config.latency_threshold_ms
        )
        self.cpu_probe = CpuProbe(config.cpu_test_size_mb)

    def resolve_targets(self) -> list[str]:
        """Return the configured targets, or detect writable physical disks.

        Returns:
            Target paths; empty when nothing was configured or found.
        """
        if self.config.test_targets:
            return list(self.config.test_targets)
        logger.info("🔍 TEST_TARGETS not set, detecting physical disks...")
        disks = detect_physical_disks()
        if disks:
            logger.info("   -> Detected: %s", " ".join(disks))
        return disks

    def confirm_raw_write(self, targets: list[str]) -> bool:
        """Ask before writing to raw block devices.

        Returns:
            True when no raw device will be written or the operator agreed.
        """
        raw = [t for t in targets if Path(t).is_block_device()]
        if not raw or not self.config.allow_raw_write:
            return True

        logger.warning("⚠️ ALLOW_RAW_WRITE is on; data on these devices will be DESTROYED:")
        for device in raw:
            logger.warning("   -> %s", device)
        if self.assume_yes:
            return True
        try:
            answer = self.prompt(f"Type {CONFIRM_WORD} to continue: ")
        except EOFError:
            logger.error("❌ No terminal input available to confirm raw writes")
            return False
        return answer.strip() == CONFIRM_WORD

    def run_checks(self, targets: list[str]) -> None:
        logger.info("[1/3] 🌐 Network latency...")
        for target in self.config.nic_targets:
            self.results.add_network(self.network_probe.check(target))

        logger.info("[2/3] 💾 Disk performance...")
        for target in targets:
            self.results.add_disk(self.disk_probe.check(target, self.config.allow_raw_write))

        logger.info("[3/3] 🧮 CPU hashing...")
        self.results.set_cpu(self.cpu_probe.check())

    def run_burn_in(self) -> int:
        """Run the burn-in phase with background processes cleaned up on any exit.

        Returns:
            The stress exit code.
        """
        tracker = ProcessTracker()
        with tracker.guard():
            return BurnInPhase(self.config, tracker).run()

    def run(self) -> int:
        """Run the whole benchmark.

        Returns:
            Process exit code: 0 when every check passed (and burn-in, if
            run, succeeded), otherwise 1.
        """
        targets = self.resolve_targets()
        if not targets:
            logger.error("❌ No test targets configured or detected")
            self.results.add_error("No test targets configured or detected")
        elif not self.confirm_raw_write(targets):
            logger.error("❌ Raw write not confirmed, aborting")
            return 1

        if targets:
            with sigterm_as_interrupt():
                self.run_checks(targets)

        self.results.save(self.config.report_dir)

        if not self.results.all_ok:
            logger.error("✘ One or more checks failed; burn-in skipped")
            if self.config.pause_on_failure:
                with suppress(EOFError):
                    self.prompt("Press Enter to exit...")
            return 1

        if not self.config.enable_burn_in:
            logger.info("Burn-in disabled; done")
            return 0

        return 0 if self.run_burn_in() == 0 else 1


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="Network/disk/CPU health benchmark with optional burn-in.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Configuration (.env or environment):
  NIC_IP_PAIRS, TEST_TARGETS, ALLOW_RAW_WRITE, ENABLE_BURN_IN,
  BURN_DURATION_SEC, DL_RATE_LIMIT, BURN_IN_MEM_MAX, BURN_IN_HDD_WORKERS,
  LATENCY_THRESHOLD_MS, DISK_TEST_SIZE_MB, LATENCY_TEST_COUNT, PING_COUNT,
  CPU_TEST_SIZE_MB, TIMEZONE, REPORT_DIR, PAUSE_ON_FAILURE
        """,
    )
    parser.add_argument("--env-file", default=".env", help="dotenv file with settings.")
    parser.add_argument("--yes", action="store_true", help="Confirm raw device writes.")
    parser.add_argument("--no-burn-in", action="store_true", help="Skip the burn-in phase.")
    parser.add_argument(
        "--pause-on-failure", action="store_true", help="Wait for Enter when a check failed."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point.

    Raises:
        SystemExit: With the benchmark exit code.
    """
    args = parse_arguments(argv)
    set_verbose(args.verbose)

    try:
        config = BenchmarkConfig.from_dotenv(args.env_file)
        set_timezone(config.timezone)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise SystemExit(1) from e

    if args.no_burn_in:
        config.enable_burn_in = False
    if args.pause_on_failure:
        config.pause_on_failure = True

    logger.info("🚀 Starting hardware benchmark")
    logger.info("🌐 NIC targets: %s", ", ".join(map(str, config.nic_targets)) or "none")
    logger.info("⏱️ Latency threshold: %s ms", config.latency_threshold_ms)

    try:
        exit_code = BenchmarkRunner(config, assume_yes=args.yes).run()
    except KeyboardInterrupt:
        logger.info("⏹️ Benchmark interrupted by user")
        raise SystemExit(130) from None

    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
