"""Burn-in load generation: rate-limited download, stress-ng and fallbacks.

Load generators run as background processes. ``ProcessTracker`` remembers
them solely so they can be stopped on normal exit, Ctrl+C or SIGTERM.
"""

from __future__ import annotations

import re
import shutil
import signal
import subprocess
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from .logger import logger
from .system import check_install_tool, command_exists, cpu_count

if TYPE_CHECKING:
    from collections.abc import Generator
    from types import FrameType

    from .models import BenchmarkConfig, BurnInConfig

RATE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?|\.\d+)\s*([kmg]?)\s*$", re.IGNORECASE)
UNIT_MULTIPLIERS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3}
DOWNLOAD_ENDPOINT = "https://speed.cloudflare.com/__down"
STOP_TIMEOUT = 5


def parse_rate(rate: str) -> int:
    """Convert a wget-style rate (``100m``, ``10k``, ``512``) to bytes per second.

    Units are binary (``k`` = 1024). Unparseable input yields 0 with a warning.

    Returns:
        Bytes per second.
    """
    match = RATE_PATTERN.match(rate)
    if not match:
        logger.warning("Could not parse rate '%s'; using 0", rate)
        return 0
    number, unit = match.groups()
    return round(float(number) * UNIT_MULTIPLIERS[unit.upper()])


def download_url(rate_bps: int, duration_sec: int) -> str:
    """Size the download so it lasts the whole burn-in at the given rate."""
    return f"{DOWNLOAD_ENDPOINT}?bytes={max(rate_bps * duration_sec, 1)}"


@contextmanager
def sigterm_as_interrupt() -> Generator[None, None, None]:
    """Raise KeyboardInterrupt on SIGTERM inside the block.

    Both signals then unwind through the same ``finally`` clauses. The
    previous handler is restored on exit.
    """

    def on_sigterm(signum: int, _frame: FrameType | None) -> None:
        raise KeyboardInterrupt(signal.Signals(signum).name)

    previous = signal.signal(signal.SIGTERM, on_sigterm)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


class ProcessTracker:
    """Keeps track of background processes and stops them on exit or signal."""

    def __init__(self) -> None:
        """Initialise an empty tracker."""
        self.processes: list[subprocess.Popen[bytes]] = []

    def start(self, command: list[str], **kwargs: object) -> subprocess.Popen[bytes]:
        """Launch ``command`` in the background and track it.

        Returns:
            The started process.
        """
        kwargs.setdefault("stdout", subprocess.DEVNULL)
        kwargs.setdefault("stderr", subprocess.DEVNULL)
        logger.debug("Starting background process: %s", " ".join(command))
        process = subprocess.Popen(command, **kwargs)  # type: ignore[call-overload]
        self.processes.append(process)
        return process

    def stop_all(self) -> None:
        """Terminate every tracked process that is still running."""
        running = [p for p in self.processes if p.poll() is None]
        if running:
            logger.info("Stopping background processes...")
        for process in running:
            process.terminate()
        for process in running:
            try:
                process.wait(timeout=STOP_TIMEOUT)
            except subprocess.TimeoutExpired:
                logger.warning("Process %d ignored SIGTERM, killing", process.pid)
                process.kill()
                process.wait()
        self.processes.clear()

    @contextmanager
    def guard(self) -> Generator[ProcessTracker, None, None]:
        """Stop tracked processes when the block exits, including on SIGINT/SIGTERM.

        Yields:
            The tracker itself.
        """
        with sigterm_as_interrupt():
            try:
                yield self
            finally:
                self.stop_all()


def stress_ng_burn_command(config: BenchmarkConfig, temp_path: Path) -> list[str]:
    """Build the stress-ng call used after a successful benchmark.

    Returns:
        The command line.
    """
    return [
        "stress-ng",
        "--hdd", str(config.hdd_workers),
        "--hdd-opts", "direct,wr-seq",
        "--temp-path", str(temp_path),
        "--cpu", "0",
        "--vm", "1",
        "--vm-bytes", config.burn_in_mem_max,
        "--timeout", f"{config.burn_duration_sec}s",
        "--metrics-brief",
    ]  # fmt: skip


def stress_ng_burnin_command(config: BurnInConfig) -> list[str]:
    """Build the single merged stress-ng call of the standalone burn-in.

    ``--cpu 0`` loads every core; ``--verify`` checks the data written by the
    memory and disk stressors.

    Returns:
        The command line.
    """
    return [
        "stress-ng",
        "--cpu", "0",
        "--vm", str(config.vm_workers),
        "--vm-bytes", config.memory_limit,
        "--hdd", str(config.hdd_workers),
        "--verify",
        "--temp-path", str(config.work_dir),
        "--timeout", f"{config.duration_sec}s",
        "--metrics-brief",
        "--log-file", str(config.raw_log),
        "--verbose",
    ]  # fmt: skip


class BurnInPhase:
    """Sustained load after the health checks: network download plus stress-ng."""

    def __init__(self, config: BenchmarkConfig, tracker: ProcessTracker) -> None:
        """Initialise the phase with benchmark settings and a process tracker."""
        self.config = config
        self.tracker = tracker

    def start_download(self) -> None:
        """Start the rate-limited background download if any NIC was tested."""
        if not self.config.nic_targets or not command_exists("wget"):
            return
        rate_bps = parse_rate(self.config.dl_rate_limit)
        url = download_url(rate_bps, self.config.burn_duration_sec)
        logger.info(
            "[Network] Starting background download stress (%s)...", self.config.dl_rate_limit
        )
        self.tracker.start(
            ["wget", f"--limit-rate={self.config.dl_rate_limit}", "-O", "/dev/null", "-q", url]
        )

    def run_stress(self) -> int:
        """Run stress-ng for the configured duration, or a CPU-only fallback.

        Returns:
            The stress-ng exit code (0 for the fallback).
        """
        logger.info("[System] Initiating CPU/RAM/IO load via stress-ng...")
        if command_exists("stress-ng"):
            burn_dir = Path(tempfile.mkdtemp(prefix="burnin_"))
            try:
                process = self.tracker.start(
                    stress_ng_burn_command(self.config, burn_dir), stdout=None, stderr=None
                )
                return process.wait()
            finally:
                self.tracker.stop_all()
                shutil.rmtree(burn_dir, ignore_errors=True)

        logger.warning("stress-ng not found. Falling back to sha256sum loops (CPU only)...")
        for _ in range(cpu_count()):
            self.tracker.start(["sha256sum", "/dev/zero"])
        time.sleep(self.config.burn_duration_sec)
        return 0

    def run(self) -> int:
        """Install missing tools, then apply load for the burn-in duration.

        Returns:
            The stress exit code.
        """
        logger.info("=========================================")
        logger.info("      Starting Burn-in Stress Test       ")
        logger.info("=========================================")
        check_install_tool("wget")
        check_install_tool("stress-ng")

        self.start_download()
        logger.info("[Time] Target Duration: %d seconds", self.config.burn_duration_sec)
        exit_code = self.run_stress()
        self.tracker.stop_all()
        if exit_code == 0:
            logger.info("Burn-in stress test completed.")
        else:
            logger.warning("Burn-in stress test finished with exit code %d.", exit_code)
        return exit_code
