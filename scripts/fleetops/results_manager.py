"""Report generation for the benchmark and burn-in tools.

This module collects check results, decides the overall status and writes
the timestamped plain-text reports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from .logger import logger

if TYPE_CHECKING:
    from .models import BurnInConfig, CheckResult

REPORT_RULE = "#" * 45
BURNIN_RULE = "=" * 55
BURNIN_SEP = "-" * 55


class ResultsManager:
    """Accumulates benchmark check results and writes the summary report."""

    def __init__(self, timezone: str = "UTC") -> None:
        """Initialise an empty result set; timestamps use ``timezone``."""
        self.zone = ZoneInfo(timezone)
        self.started = datetime.now(tz=self.zone)
        self.network: list[CheckResult] = []
        self.disk: list[CheckResult] = []
        self.cpu: CheckResult | None = None
        self.errors: list[str] = []

    def add_network(self, result: CheckResult) -> None:
        self.network.append(result)

    def add_disk(self, result: CheckResult) -> None:
        self.disk.append(result)

    def set_cpu(self, result: CheckResult) -> None:
        self.cpu = result

    def add_error(self, message: str) -> None:
        """Record a failure that is not tied to a single check (e.g. no disks found)."""
        self.errors.append(message)

    @property
    def all_ok(self) -> bool:
        """True while no check and no run-level step has failed."""
        checks = [*self.network, *self.disk, *([self.cpu] if self.cpu else [])]
        return not self.errors and all(check.ok for check in checks)

    @property
    def status_text(self) -> str:
        return "Successful" if self.all_ok else "Failed"

    @property
    def report_filename(self) -> str:
        stamp = self.started.strftime("%Y%m%d_%H%M%S")
        return f"benchmark_report_{stamp}_{self.status_text}.txt"

    def render(self) -> str:
        """Render the summary report text.

        Returns:
            The report as a single string.
        """
        lines = [
            REPORT_RULE,
            "           Benchmark Summary Report          ",
            REPORT_RULE,
            f"Time: {datetime.now(tz=self.zone):%a %b %d %H:%M:%S %Z %Y}",
            "",
            "--- [ Network Latency ] ---",
            *(f"  • {result}" for result in self.network),
            "",
            "--- [ Disk Performance ] ---",
            *(f"  • {result}" for result in self.disk),
            "",
            "--- [ CPU Performance ] ---",
            f"  • {self.cpu.detail if self.cpu else 'Not run'}",
            "",
        ]
        if self.errors:
            lines.extend(["--- [ Errors ] ---", *(f"  • {error}" for error in self.errors), ""])
        lines.append(
            "Overall Status: ✔ SUCCESS" if self.all_ok else "Overall Status: ✘ FAILED"
        )
        lines.append(REPORT_RULE)
        return "\n".join(lines) + "\n"

    def save(self, report_dir: Path) -> Path:
        """Write the report to ``report_dir`` and echo it to the log.

        Returns:
            Path of the written report.
        """
        report_dir.mkdir(parents=True, exist_ok=True)
        text = self.render()
        report_file = report_dir / self.report_filename
        report_file.write_text(text, encoding="utf-8")
        for line in text.splitlines():
            logger.info(line)
        logger.info("📁 Report saved to: %s", report_file)
        return report_file


@dataclass
class BurnInReport:
    """Final report of a standalone burn-in run."""

    config: BurnInConfig
    host: dict[str, str]
    start_time: datetime
    end_time: datetime | None = None
    exit_code: int | None = None
    extra_notes: list[str] = field(default_factory=list)

    @property
    def report_filename(self) -> str:
        stamp = (self.end_time or self.start_time).strftime("%Y%m%d-%H%M%S")
        return f"burnin_report_{stamp}.txt"

    def _raw_log(self) -> list[str]:
        try:
            return self.config.raw_log.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError:
            return ["  (No raw log data available)"]

    def render(self) -> str:
        """Render the report text.

        Returns:
            The report as a single string.
        """
        fmt = "%Y-%m-%d %H:%M:%S"
        end = self.end_time.strftime(fmt) if self.end_time else "n/a"
        if self.exit_code == 0:
            status = "  [ SUCCESS ] Completed full duration without stress-ng error."
        else:
            status = (
                f"  [ WARNING ] Process exited with code {self.exit_code} (Interrupted or Failed)."
            )
        lines = [
            BURNIN_RULE,
            "              BURN-IN TEST REPORT                      ",
            BURNIN_RULE,
            f"System Hostname : {self.host.get('hostname', 'unknown')}",
            f"Operating System: {self.host.get('os', 'unknown')}",
            f"Kernel Version  : {self.host.get('kernel', 'unknown')}",
            BURNIN_SEP,
            f"Start Time      : {self.start_time.strftime(fmt)}",
            f"End Time        : {end}",
            f"Target Duration : {self.config.duration_hours:g} Hours",
            BURNIN_SEP,
            "Stress Configuration:",
            "  - CPU Workers : All Cores",
            f"  - VM Workers  : {self.config.vm_workers} (limit {self.config.memory_limit})",
            f"  - HDD Workers : {self.config.hdd_workers} (Read/Write/Verify/Delete)",
            f"  - Work Dir    : {self.config.work_dir}",
            BURNIN_SEP,
            "Test Result Status:",
            status,
            *self.extra_notes,
            BURNIN_SEP,
            "stress-ng Output / Metrics:",
            "",
            *self._raw_log(),
            "",
            BURNIN_RULE,
        ]
        return "\n".join(lines) + "\n"

    def save(self) -> Path:
        """Write the report into the configured log directory.

        Returns:
            Path of the written report.
        """
        self.config.log_dir.mkdir(parents=True, exist_ok=True)
        report_file = self.config.log_dir / self.report_filename
        logger.info("Generating final report at: %s", report_file)
        report_file.write_text(self.render(), encoding="utf-8")
        logger.info("Report saved to: %s", report_file)
        return report_file
