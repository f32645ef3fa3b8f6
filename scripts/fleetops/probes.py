"""Hardware health probes: network latency, disk throughput/latency and CPU hashing.

Each probe runs a fixed sequence of external tools (``ip``, ``ping``, ``dd``),
compares the measurement against a static threshold and returns a
CheckResult line for the benchmark report.
"""

from __future__ import annotations

import hashlib
import os
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from statistics import mean

from .logger import logger
from .models import STATUS_FAILED, STATUS_PASSED, STATUS_SKIPPED, CheckResult, NicTarget

# rtt min/avg/max/mdev = 0.035/0.041/0.049/0.005 ms
RTT_PATTERN = re.compile(r"=\s*[\d.]+/([\d.]+)/[\d.]+")
LATENCY_BLOCK = "4k"
MIB = 1024 * 1024


def _run(command: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(command, check=False, capture_output=True, text=True)


def parse_ping_average(output: str) -> str | None:
    """Extract the average round-trip time from ``ping`` summary output.

    Returns:
        The average in milliseconds as printed by ping, or None.
    """
    match = RTT_PATTERN.search(output)
    return match.group(1) if match else None


class NetworkProbe:
    """Pings a target through a specific interface."""

    def __init__(self, threshold_ms: float, count: int = 5) -> None:
        """Initialise the probe with its latency threshold and echo count."""
        self.threshold_ms = threshold_ms
        self.count = count

    def interface_exists(self, nic: str) -> bool:
        return _run(["ip", "link", "show", nic]).returncode == 0

    def check(self, target: NicTarget) -> CheckResult:
        """Ping ``target.ip`` via ``target.nic`` and judge the average latency.

        Returns:
            SKIPPED when the interface is missing, FAILED on packet loss or
            high latency, PASSED otherwise.
        """
        name = str(target)
        if not self.interface_exists(target.nic):
            logger.warning("   -> Interface %s not found. Skipping.", target.nic)
            return CheckResult(name, STATUS_SKIPPED, "Skipped (Interface not found)")

        logger.info("   -> Ping %s via %s ...", target.ip, target.nic)
        result = _run(["ping", "-I", target.nic, "-c", str(self.count), target.ip])
        if result.returncode != 0:
            logger.error("      FAILED (Connection error or packet loss)")
            return CheckResult(name, STATUS_FAILED, "FAILED (Packet Loss)")

        avg = parse_ping_average(result.stdout)
        if avg is None:
            logger.error("      FAILED (could not parse ping summary)")
            return CheckResult(name, STATUS_FAILED, "FAILED (Unparseable ping output)")

        if float(avg) > self.threshold_ms:
            logger.error("      FAILED (Latency %sms exceeds threshold)", avg)
            return CheckResult(name, STATUS_FAILED, f"FAILED | Latency: {avg} ms")

        logger.info("      PASSED (%s ms)", avg)
        return CheckResult(name, STATUS_PASSED, f"PASSED | Latency: {avg} ms")


@dataclass
class DiskTarget:
    """How a test target is exercised: file-level (directory) or raw (block device)."""

    path: str
    is_dir: bool
    can_write: bool
    data_path: str
    latency_path: str

    @classmethod
    def resolve(cls, target: str, allow_raw_write: bool) -> DiskTarget | None:
        """Classify ``target``; directories get per-process temp files.

        Returns:
            The DiskTarget, or None when the path is neither a directory nor
            a block device.
        """
        path = Path(target)
        if path.is_dir():
            pid = os.getpid()
            return cls(
                path=target,
                is_dir=True,
                can_write=True,
                data_path=str(path / f"test_rw_{pid}.tmp"),
                latency_path=str(path / f"test_lat_{pid}.tmp"),
            )
        if path.is_block_device():
            return cls(
                path=target,
                is_dir=False,
                can_write=allow_raw_write,
                data_path=target,
                latency_path=target,
            )
        return None

    def cleanup(self) -> None:
        """Remove temp files; raw devices are left alone."""
        if self.is_dir:
            for leftover in (self.data_path, self.latency_path):
                Path(leftover).unlink(missing_ok=True)


class DiskProbe:
    """Measures direct-I/O throughput and small-block latency with ``dd``."""

    def __init__(self, size_mb: int, latency_samples: int, threshold_ms: float) -> None:
        """Initialise the probe with test size, sample count and latency threshold."""
        self.size_mb = size_mb
        self.latency_samples = latency_samples
        self.threshold_ms = threshold_ms

    def _timed(self, command: list[str]) -> float | None:
        """Run ``command`` and time it.

        Returns:
            Elapsed seconds, or None if the command failed.
        """
        start = time.perf_counter()
        result = _run(command)
        elapsed = time.perf_counter() - start
        if result.returncode != 0:
            logger.debug("%s failed: %s", " ".join(command), result.stderr.strip())
            return None
        return elapsed

    def write_speed(self, dest: str) -> str | None:
        elapsed = self._timed([
            "dd", "if=/dev/zero", f"of={dest}", "bs=1M", f"count={self.size_mb}",
            "oflag=direct", "status=none",
        ])  # fmt: skip
        return None if elapsed is None else f"{self.size_mb / max(elapsed, 1e-9):.2f}"

    def read_speed(self, source: str) -> str | None:
        elapsed = self._timed([
            "dd", f"if={source}", "of=/dev/null", "bs=1M", f"count={self.size_mb}",
            "iflag=direct", "status=none",
        ])  # fmt: skip
        return None if elapsed is None else f"{self.size_mb / max(elapsed, 1e-9):.2f}"

    def _latency_command(self, path: str, write: bool) -> list[str]:
        if write:
            return ["dd", "if=/dev/zero", f"of={path}", f"bs={LATENCY_BLOCK}", "count=1",
                    "oflag=direct,dsync", "status=none"]  # fmt: skip
        return ["dd", f"if={path}", "of=/dev/null", f"bs={LATENCY_BLOCK}", "count=1",
                "iflag=direct,dsync", "status=none"]  # fmt: skip

    def average_latency_ms(self, path: str, write: bool) -> float | None:
        """Average the duration of single 4 KiB synchronous operations.

        One untimed warm-up operation runs first.

        Returns:
            Mean latency in milliseconds, or None if any sample failed.
        """
        command = self._latency_command(path, write)
        _run(command)
        samples = []
        for _ in range(self.latency_samples):
            elapsed = self._timed(command)
            if elapsed is None:
                return None
            samples.append(elapsed)
        return mean(samples) * 1000 if samples else None

    def check(self, target: str, allow_raw_write: bool) -> CheckResult:
        """Run throughput and latency tests against one target.

        Returns:
            The CheckResult line for this target.
        """
        logger.info("   -> Target: %s ...", target)
        disk = DiskTarget.resolve(target, allow_raw_write)
        if disk is None:
            logger.error("      Error: Invalid target type.")
            return CheckResult(target, STATUS_FAILED, "Invalid target")

        if disk.is_dir:
            logger.info("      [Type] Directory (File-level test)")
        else:
            logger.info(
                "      [Type] Block Device (Raw-level test - Write allowed: %s)", disk.can_write
            )

        try:
            return self._measure(disk)
        finally:
            disk.cleanup()

    def _measure(self, disk: DiskTarget) -> CheckResult:
        speed_w = "N/A"
        if disk.can_write:
            logger.info("      [Speed] Write Test (%dMB)...", self.size_mb)
            written = self.write_speed(disk.data_path)
            if written is None:
                logger.error("      Write FAILED")
                return CheckResult(disk.path, STATUS_FAILED, "Write Failed")
            speed_w = written
            logger.info("      Done (%s MB/s)", speed_w)

        logger.info("      [Speed] Read Test (%dMB)...", self.size_mb)
        read = self.read_speed(disk.data_path)
        read_ok = read is not None
        speed_r = read if read_ok else "FAILED"
        if read_ok:
            logger.info("      Done (%s MB/s)", speed_r)
        else:
            logger.error("      Read FAILED")

        if disk.is_dir:
            Path(disk.data_path).unlink(missing_ok=True)

        lat_type = "Write" if disk.can_write else "Read"
        logger.info(
            "      [Latency] Avg %s Latency (%d samples)...", lat_type, self.latency_samples
        )
        latency = self.average_latency_ms(disk.latency_path, write=disk.can_write)
        if latency is None:
            logger.error("      Latency test FAILED")
            return CheckResult(
                disk.path, STATUS_FAILED, f"W:{speed_w} R:{speed_r} | Latency: FAILED ({lat_type})"
            )

        detail = f"W:{speed_w} R:{speed_r} | Latency: {latency:.2f}ms ({lat_type})"
        if latency > self.threshold_ms:
            logger.error("      EXCEEDED (%.2fms)", latency)
            return CheckResult(disk.path, STATUS_FAILED, f"{detail} (High)")

        logger.info("      PASSED (%.2fms)", latency)
        return CheckResult(disk.path, STATUS_PASSED if read_ok else STATUS_FAILED, detail)


class CpuProbe:
    """Times SHA-256 over a zero-filled buffer."""

    def __init__(self, size_mb: int) -> None:
        """Initialise the probe with the amount of data to hash."""
        self.size_mb = size_mb

    def check(self) -> CheckResult:
        """Hash ``size_mb`` MiB of zeros.

        Returns:
            A PASSED CheckResult with the elapsed time.
        """
        logger.info("   -> Processing %d MB data ...", self.size_mb)
        block = bytes(MIB)
        digest = hashlib.sha256()
        start = time.perf_counter()
        for _ in range(self.size_mb):
            digest.update(block)
        digest.hexdigest()
        elapsed = time.perf_counter() - start
        logger.info("      Done (Time taken: %.3fs)", elapsed)
        return CheckResult(
            "SHA256", STATUS_PASSED, f"Processed {self.size_mb}MB in {elapsed:.3f}s"
        )
