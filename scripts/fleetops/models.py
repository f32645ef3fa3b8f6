"""Data models and configuration classes for the fleet tools.

This module contains the dataclasses used across the tools, providing a
single source of truth for settings and result records. Settings are read
from a ``.env`` file and overlaid by process environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}

STATUS_PASSED = "PASSED"
STATUS_FAILED = "FAILED"
STATUS_SKIPPED = "SKIPPED"


class EnvSettings:
    """Typed access to ``.env`` values overlaid by ``os.environ``."""

    def __init__(self, env_file: str | Path = ".env") -> None:
        """Load the dotenv file (if present) and merge the process environment."""
        values = dotenv_values(env_file) if Path(env_file).is_file() else {}
        self.values: dict[str, str | None] = {**values, **os.environ}

    def get(self, key: str, default: str) -> str:
        value = self.values.get(key)
        return default if value is None else value.strip()

    def get_int(self, key: str, default: int) -> int:
        """Return an integer setting.

        Raises:
            ValueError: If the value is not an integer.
        """
        value = self.get(key, str(default))
        try:
            return int(value)
        except ValueError as e:
            msg = f"Invalid integer value for environment variable {key}: {value}"
            raise ValueError(msg) from e

    def get_float(self, key: str, default: float) -> float:
        """Return a float setting.

        Raises:
            ValueError: If the value is not a number.
        """
        value = self.get(key, str(default))
        try:
            return float(value)
        except ValueError as e:
            msg = f"Invalid numeric value for environment variable {key}: {value}"
            raise ValueError(msg) from e

    def get_bool(self, key: str, default: bool) -> bool:
        """Return a boolean setting (``true``/``false``, ``1``/``0``, ``yes``/``no``).

        Raises:
            ValueError: If the value is not a recognised boolean.
        """
        value = self.get(key, "true" if default else "false").lower()
        if value in TRUE_VALUES:
            return True
        if value in FALSE_VALUES:
            return False
        msg = f"Invalid boolean value for environment variable {key}: {value}"
        raise ValueError(msg)

    def get_list(self, key: str, default: list[str], sep: str = ",") -> list[str]:
        value = self.values.get(key)
        if value is None:
            return list(default)
        return [item.strip() for item in value.split(sep) if item.strip()]


@dataclass
class NicTarget:
    """A network interface and the address pinged through it."""

    nic: str
    ip: str

    @classmethod
    def parse(cls, pair: str) -> NicTarget:
        """Parse a ``nic,ip`` pair.

        Returns:
            The parsed NicTarget.

        Raises:
            ValueError: If the pair has no comma or an empty side.
        """
        nic, sep, ip = pair.partition(",")
        if not sep or not nic.strip() or not ip.strip():
            msg = f"Invalid NIC/IP pair (expected 'nic,ip'): {pair!r}"
            raise ValueError(msg)
        return cls(nic=nic.strip(), ip=ip.strip())

    def __str__(self) -> str:
        return f"{self.nic} -> {self.ip}"


@dataclass
class CheckResult:
    """Outcome of one health check line in the benchmark report."""

    name: str
    status: str
    detail: str = ""

    @property
    def ok(self) -> bool:
        """Skipped checks do not count as failures."""
        return self.status != STATUS_FAILED

    def __str__(self) -> str:
        return f"{self.name}: {self.detail}" if self.detail else f"{self.name}: {self.status}"


@dataclass
class BenchmarkConfig:
    """Configuration for the hardware benchmark and optional burn-in phase.

    ``test_targets`` may hold directories (file-level tests) or block devices
    (raw tests). An empty list means physical disks are detected at runtime.
    """

    nic_targets: list[NicTarget] = field(default_factory=list)
    test_targets: list[str] = field(default_factory=list)
    allow_raw_write: bool = True
    enable_burn_in: bool = True
    burn_duration_sec: int = 300
    dl_rate_limit: str = "100m"
    burn_in_mem_max: str = "80%"
    hdd_workers: int = 4
    latency_threshold_ms: float = 20.0
    disk_test_size_mb: int = 1024
    latency_test_count: int = 50
    ping_count: int = 5
    cpu_test_size_mb: int = 512
    timezone: str = "UTC"
    report_dir: Path = field(default_factory=lambda: Path())
    pause_on_failure: bool = False

    @classmethod
    def from_dotenv(cls, env_file: str | Path = ".env") -> BenchmarkConfig:
        """Create configuration from a .env file and the environment.

        Returns:
            BenchmarkConfig populated from ``env_file`` with defaults for
            anything unset.
        """
        env = EnvSettings(env_file)
        pairs = env.get_list("NIC_IP_PAIRS", ["eth0,8.8.8.8"], sep=";")
        return cls(
            nic_targets=[NicTarget.parse(pair) for pair in pairs],
            test_targets=env.get_list("TEST_TARGETS", []),
            allow_raw_write=env.get_bool("ALLOW_RAW_WRITE", True),
            enable_burn_in=env.get_bool("ENABLE_BURN_IN", True),
            burn_duration_sec=env.get_int("BURN_DURATION_SEC", 300),
            dl_rate_limit=env.get("DL_RATE_LIMIT", "100m"),
            burn_in_mem_max=env.get("BURN_IN_MEM_MAX", "80%"),
            hdd_workers=env.get_int("BURN_IN_HDD_WORKERS", 4),
            latency_threshold_ms=env.get_float("LATENCY_THRESHOLD_MS", 20.0),
            disk_test_size_mb=env.get_int("DISK_TEST_SIZE_MB", 1024),
            latency_test_count=env.get_int("LATENCY_TEST_COUNT", 50),
            ping_count=env.get_int("PING_COUNT", 5),
            cpu_test_size_mb=env.get_int("CPU_TEST_SIZE_MB", 512),
            timezone=env.get("TIMEZONE", "UTC"),
            report_dir=Path(env.get("REPORT_DIR", ".")),
            pause_on_failure=env.get_bool("PAUSE_ON_FAILURE", False),
        )


@dataclass
class BurnInConfig:
    """Configuration for the standalone long-running burn-in test."""

    duration_hours: float = 72
    memory_limit: str = "20G"
    vm_workers: int = 2
    hdd_workers: int = 1
    timezone: str = "UTC"
    work_dir: Path = field(default_factory=lambda: Path("/tmp/burnin_workspace"))  # noqa: S108
    log_dir: Path = field(default_factory=lambda: Path())

    @property
    def duration_sec(self) -> int:
        return int(self.duration_hours * 3600)

    @property
    def raw_log(self) -> Path:
        """Path of the temporary stress-ng log included in the report."""
        return self.log_dir / "stress_ng_raw.log"

    @classmethod
    def from_dotenv(cls, env_file: str | Path = ".env") -> BurnInConfig:
        """Create configuration from a .env file and the environment.

        Returns:
            BurnInConfig populated from ``env_file``.
        """
        env = EnvSettings(env_file)
        return cls(
            duration_hours=env.get_float("BURNIN_DURATION_HOURS", 72),
            memory_limit=env.get("BURNIN_MEMORY_LIMIT", "20G"),
            vm_workers=env.get_int("BURNIN_VM_WORKERS", 2),
            hdd_workers=env.get_int("BURNIN_HDD_WORKERS", 1),
            timezone=env.get("TIMEZONE", "UTC"),
            work_dir=Path(env.get("BURNIN_WORK_DIR", "/tmp/burnin_workspace")),  # noqa: S108
            log_dir=Path(env.get("BURNIN_LOG_DIR", ".")),
        )


@dataclass
class FioConfig:
    """Parameters for the multi-disk fio stress run."""

    io_depth: int = 128
    num_jobs: int = 128
    runtime: int = 600
    block_size: str = "4k"
    rw_mix_read: int = 100
    output_dir: Path = field(default_factory=lambda: Path())

    @classmethod
    def from_dotenv(cls, env_file: str | Path = ".env") -> FioConfig:
        """Create configuration from a .env file and the environment.

        Returns:
            FioConfig populated from ``env_file``.
        """
        env = EnvSettings(env_file)
        return cls(
            io_depth=env.get_int("FIO_IO_DEPTH", 128),
            num_jobs=env.get_int("FIO_NUM_JOBS", 128),
            runtime=env.get_int("FIO_RUNTIME", 600),
            block_size=env.get("FIO_BLOCK_SIZE", "4k"),
            rw_mix_read=env.get_int("FIO_RWMIXREAD", 100),
            output_dir=Path(env.get("FIO_OUTPUT_DIR", ".")),
        )


@dataclass
class PveConnectionConfig:
    """How to reach the Proxmox management API.

    Without ``api_host`` the local ``pvesh`` CLI is used, which only works on
    a cluster node.
    """

    api_host: str | None = None
    api_token: str | None = None
    verify_ssl: bool = True
    timeout: int = 30

    @property
    def use_http(self) -> bool:
        return bool(self.api_host)

    @classmethod
    def from_dotenv(cls, env_file: str | Path = ".env") -> PveConnectionConfig:
        """Create configuration from a .env file and the environment.

        Returns:
            PveConnectionConfig populated from ``env_file``.

        Raises:
            ValueError: If an API host is configured without a token.
        """
        env = EnvSettings(env_file)
        api_host = env.get("PVE_API_HOST", "") or None
        api_token = env.get("PVE_API_TOKEN", "") or None
        if api_host and not api_token:
            msg = "Missing required environment variable: PVE_API_TOKEN"
            raise ValueError(msg)
        return cls(
            api_host=api_host,
            api_token=api_token,
            verify_ssl=env.get_bool("PVE_VERIFY_SSL", True),
            timeout=env.get_int("PVE_TIMEOUT", 30),
        )


@dataclass
class ResourceRef:
    """Where a VM or container lives in the cluster."""

    vmid: str
    node: str
    type: str

    @property
    def base_path(self) -> str:
        """API path prefix, e.g. ``/nodes/pve1/qemu/100``."""
        return f"/nodes/{self.node}/{self.type}/{self.vmid}"
