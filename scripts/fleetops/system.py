"""Local system helpers: tool installation, privilege checks and host facts."""

from __future__ import annotations

import os
import platform
import shutil
import subprocess
from pathlib import Path

from .logger import logger

OS_RELEASE = Path("/etc/os-release")


def command_exists(tool: str) -> bool:
    return shutil.which(tool) is not None


def check_install_tool(tool: str, package: str | None = None) -> bool:
    """Install ``tool`` with apt or yum when it is missing.

    Returns:
        True if the tool is available afterwards.
    """
    if command_exists(tool):
        return True

    package = package or tool
    logger.info("   -> Tool '%s' not found. Installing %s...", tool, package)
    if command_exists("apt-get"):
        env = {**os.environ, "DEBIAN_FRONTEND": "noninteractive"}
        commands = [["apt-get", "update", "-qq"], ["apt-get", "install", "-y", "-qq", package]]
    elif command_exists("yum"):
        env = None
        commands = [["yum", "install", "-y", "-q", package]]
    else:
        logger.warning("   -> No supported package manager found (apt/yum)")
        return False

    for command in commands:
        result = subprocess.run(command, check=False, capture_output=True, text=True, env=env)
        if result.returncode != 0:
            logger.warning("   -> '%s' failed: %s", " ".join(command), result.stderr.strip())
            break

    if not command_exists(tool):
        logger.warning("   -> %s is still unavailable after installation attempt", tool)
        return False
    return True


def require_root() -> None:
    """Refuse to continue unless running as root.

    Raises:
        PermissionError: If the effective user is not root.
    """
    if os.geteuid() != 0:
        msg = "This script must be run as root."
        raise PermissionError(msg)


def capture(command: list[str], timeout: int = 10) -> str:
    """Run a command and return its stripped stdout, or an empty string on failure."""
    try:
        result = subprocess.run(
            command, check=False, capture_output=True, text=True, timeout=timeout
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Command %s failed: %s", command, e)
        return ""
    return result.stdout.strip() if result.returncode == 0 else ""


def os_pretty_name(os_release: Path = OS_RELEASE) -> str:
    """Return ``PRETTY_NAME`` from os-release, or ``unknown``."""
    try:
        lines = os_release.read_text(encoding="utf-8").splitlines()
    except OSError:
        return "unknown"
    for line in lines:
        key, _, value = line.partition("=")
        if key == "PRETTY_NAME":
            return value.strip().strip('"')
    return "unknown"


def host_facts() -> dict[str, str]:
    """Collect hostname, OS and kernel for report headers."""
    return {
        "hostname": platform.node() or "unknown",
        "os": os_pretty_name(),
        "kernel": platform.release() or "unknown",
    }


def cpu_count() -> int:
    return os.cpu_count() or 1
