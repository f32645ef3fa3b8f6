"""Shared fixtures for the fleet tool tests."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

SETTING_PREFIXES = ("NIC_", "TEST_", "ALLOW_", "ENABLE_", "BURN", "DL_", "LATENCY_",
                    "DISK_", "PING_", "CPU_", "TIMEZONE", "REPORT_", "PAUSE_", "FIO_",
                    "PVE_")  # fmt: skip


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every tool setting from the process environment."""
    for key in list(os.environ):
        if key.startswith(SETTING_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def write_env(tmp_path: Path):
    """Write a ``.env`` file from keyword settings and return its path."""

    def _write(**settings: str) -> Path:
        env_file = tmp_path / ".env"
        env_file.write_text(
            "".join(f"{key}={value}\n" for key, value in settings.items()), encoding="utf-8"
        )
        return env_file

    return _write

