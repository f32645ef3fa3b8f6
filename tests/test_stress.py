"""Tests for rate parsing, process tracking and the burn-in phase."""

import os
import signal
import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from fleetops.models import BenchmarkConfig, BurnInConfig, NicTarget
from fleetops.stress import (
    BurnInPhase,
    ProcessTracker,
    download_url,
    parse_rate,
    sigterm_as_interrupt,
    stress_ng_burn_command,
    stress_ng_burnin_command,
)


class TestParseRate:
    @pytest.mark.parametrize(
        ("rate", "expected"),
        [
            ("100m", 104_857_600),
            ("10k", 10_240),
            ("1g", 1_073_741_824),
            ("1G", 1_073_741_824),
            ("512", 512),
            ("1.5k", 1536),
        ],
    )
    def test_values(self, rate, expected) -> None:
        assert parse_rate(rate) == expected

    @pytest.mark.parametrize("rate", ["", "fast", "10x", "-5m"])
    def test_unparseable_is_zero(self, rate) -> None:
        assert parse_rate(rate) == 0


def test_download_url() -> None:
    assert download_url(1024, 10).endswith("__down?bytes=10240")
    assert download_url(0, 300).endswith("bytes=1")


def test_burn_command_uses_config() -> None:
    config = BenchmarkConfig(burn_duration_sec=120, burn_in_mem_max="50%", hdd_workers=2)
    command = stress_ng_burn_command(config, Path("/tmp/burn"))
    assert command[0] == "stress-ng"
    assert "--timeout" in command
    assert command[command.index("--timeout") + 1] == "120s"
    assert command[command.index("--vm-bytes") + 1] == "50%"
    assert command[command.index("--temp-path") + 1] == "/tmp/burn"


def test_burnin_command(tmp_path) -> None:
    config = BurnInConfig(duration_hours=2, memory_limit="8G", work_dir=tmp_path, log_dir=tmp_path)
    command = stress_ng_burnin_command(config)
    assert command[command.index("--timeout") + 1] == "7200s"
    assert command[command.index("--vm-bytes") + 1] == "8G"
    assert "--verify" in command
    assert command[command.index("--log-file") + 1] == str(tmp_path / "stress_ng_raw.log")


class TestSigtermAsInterrupt:
    def test_sigterm_raises_keyboard_interrupt(self) -> None:
        previous = signal.getsignal(signal.SIGTERM)
        with pytest.raises(KeyboardInterrupt, match="SIGTERM"), sigterm_as_interrupt():
            os.kill(os.getpid(), signal.SIGTERM)
        assert signal.getsignal(signal.SIGTERM) is previous


class TestProcessTracker:
    def test_stop_all_terminates_running(self) -> None:
        tracker = ProcessTracker()
        process = tracker.start([sys.executable, "-c", "import time; time.sleep(30)"])
        tracker.stop_all()
        assert process.poll() is not None
        assert tracker.processes == []

    def test_guard_stops_on_exception(self) -> None:
        tracker = ProcessTracker()
        with pytest.raises(KeyboardInterrupt), tracker.guard():
            process = tracker.start([sys.executable, "-c", "import time; time.sleep(30)"])
            raise KeyboardInterrupt
        assert process.poll() is not None

    def test_kill_after_timeout(self) -> None:
        tracker = ProcessTracker()
        process = MagicMock()
        process.poll.return_value = None
        process.wait.side_effect = [subprocess.TimeoutExpired("x", 5), 0]
        tracker.processes.append(process)

        tracker.stop_all()

        process.terminate.assert_called_once()
        process.kill.assert_called_once()


class TestBurnInPhase:
    def make_phase(self, **overrides):
        config = BenchmarkConfig(burn_duration_sec=1, **overrides)
        tracker = MagicMock(spec=ProcessTracker)
        tracker.start.return_value.wait.return_value = 0
        return BurnInPhase(config, tracker), tracker

    @patch("fleetops.stress.command_exists", return_value=True)
    def test_download_started_for_nics(self, _exists) -> None:
        phase, tracker = self.make_phase(nic_targets=[NicTarget("eth0", "1.1.1.1")])
        phase.start_download()
        command = tracker.start.call_args.args[0]
        assert command[:2] == ["wget", "--limit-rate=100m"]
        assert command[-1].endswith(f"bytes={104_857_600}")

    @patch("fleetops.stress.command_exists", return_value=True)
    def test_no_download_without_nics(self, _exists) -> None:
        phase, tracker = self.make_phase(nic_targets=[])
        phase.start_download()
        tracker.start.assert_not_called()

    @patch("fleetops.stress.command_exists", return_value=True)
    def test_stress_ng_exit_code(self, _exists) -> None:
        phase, tracker = self.make_phase()
        tracker.start.return_value.wait.return_value = 2
        assert phase.run_stress() == 2
        assert tracker.start.call_args.args[0][0] == "stress-ng"

    @patch("fleetops.stress.command_exists", return_value=True)
    def test_interrupt_stops_stress_before_removing_temp_dir(self, _exists, tmp_path) -> None:
        phase, tracker = self.make_phase()
        tracker.start.return_value.wait.side_effect = KeyboardInterrupt
        events = []
        tracker.stop_all.side_effect = lambda: events.append("stop")

        def remove(*_args, **_kwargs) -> None:
            events.append("rmtree")

        with (
            patch("fleetops.stress.tempfile.mkdtemp", return_value=str(tmp_path)),
            patch("fleetops.stress.shutil.rmtree", side_effect=remove),
            pytest.raises(KeyboardInterrupt),
        ):
            phase.run_stress()
        assert events == ["stop", "rmtree"]

    @patch("fleetops.stress.time.sleep")
    @patch("fleetops.stress.cpu_count", return_value=3)
    @patch("fleetops.stress.command_exists", return_value=False)
    def test_fallback_per_cpu(self, _exists, _cpus, mock_sleep) -> None:
        phase, tracker = self.make_phase()
        assert phase.run_stress() == 0
        assert tracker.start.call_count == 3
        assert tracker.start.call_args.args[0] == ["sha256sum", "/dev/zero"]
        mock_sleep.assert_called_once_with(1)

    @patch("fleetops.stress.check_install_tool", return_value=True)
    @patch("fleetops.stress.command_exists", return_value=True)
    def test_run_installs_and_stops(self, _exists, mock_install) -> None:
        phase, tracker = self.make_phase(nic_targets=[])
        assert phase.run() == 0
        assert [c.args[0] for c in mock_install.call_args_list] == ["wget", "stress-ng"]
        tracker.stop_all.assert_called()
