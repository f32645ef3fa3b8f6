"""Tests for the benchmark runner's gating of raw writes and burn-in."""

import os
import signal
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

import hw_benchmark
from fleetops.models import STATUS_FAILED, STATUS_PASSED, BenchmarkConfig, CheckResult, NicTarget
from fleetops.probes import DiskProbe


@pytest.fixture
def config(tmp_path) -> BenchmarkConfig:
    return BenchmarkConfig(
        nic_targets=[NicTarget("eth0", "8.8.8.8")],
        test_targets=[str(tmp_path)],
        report_dir=tmp_path / "reports",
        burn_duration_sec=1,
    )


def stub_probes(runner, disk_status=STATUS_PASSED) -> None:
    runner.network_probe = MagicMock()
    runner.network_probe.check.return_value = CheckResult("eth0 -> 8.8.8.8", STATUS_PASSED, "ok")
    runner.disk_probe = MagicMock()
    runner.disk_probe.check.return_value = CheckResult("disk", disk_status, "d")
    runner.cpu_probe = MagicMock()
    runner.cpu_probe.check.return_value = CheckResult("SHA256", STATUS_PASSED, "c")


class TestBenchmarkRunner:
    def test_burn_in_after_success(self, config) -> None:
        runner = hw_benchmark.BenchmarkRunner(config)
        stub_probes(runner)
        with patch.object(runner, "run_burn_in", return_value=0) as burn:
            assert runner.run() == 0
        burn.assert_called_once()
        reports = list((config.report_dir).iterdir())
        assert len(reports) == 1
        assert reports[0].name.endswith("_Successful.txt")

    def test_no_burn_in_after_failure(self, config) -> None:
        prompt = MagicMock(return_value="")
        config.pause_on_failure = True
        runner = hw_benchmark.BenchmarkRunner(config, prompt=prompt)
        stub_probes(runner, disk_status=STATUS_FAILED)
        with patch.object(runner, "run_burn_in") as burn:
            assert runner.run() == 1
        burn.assert_not_called()
        prompt.assert_called_once()
        assert next(config.report_dir.iterdir()).name.endswith("_Failed.txt")

    def test_burn_in_disabled(self, config) -> None:
        config.enable_burn_in = False
        runner = hw_benchmark.BenchmarkRunner(config)
        stub_probes(runner)
        with patch.object(runner, "run_burn_in") as burn:
            assert runner.run() == 0
        burn.assert_not_called()

    def test_burn_in_failure_fails_run(self, config) -> None:
        runner = hw_benchmark.BenchmarkRunner(config)
        stub_probes(runner)
        with patch.object(runner, "run_burn_in", return_value=2):
            assert runner.run() == 1

    def test_no_targets_detected(self, config) -> None:
        config.test_targets = []
        runner = hw_benchmark.BenchmarkRunner(config)
        stub_probes(runner)
        with patch("hw_benchmark.detect_physical_disks", return_value=[]), patch.object(
            runner, "run_burn_in"
        ) as burn:
            assert runner.run() == 1
        burn.assert_not_called()
        assert runner.results.errors

    def test_detected_targets_used(self, config) -> None:
        config.test_targets = []
        runner = hw_benchmark.BenchmarkRunner(config)
        with patch("hw_benchmark.detect_physical_disks", return_value=["/dev/sdb"]):
            assert runner.resolve_targets() == ["/dev/sdb"]

    def test_sigterm_during_checks_removes_temp_files(self, config, tmp_path) -> None:
        runner = hw_benchmark.BenchmarkRunner(config)
        stub_probes(runner)
        runner.disk_probe = DiskProbe(1, 1, 20.0)
        previous = signal.getsignal(signal.SIGTERM)

        def measure_then_terminate(disk):
            Path(disk.data_path).write_bytes(b"x")
            Path(disk.latency_path).write_bytes(b"x")
            os.kill(os.getpid(), signal.SIGTERM)

        with (
            patch.object(runner.disk_probe, "_measure", side_effect=measure_then_terminate),
            pytest.raises(KeyboardInterrupt),
        ):
            runner.run()

        assert list(tmp_path.glob("test_*.tmp")) == []
        assert signal.getsignal(signal.SIGTERM) is previous

    def test_pause_without_terminal_input(self, config) -> None:
        config.pause_on_failure = True
        prompt = MagicMock(side_effect=EOFError)
        runner = hw_benchmark.BenchmarkRunner(config, prompt=prompt)
        stub_probes(runner, disk_status=STATUS_FAILED)
        assert runner.run() == 1
        prompt.assert_called_once()


class TestRawWriteConfirmation:
    def test_declined(self, config) -> None:
        runner = hw_benchmark.BenchmarkRunner(config, prompt=MagicMock(return_value="no"))
        with patch("hw_benchmark.Path.is_block_device", return_value=True):
            assert not runner.confirm_raw_write(["/dev/sdb"])

    def test_typed_yes(self, config) -> None:
        runner = hw_benchmark.BenchmarkRunner(config, prompt=MagicMock(return_value="YES\n"))
        with patch("hw_benchmark.Path.is_block_device", return_value=True):
            assert runner.confirm_raw_write(["/dev/sdb"])

    def test_no_terminal_input_declines(self, config) -> None:
        runner = hw_benchmark.BenchmarkRunner(config, prompt=MagicMock(side_effect=EOFError))
        with patch("hw_benchmark.Path.is_block_device", return_value=True):
            assert not runner.confirm_raw_write(["/dev/sdb"])

    def test_assume_yes_skips_prompt(self, config) -> None:
        prompt = MagicMock()
        runner = hw_benchmark.BenchmarkRunner(config, assume_yes=True, prompt=prompt)
        with patch("hw_benchmark.Path.is_block_device", return_value=True):
            assert runner.confirm_raw_write(["/dev/sdb"])
        prompt.assert_not_called()

    def test_read_only_needs_no_confirmation(self, config) -> None:
        config.allow_raw_write = False
        prompt = MagicMock()
        runner = hw_benchmark.BenchmarkRunner(config, prompt=prompt)
        with patch("hw_benchmark.Path.is_block_device", return_value=True):
            assert runner.confirm_raw_write(["/dev/sdb"])
        prompt.assert_not_called()

    def test_declined_aborts_before_checks(self, config) -> None:
        runner = hw_benchmark.BenchmarkRunner(config, prompt=MagicMock(return_value="n"))
        stub_probes(runner)
        with patch.object(runner, "confirm_raw_write", return_value=False):
            assert runner.run() == 1
        runner.disk_probe.check.assert_not_called()
        assert not config.report_dir.exists()


def test_main_bad_config_exits(clean_env, write_env) -> None:
    env_file = write_env(PING_COUNT="lots")
    with pytest.raises(SystemExit) as exc_info:
        hw_benchmark.main(["--env-file", str(env_file)])
    assert exc_info.value.code == 1
