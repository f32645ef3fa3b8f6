"""Tests for action parsing and the batch VM/CT runner."""

import pytest

from fleetops.models import ResourceRef
from fleetops.pve_actions import (
    KIND_CONFIG,
    KIND_MIGRATE,
    KIND_POWER,
    KIND_RAW,
    KIND_REBOOT,
    BatchActionRunner,
    index_resources,
    parse_action,
    parse_cli_options,
    read_vmid_list,
)
from fleetops.pve_api import PveAPIError

RESOURCES = [
    {"id": "node/pve1", "type": "node", "node": "pve1"},
    {"id": "qemu/100", "vmid": 100, "type": "qemu", "node": "pve1"},
    {"id": "lxc/200", "vmid": 200, "type": "lxc", "node": "pve2"},
    {"id": "storage/pve1/local", "type": "storage", "node": "pve1"},
    {"id": "weird/300", "vmid": 300, "type": "openvz", "node": "pve1"},
]


class FakeClient:
    """Records API calls; paths in ``fail`` raise PveAPIError."""

    def __init__(self, resources=None, fail=()) -> None:
        self.resources = RESOURCES if resources is None else resources
        self.fail = set(fail)
        self.calls = []

    def get(self, path):
        self.calls.append(("get", path))
        return self.resources

    def _call(self, verb, path, options, args):
        self.calls.append((verb, path, options, args))
        if path in self.fail:
            msg = f"pvesh {verb} {path} failed (255): VM is locked"
            raise PveAPIError(msg, "command")
        return "UPID:pve1:0001"

    def set(self, path, options, args):
        return self._call("set", path, options, args)

    def create(self, path, options, args):
        return self._call("create", path, options, args)


class TestParseCliOptions:
    def test_pairs_and_flags(self) -> None:
        tokens = ["--cpu", "host", "--cores=4", "--onboot", "--memory", "2048"]
        assert parse_cli_options(tokens) == {
            "cpu": "host",
            "cores": "4",
            "onboot": "1",
            "memory": "2048",
        }

    def test_positional_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unexpected argument"):
            parse_cli_options(["cores", "4"])


class TestParseAction:
    @pytest.mark.parametrize("name", ["start", "stop", "reset", "shutdown", "suspend", "resume"])
    def test_power_actions(self, name) -> None:
        action = parse_action(name)
        assert (action.kind, action.verb) == (KIND_POWER, "create")
        assert action.subpath == f"status/{name}"

    def test_reboot(self) -> None:
        action = parse_action("reboot")
        assert (action.kind, action.subpath) == (KIND_REBOOT, "status/reboot")

    def test_set(self) -> None:
        action = parse_action("set --cpu host --cores 4")
        assert (action.kind, action.verb, action.subpath) == (KIND_CONFIG, "set", "config")
        assert action.args == ["--cpu", "host", "--cores", "4"]
        assert action.options == {"cpu": "host", "cores": "4"}

    def test_migrate(self) -> None:
        action = parse_action("migrate pve2")
        assert (action.kind, action.subpath) == (KIND_MIGRATE, "migrate")
        assert action.options == {"target": "pve2"}

    @pytest.mark.parametrize(
        ("text", "subpath"),
        [
            ("migrate", "migrate"),
            ("migrate a b", "migrate a b"),
            ("set --description 'abc", "set --description 'abc"),
        ],
    )
    def test_malformed_falls_back_to_raw(self, text, subpath) -> None:
        action = parse_action(text)
        assert (action.kind, action.verb, action.subpath) == (KIND_RAW, "create", subpath)

    def test_unknown_falls_back_to_raw(self) -> None:
        action = parse_action("snapshot")
        assert (action.kind, action.verb, action.subpath) == (KIND_RAW, "create", "snapshot")

    def test_empty(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            parse_action("   ")

    def test_path_for(self) -> None:
        ref = ResourceRef("100", "pve1", "qemu")
        assert parse_action("start").path_for(ref) == "/nodes/pve1/qemu/100/status/start"


def test_read_vmid_list(tmp_path) -> None:
    vmids = tmp_path / "vms.txt"
    vmids.write_text("100\n\n# web tier\n 200 \n", encoding="utf-8")
    assert read_vmid_list(vmids) == ["100", "200"]


def test_index_resources_keys_by_string() -> None:
    index = index_resources(RESOURCES)
    assert set(index) == {"100", "200", "300"}
    assert index["200"] == ResourceRef("200", "pve2", "lxc")


class TestBatchActionRunner:
    def test_start_dispatched_per_id(self) -> None:
        client = FakeClient()
        report = BatchActionRunner(client).run(["100", "200"], "start")

        assert client.calls == [
            ("get", "/cluster/resources"),
            ("create", "/nodes/pve1/qemu/100/status/start", {}, []),
            ("create", "/nodes/pve2/lxc/200/status/start", {}, []),
        ]
        assert report.succeeded == ["100", "200"]
        assert report.exit_code == 0

    def test_set_uses_config_path(self) -> None:
        client = FakeClient()
        BatchActionRunner(client).run(["100"], "set --cores 2")
        assert client.calls[-1] == (
            "set",
            "/nodes/pve1/qemu/100/config",
            {"cores": "2"},
            ["--cores", "2"],
        )

    def test_unknown_and_unsupported_ids_skipped(self) -> None:
        client = FakeClient()
        report = BatchActionRunner(client).run(["999", "300", "100"], "stop")

        assert report.skipped == ["999", "300"]
        assert report.succeeded == ["100"]
        assert report.exit_code == 1
        assert len(client.calls) == 2

    def test_failure_continues(self) -> None:
        client = FakeClient(fail={"/nodes/pve1/qemu/100/migrate"})
        report = BatchActionRunner(client).run(["100", "200"], "migrate pve3")

        assert report.failed == ["100"]
        assert report.succeeded == ["200"]
        assert client.calls[-1][2] == {"target": "pve3"}

    def test_bare_migrate_sent_raw_to_every_id(self) -> None:
        client = FakeClient()
        report = BatchActionRunner(client).run(["100", "200"], "migrate")

        assert client.calls[1:] == [
            ("create", "/nodes/pve1/qemu/100/migrate", {}, []),
            ("create", "/nodes/pve2/lxc/200/migrate", {}, []),
        ]
        assert report.succeeded == ["100", "200"]

    def test_bad_resources_response(self) -> None:
        with pytest.raises(PveAPIError):
            BatchActionRunner(FakeClient(resources="oops")).run(["100"], "start")
