"""Tests for the pvesh and HTTPS API backends."""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest
import requests

from fleetops.models import PveConnectionConfig
from fleetops.pve_api import PveAPIError, PveshClient, ProxmoxHTTPClient, make_client


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestPveshClient:
    @patch("fleetops.pve_api.subprocess.run")
    def test_get_decodes_json(self, mock_run) -> None:
        mock_run.return_value = completed(stdout=json.dumps([{"vmid": 100}]))

        assert PveshClient().get("/cluster/resources") == [{"vmid": 100}]
        assert mock_run.call_args.args[0] == [
            "pvesh", "get", "/cluster/resources", "--output-format", "json",
        ]  # fmt: skip

    @patch("fleetops.pve_api.subprocess.run")
    def test_set_passes_cli_args(self, mock_run) -> None:
        mock_run.return_value = completed()
        result = PveshClient().set("/nodes/pve1/qemu/100/config", {"cores": "2"}, ["--cores", "2"])

        assert result is None
        assert mock_run.call_args.args[0][:5] == [
            "pvesh", "set", "/nodes/pve1/qemu/100/config", "--cores", "2",
        ]  # fmt: skip

    @patch("fleetops.pve_api.subprocess.run")
    def test_plain_text_output(self, mock_run) -> None:
        mock_run.return_value = completed(stdout="UPID:pve1:000A\n")
        assert PveshClient().create("/nodes/pve1/qemu/100/status/start", {}, []) == "UPID:pve1:000A"

    @patch("fleetops.pve_api.subprocess.run")
    def test_nonzero_exit(self, mock_run) -> None:
        mock_run.return_value = completed(returncode=255, stderr="VM 100 not running")
        with pytest.raises(PveAPIError, match="not running") as exc_info:
            PveshClient().create("/nodes/pve1/qemu/100/status/stop", {}, [])
        assert exc_info.value.error_type == "command"

    @patch("fleetops.pve_api.subprocess.run", side_effect=FileNotFoundError)
    def test_missing_pvesh(self, _mock_run) -> None:
        with pytest.raises(PveAPIError, match="PVE_API_HOST"):
            PveshClient().get("/cluster/resources")

    @patch(
        "fleetops.pve_api.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="pvesh", timeout=300),
    )
    def test_timeout(self, _mock_run) -> None:
        with pytest.raises(PveAPIError) as exc_info:
            PveshClient().get("/cluster/resources")
        assert exc_info.value.error_type == "timeout"


def make_response(status=200, payload=None, reason="OK"):
    response = MagicMock()
    response.ok = status < 400
    response.status_code = status
    response.reason = reason
    response.json.return_value = payload if payload is not None else {"data": None}
    return response


class TestProxmoxHTTPClient:
    def test_base_url_and_auth(self) -> None:
        client = ProxmoxHTTPClient("pve1.example.com", "root@pam!ops=abc")
        assert client.base_url == "https://pve1.example.com:8006/api2/json"
        assert client.session.headers["Authorization"] == "PVEAPIToken=root@pam!ops=abc"

    def test_explicit_port_kept(self) -> None:
        assert ProxmoxHTTPClient("10.0.0.1:443", "t").base_url == "https://10.0.0.1:443/api2/json"

    @pytest.mark.parametrize(
        ("host", "netloc"),
        [
            ("fd00::10", "[fd00::10]:8006"),
            ("[fd00::10]", "[fd00::10]:8006"),
            ("[fd00::10]:443", "[fd00::10]:443"),
        ],
    )
    def test_ipv6_hosts(self, host, netloc) -> None:
        assert ProxmoxHTTPClient(host, "t").base_url == f"https://{netloc}/api2/json"

    def test_verbs(self) -> None:
        client = ProxmoxHTTPClient("pve1", "t")
        client.session = MagicMock()
        client.session.request.return_value = make_response(payload={"data": "UPID:x"})

        assert client.create("/nodes/pve1/qemu/100/migrate", {"target": "pve2"}, []) == "UPID:x"
        method, url = client.session.request.call_args.args
        assert method == "POST"
        assert url == "https://pve1:8006/api2/json/nodes/pve1/qemu/100/migrate"
        assert client.session.request.call_args.kwargs["data"] == {"target": "pve2"}

        client.set("/nodes/pve1/qemu/100/config", {"cores": "2"}, [])
        assert client.session.request.call_args.args[0] == "PUT"

        client.get("/cluster/resources")
        assert client.session.request.call_args.args[0] == "GET"

    def test_error_response(self) -> None:
        client = ProxmoxHTTPClient("pve1", "t")
        client.session = MagicMock()
        client.session.request.return_value = make_response(
            status=400,
            reason="Parameter verification failed.",
            payload={"errors": {"cores": "value must be at least 1"}},
        )
        with pytest.raises(PveAPIError, match="cores: value must be at least 1"):
            client.set("/nodes/pve1/qemu/100/config", {"cores": "0"}, [])

    def test_connection_error(self) -> None:
        client = ProxmoxHTTPClient("pve1", "t")
        client.session = MagicMock()
        client.session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(PveAPIError) as exc_info:
            client.get("/cluster/resources")
        assert exc_info.value.error_type == "http"


def test_make_client() -> None:
    assert isinstance(make_client(PveConnectionConfig()), PveshClient)
    http = make_client(PveConnectionConfig(api_host="pve1", api_token="t", verify_ssl=False))
    assert isinstance(http, ProxmoxHTTPClient)
    assert http.session.verify is False
