"""Clients for the Proxmox VE management API.

Two interchangeable backends expose the same ``get``/``set``/``create`` calls:
``PveshClient`` shells out to the ``pvesh`` CLI on a cluster node, while
``ProxmoxHTTPClient`` talks to ``https://<host>:8006/api2/json`` with an API
token from anywhere.
"""

from __future__ import annotations

import ipaddress
import json
import subprocess
from typing import TYPE_CHECKING, Any, Protocol

import requests

from .logger import logger

if TYPE_CHECKING:
    from .models import PveConnectionConfig

DEFAULT_PORT = 8006


class PveAPIError(Exception):
    """A Proxmox API call failed."""

    def __init__(self, message: str, error_type: str = "unknown") -> None:
        """Initialise PveAPIError with message and error type.

        Args:
            message: The user-friendly error message.
            error_type: The type of error for categorisation
                (``command``, ``http``, ``timeout``, ``parse``).
        """
        super().__init__(message)
        self.error_type = error_type


class PveClient(Protocol):
    """Common interface of both API backends."""

    def get(self, path: str) -> Any: ...

    def set(self, path: str, options: dict[str, str], args: list[str]) -> Any: ...

    def create(self, path: str, options: dict[str, str], args: list[str]) -> Any: ...


class PveshClient:
    """Runs ``pvesh`` locally; only works on a Proxmox node."""

    def __init__(self, executable: str = "pvesh", timeout: int = 300) -> None:
        """Initialise the client with the pvesh executable name."""
        self.executable = executable
        self.timeout = timeout

    def _run(self, verb: str, path: str, args: list[str]) -> Any:
        """Run one pvesh call and decode its JSON output.

        Returns:
            Decoded JSON data, or the raw text for non-JSON output.

        Raises:
            PveAPIError: If pvesh fails or times out.
        """
        command = [self.executable, verb, path, *args, "--output-format", "json"]
        logger.debug("[pvesh] %s", " ".join(command))
        try:
            result = subprocess.run(
                command, check=False, capture_output=True, text=True, timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            msg = f"pvesh {verb} {path} timed out after {self.timeout}s"
            raise PveAPIError(msg, "timeout") from e
        except FileNotFoundError as e:
            msg = f"'{self.executable}' not found - run on a Proxmox node or set PVE_API_HOST"
            raise PveAPIError(msg, "command") from e

        if result.returncode != 0:
            msg = f"pvesh {verb} {path} failed ({result.returncode}): {result.stderr.strip()}"
            raise PveAPIError(msg, "command")

        output = result.stdout.strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError:
            return output

    def get(self, path: str) -> Any:
        return self._run("get", path, [])

    def set(self, path: str, options: dict[str, str], args: list[str]) -> Any:  # noqa: ARG002
        return self._run("set", path, args)

    def create(self, path: str, options: dict[str, str], args: list[str]) -> Any:  # noqa: ARG002
        return self._run("create", path, args)


def api_netloc(host: str, default_port: int = DEFAULT_PORT) -> str:
    """Add the default API port to ``host`` unless it already has one.

    Bare IPv6 literals are bracketed; ``[addr]:port`` is kept as given.

    Returns:
        ``host:port`` suitable for an https URL.
    """
    try:
        ipaddress.IPv6Address(host)
    except ValueError:
        pass
    else:
        return f"[{host}]:{default_port}"
    if host.startswith("["):
        return host if "]:" in host else f"{host}:{default_port}"
    return host if ":" in host else f"{host}:{default_port}"


class ProxmoxHTTPClient:
    """Direct HTTPS API implementation using an API token."""

    def __init__(
        self, host: str, token: str, verify_ssl: bool = True, timeout: int = 30
    ) -> None:
        """Initialise the HTTP client.

        Args:
            host: Node or cluster address, optionally with ``:port``.
            token: API token in ``user@realm!tokenid=secret`` format.
            verify_ssl: Whether to verify the server certificate.
            timeout: Request timeout in seconds.
        """
        self.base_url = f"https://{api_netloc(host)}/api2/json"
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"Authorization": f"PVEAPIToken={token}"})
        self.session.verify = verify_ssl

    @classmethod
    def from_config(cls, config: PveConnectionConfig) -> ProxmoxHTTPClient:
        """Build a client from connection settings.

        Returns:
            A configured ProxmoxHTTPClient.
        """
        return cls(
            host=config.api_host or "",
            token=config.api_token or "",
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
        )

    def _request(self, method: str, path: str, options: dict[str, str] | None = None) -> Any:
        """Send one API request.

        Returns:
            The ``data`` member of the JSON response.

        Raises:
            PveAPIError: On transport errors, timeouts or non-2xx responses.
        """
        url = f"{self.base_url}{path}"
        logger.debug("[API] %s %s %s", method, url, options or "")
        try:
            response = self.session.request(method, url, data=options, timeout=self.timeout)
        except requests.Timeout as e:
            msg = f"{method} {path} timed out after {self.timeout}s"
            raise PveAPIError(msg, "timeout") from e
        except requests.RequestException as e:
            msg = f"{method} {path} failed: {e}"
            raise PveAPIError(msg, "http") from e

        if not response.ok:
            raise PveAPIError(self._parse_api_error(response), "http")

        try:
            return response.json().get("data")
        except (json.JSONDecodeError, AttributeError) as e:
            msg = f"Invalid JSON response from {method} {path}"
            raise PveAPIError(msg, "parse") from e

    def _parse_api_error(self, response: requests.Response) -> str:
        """Turn a failed response into a readable message.

        Returns:
            A user-friendly error message.
        """
        reason = response.reason or "error"
        try:
            errors = response.json().get("errors")
        except (json.JSONDecodeError, AttributeError):
            return f"HTTP {response.status_code} {reason}: {response.text.strip()}"
        if errors:
            details = "; ".join(f"{key}: {value}" for key, value in errors.items())
            return f"HTTP {response.status_code} {reason} ({details})"
        return f"HTTP {response.status_code} {reason}"

    def get(self, path: str) -> Any:
        return self._request("GET", path)

    def set(self, path: str, options: dict[str, str], args: list[str]) -> Any:  # noqa: ARG002
        return self._request("PUT", path, options)

    def create(self, path: str, options: dict[str, str], args: list[str]) -> Any:  # noqa: ARG002
        return self._request("POST", path, options)


def make_client(config: PveConnectionConfig) -> PveClient:
    """Pick the HTTP backend when an API host is configured, else local pvesh.

    Returns:
        A client implementing ``get``/``set``/``create``.
    """
    if config.use_http:
        logger.debug("Using Proxmox HTTP API at %s", config.api_host)
        return ProxmoxHTTPClient.from_config(config)
    logger.debug("Using local pvesh")
    return PveshClient()
