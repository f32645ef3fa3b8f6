"""Batch VM/CT actions against a Proxmox cluster.

An action string such as ``start``, ``set --cores 4`` or ``migrate pve2`` is
parsed once, every listed ID is resolved to its node and type from a single
``/cluster/resources`` query, and the action is dispatched per ID.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .logger import logger
from .models import ResourceRef
from .pve_api import PveAPIError

if TYPE_CHECKING:
    from pathlib import Path

    from .pve_api import PveClient

POWER_ACTIONS = frozenset({"start", "stop", "reset", "shutdown", "suspend", "resume"})
SUPPORTED_TYPES = frozenset({"qemu", "lxc"})

KIND_CONFIG = "config"
KIND_POWER = "power"
KIND_REBOOT = "reboot"
KIND_MIGRATE = "migrate"
KIND_RAW = "raw"


@dataclass
class PveAction:
    """A parsed action: API verb, path below the resource and its arguments."""

    kind: str
    verb: str
    subpath: str
    args: list[str] = field(default_factory=list)

    @property
    def options(self) -> dict[str, str]:
        return parse_cli_options(self.args)

    def path_for(self, ref: ResourceRef) -> str:
        return f"{ref.base_path}/{self.subpath}"


def parse_cli_options(tokens: list[str]) -> dict[str, str]:
    """Convert ``--key value`` / ``--key=value`` / ``--flag`` tokens to a dict.

    A flag without a value becomes ``"1"``, which is how the API encodes
    booleans.

    Returns:
        Mapping of option names to values.

    Raises:
        ValueError: If a positional token appears where an option was expected.
    """
    options: dict[str, str] = {}
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if not token.startswith("-"):
            msg = f"Unexpected argument {token!r}; expected --option"
            raise ValueError(msg)
        key, sep, value = token.lstrip("-").partition("=")
        if sep:
            options[key] = value
        elif i + 1 < len(tokens) and not tokens[i + 1].startswith("--"):
            options[key] = tokens[i + 1]
            i += 1
        else:
            options[key] = "1"
        i += 1
    return options


def parse_action(action_string: str) -> PveAction:
    """Map an action string onto a Proxmox API call.

    Returns:
        The parsed PveAction. Unrecognised or unparseable strings, including
        ``migrate`` without exactly one target, fall through to a raw
        ``create`` on the path below the resource.

    Raises:
        ValueError: If the action string is empty.
    """
    if not action_string.strip():
        msg = "Action string is empty"
        raise ValueError(msg)

    try:
        tokens = shlex.split(action_string)
    except ValueError:
        tokens = []

    if tokens:
        head, rest = tokens[0], tokens[1:]
        if head == "set" and rest:
            return PveAction(KIND_CONFIG, "set", "config", rest)
        if head in POWER_ACTIONS and not rest:
            return PveAction(KIND_POWER, "create", f"status/{head}")
        if head == "reboot" and not rest:
            return PveAction(KIND_REBOOT, "create", "status/reboot")
        if head == "migrate" and len(rest) == 1:
            return PveAction(KIND_MIGRATE, "create", "migrate", ["--target", rest[0]])

    logger.warning("Unrecognized simple action '%s'. Trying raw mapping.", action_string)
    return PveAction(KIND_RAW, "create", action_string.strip().strip("/"))


def read_vmid_list(path: Path) -> list[str]:
    """Read VM/CT IDs, one per line, skipping blank lines and ``#`` comments.

    Returns:
        IDs in file order.

    Raises:
        FileNotFoundError: If the list does not exist.
    """
    if not path.is_file():
        msg = f"VMID list file '{path}' not found."
        raise FileNotFoundError(msg)
    ids = []
    for line in path.read_text(encoding="utf-8").splitlines():
        vmid = line.strip()
        if vmid and not vmid.startswith("#"):
            ids.append(vmid)
    return ids


def index_resources(resources: list[dict[str, Any]]) -> dict[str, ResourceRef]:
    """Index cluster resources by their VMID as a string.

    Entries without a VMID (nodes, storage, pools) are ignored.

    Returns:
        Mapping of VMID to ResourceRef.
    """
    index: dict[str, ResourceRef] = {}
    for item in resources:
        vmid = item.get("vmid")
        if vmid is None:
            continue
        index.setdefault(
            str(vmid),
            ResourceRef(
                vmid=str(vmid), node=str(item.get("node", "")), type=str(item.get("type", ""))
            ),
        )
    return index


@dataclass
class BatchReport:
    """Per-ID outcomes of one batch run."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        """Zero only when every listed ID was processed successfully."""
        return 1 if self.failed or self.skipped else 0


class BatchActionRunner:
    """Dispatches one action to a list of VM/CT IDs."""

    def __init__(self, client: PveClient) -> None:
        """Initialise the runner with an API backend."""
        self.client = client

    def fetch_resources(self) -> dict[str, ResourceRef]:
        """Query ``/cluster/resources`` once.

        Returns:
            Resources indexed by VMID.

        Raises:
            PveAPIError: If the query fails or returns something other than a list.
        """
        logger.info("Fetching cluster resources...")
        resources = self.client.get("/cluster/resources")
        if not isinstance(resources, list):
            msg = "Unexpected /cluster/resources response"
            raise PveAPIError(msg, "parse")
        return index_resources(resources)

    def dispatch(self, action: PveAction, ref: ResourceRef) -> Any:
        """Send ``action`` for one resource.

        Returns:
            The API response data (usually a task UPID).
        """
        path = action.path_for(ref)
        if action.verb == "set":
            return self.client.set(path, action.options, action.args)
        return self.client.create(path, action.options, action.args)

    def run(self, vmids: list[str], action_string: str) -> BatchReport:
        """Apply ``action_string`` to every ID in order.

        Returns:
            BatchReport with succeeded, failed and skipped IDs.
        """
        action = parse_action(action_string)
        index = self.fetch_resources()
        report = BatchReport()

        for vmid in vmids:
            ref = index.get(vmid)
            if ref is None:
                logger.error("Error: ID %s not found in cluster resources. Skipping.", vmid)
                report.skipped.append(vmid)
                continue
            if ref.type not in SUPPORTED_TYPES:
                logger.warning(
                    "ID %s has type '%s' which is not supported (only qemu or lxc). Skipping.",
                    vmid,
                    ref.type,
                )
                report.skipped.append(vmid)
                continue

            logger.info(
                "Processing %s ID: %s on Node: %s -> Action: %s",
                ref.type,
                vmid,
                ref.node,
                action_string,
            )
            try:
                result = self.dispatch(action, ref)
            except (PveAPIError, ValueError) as e:
                logger.error("Failed: %s (%s)", vmid, e)
                report.failed.append(vmid)
                continue
            if result:
                logger.debug("Response for %s: %s", vmid, result)
            logger.info("Success: %s", vmid)
            report.succeeded.append(vmid)

        logger.info(
            "Batch operation completed: %d succeeded, %d failed, %d skipped.",
            len(report.succeeded),
            len(report.failed),
            len(report.skipped),
        )
        return report
