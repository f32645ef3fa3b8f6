#!/usr/bin/env python3
"""Apply one action to a list of Proxmox VMs and containers.

Every ID is looked up in a single ``/cluster/resources`` query to find its
node and type (``qemu`` or ``lxc``), then the action is sent to
``/nodes/{node}/{type}/{vmid}/...``. Runs through local ``pvesh`` on a
cluster node, or through the HTTPS API when ``PVE_API_HOST`` and
``PVE_API_TOKEN`` are configured (``.env`` or environment).

Examples:
    cluster_vm.py vms.txt start
    cluster_vm.py vms.txt 'set --cpu host --cores 4'
    cluster_vm.py vms.txt 'set --cores 2'
    cluster_vm.py vms.txt 'migrate pve2'
"""

from __future__ import annotations

import argparse
from pathlib import Path

from fleetops.logger import logger, set_verbose
from fleetops.models import PveConnectionConfig
from fleetops.pve_actions import BatchActionRunner, read_vmid_list
from fleetops.pve_api import PveAPIError, make_client


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="Batch start/stop/reboot/migrate/configure Proxmox VMs and CTs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Actions:
  start | stop | reset | shutdown | suspend | resume | reboot
  set <--option value ...>     change VM/CT configuration
  migrate <target-node>        migrate to another node
  anything else                sent as-is below /nodes/{node}/{type}/{vmid}/
        """,
    )
    parser.add_argument("vmid_list_file", type=Path, help="File with one VM/CT ID per line.")
    parser.add_argument("action", help="Action or setting to apply, e.g. 'start'.")
    parser.add_argument("--env-file", default=".env", help="dotenv file with PVE_* settings.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output.")
    try:
        return parser.parse_args(argv)
    except SystemExit as e:
        # argparse uses 2 for usage errors
        if e.code == 2:  # noqa: PLR2004
            raise SystemExit(1) from None
        raise


def main(argv: list[str] | None = None) -> None:
    """Main entry point.

    Raises:
        SystemExit: With 1 on bad input, API failure, or when any ID failed.
    """
    args = parse_arguments(argv)
    set_verbose(args.verbose)

    try:
        vmids = read_vmid_list(args.vmid_list_file)
        config = PveConnectionConfig.from_dotenv(args.env_file)
        runner = BatchActionRunner(make_client(config))
        report = runner.run(vmids, args.action)
    except (FileNotFoundError, ValueError) as e:
        logger.error("Error: %s", e)
        raise SystemExit(1) from e
    except PveAPIError as e:
        logger.error("Proxmox API error (%s): %s", e.error_type, e)
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        logger.info("⏹️ Batch operation interrupted by user")
        raise SystemExit(130) from None

    raise SystemExit(report.exit_code)


if __name__ == "__main__":
    main()
