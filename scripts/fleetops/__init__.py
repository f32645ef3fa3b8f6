"""Helper modules for Proxmox VE fleet operations.

This package contains the building blocks shared by the command-line tools in
``scripts/``: SSH fan-out, Proxmox batch actions, hardware benchmark probes,
burn-in load control, report writing and LDAP filter helpers.
"""

from __future__ import annotations
