"""Small JSON state file for remembering tool inputs between runs.

Each tool instance owns one key (e.g. ``ldap_pve_filter_state_v3`` or
``ldapsearch:lab``) in a single JSON document.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .logger import logger

DEFAULT_STATE_FILE = Path(
    os.getenv("FLEETOPS_STATE_FILE", "~/.config/fleetops/state.json")
).expanduser()


class StateStore:
    """Load and save per-tool state blobs."""

    def __init__(self, path: Path = DEFAULT_STATE_FILE) -> None:
        """Initialise the store backed by ``path``."""
        self.path = path

    def _read_all(self) -> dict[str, Any]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def load(self, key: str) -> dict[str, Any]:
        """Return the saved blob for ``key``, or an empty dict."""
        value = self._read_all().get(key)
        return value if isinstance(value, dict) else {}

    def save(self, key: str, value: dict[str, Any]) -> None:
        """Replace the blob for ``key`` and write the file."""
        data = self._read_all()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.debug("Saved state '%s' to %s", key, self.path)
