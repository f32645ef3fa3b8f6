"""Sequential fan-out of one remote action across a host list.

Hosts are processed strictly in file order, one action per host. A failure on
one host is logged and recorded, and the run moves on to the next host.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from .logger import logger
from .ssh_session import SSHCommandError, SSHSession

if TYPE_CHECKING:
    from collections.abc import Callable


class RemoteSession(Protocol):
    """The subset of SSHSession used by the runner."""

    def __enter__(self) -> RemoteSession: ...

    def __exit__(self, *exc_info: object) -> None: ...

    def run_script(self, script: str) -> int: ...

    def put_file(self, local_path: Path, remote_dir: str) -> str: ...


@dataclass
class HostOutcome:
    """Result of the remote action on a single host."""

    host: str
    ok: bool
    detail: str = ""


@dataclass
class FanoutSummary:
    """All per-host outcomes of one fan-out run."""

    action: str
    outcomes: list[HostOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [o.host for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[str]:
        return [o.host for o in self.outcomes if not o.ok]

    @property
    def exit_code(self) -> int:
        """Zero only when every host succeeded."""
        return 1 if self.failed else 0

    def log(self) -> None:
        """Log the aggregate result of the run."""
        logger.info(
            "%s process completed: %d succeeded, %d failed.",
            self.action,
            len(self.succeeded),
            len(self.failed),
        )
        if self.failed:
            logger.error("Failed hosts: %s", ", ".join(self.failed))


def read_host_list(path: Path) -> list[str]:
    """Read a newline-delimited host list.

    Returns:
        Non-empty, stripped lines in file order.

    Raises:
        FileNotFoundError: If the host list does not exist.
    """
    if not path.is_file():
        msg = f"Host list file '{path}' not found."
        raise FileNotFoundError(msg)
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip()]


class FanoutRunner:
    """Runs one remote action per host, sequentially."""

    def __init__(self, session_factory: Callable[[str], RemoteSession] = SSHSession) -> None:
        """Initialise the runner with a factory creating one session per host."""
        self.session_factory = session_factory

    def _run(
        self, action: str, hosts: list[str], step: Callable[[RemoteSession], str]
    ) -> FanoutSummary:
        summary = FanoutSummary(action=action)
        for host in hosts:
            logger.info("  -> %s on %s...", action, host)
            try:
                with self.session_factory(host) as session:
                    detail = step(session)
            except Exception as e:
                logger.error("     Error: %s failed on %s: %s", action, host, e)
                summary.outcomes.append(HostOutcome(host=host, ok=False, detail=str(e)))
                continue
            logger.info("     Successfully completed on %s.", host)
            summary.outcomes.append(HostOutcome(host=host, ok=True, detail=detail))
        summary.log()
        return summary

    def copy_file(self, hosts: list[str], source: Path) -> FanoutSummary:
        """Copy ``source`` to the same directory on every host.

        Returns:
            Summary of per-host outcomes.

        Raises:
            FileNotFoundError: If the source file does not exist.
        """
        if not source.is_file():
            msg = f"Source file '{source}' not found."
            raise FileNotFoundError(msg)
        remote_dir = posixpath.dirname(source.as_posix()) or "."
        logger.info("Copying '%s' to %d hosts at '%s'...", source, len(hosts), remote_dir)

        def step(session: RemoteSession) -> str:
            return session.put_file(source, remote_dir)

        return self._run("Copy", hosts, step)

    def exec_script(self, hosts: list[str], commands_file: Path) -> FanoutSummary:
        """Run the commands in ``commands_file`` on every host via ``bash -s``.

        Returns:
            Summary of per-host outcomes.

        Raises:
            FileNotFoundError: If the commands file does not exist.
        """
        if not commands_file.is_file():
            msg = f"Commands file '{commands_file}' not found."
            raise FileNotFoundError(msg)
        script = commands_file.read_text(encoding="utf-8")
        logger.info("Executing commands from '%s' on %d hosts...", commands_file, len(hosts))

        def step(session: RemoteSession) -> str:
            exit_status = session.run_script(script)
            if exit_status != 0:
                raise SSHCommandError("bash -s", exit_status)
            return f"exit {exit_status}"

        return self._run("Execution", hosts, step)
