"""SSH session management for remote command execution and file transfer.

This module wraps a Paramiko client for one host of the fan-out runner. It
resolves targets the way the ``ssh`` command does (``~/.ssh/config``, agent,
default keys), pipes scripts to ``bash -s``, streams output into the log and
uploads files over SFTP while preserving times and modes.
"""

from __future__ import annotations

import posixpath
import select
import shlex
import time
from dataclasses import dataclass
from pathlib import Path

import paramiko

from .logger import logger

DEFAULT_SSH_PORT = 22
SSH_CONFIG_PATH = Path("~/.ssh/config").expanduser()


class SSHCommandError(RuntimeError):
    """A remote command finished with a non-zero exit status."""

    def __init__(self, command: str, exit_status: int) -> None:
        """Initialise with the failing command and its exit status."""
        super().__init__(f"Command '{command}' failed with exit code {exit_status}.")
        self.command = command
        self.exit_status = exit_status


@dataclass
class SSHTarget:
    """Connection parameters resolved from a host-list entry."""

    hostname: str
    port: int = DEFAULT_SSH_PORT
    username: str | None = None
    key_filenames: list[str] | None = None

    @classmethod
    def parse(cls, entry: str, ssh_config: paramiko.SSHConfig | None = None) -> SSHTarget:
        """Parse ``[user@]host[:port]`` and apply matching ``~/.ssh/config`` options.

        Explicit user and port in the entry win over the config file.

        Returns:
            The resolved SSHTarget.

        Raises:
            ValueError: If the entry has no host or an invalid port.
        """
        user, _, host = entry.strip().rpartition("@")
        port: int | None = None
        if host.count(":") == 1:
            host, _, port_text = host.partition(":")
            try:
                port = int(port_text)
            except ValueError as e:
                msg = f"Invalid port in host entry: {entry!r}"
                raise ValueError(msg) from e
        if not host:
            msg = f"Invalid host entry: {entry!r}"
            raise ValueError(msg)

        options = ssh_config.lookup(host) if ssh_config else {"hostname": host}
        return cls(
            hostname=options.get("hostname", host),
            port=port or int(options.get("port", DEFAULT_SSH_PORT)),
            username=user or options.get("user"),
            key_filenames=options.get("identityfile"),
        )


def load_ssh_config(path: Path = SSH_CONFIG_PATH) -> paramiko.SSHConfig | None:
    """Load the user's OpenSSH client config if it exists.

    Returns:
        The parsed config, or None when the file is absent.
    """
    if not path.is_file():
        return None
    return paramiko.SSHConfig.from_path(str(path))


class SSHSession:
    """Manages one SSH connection for command execution and file transfer."""

    def __init__(self, entry: str, timeout: int = 30) -> None:
        """Initialise SSH session parameters for a host-list entry."""
        self.entry = entry
        self.timeout = timeout
        self.target = SSHTarget.parse(entry, load_ssh_config())
        self.client: paramiko.SSHClient | None = None
        self.sftp: paramiko.SFTPClient | None = None

    def __enter__(self) -> SSHSession:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def connect(self) -> None:
        """Establish SSH connection using Paramiko.

        Raises:
            RuntimeError: If the connection fails.
        """
        if self.client:
            transport = self.client.get_transport()
            if transport and transport.is_active():
                logger.debug("SSH session to %s already connected.", self.entry)
                return

        logger.debug(
            "Establishing SSH connection to %s@%s:%s",
            self.target.username or "<default>",
            self.target.hostname,
            self.target.port,
        )
        try:
            self.client = paramiko.SSHClient()
            self.client.load_system_host_keys()
            self.client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            self.client.connect(
                hostname=self.target.hostname,
                port=self.target.port,
                username=self.target.username,
                key_filename=self.target.key_filenames,
                timeout=self.timeout,
                auth_timeout=self.timeout,
                banner_timeout=self.timeout,
            )
        except paramiko.AuthenticationException as e:
            msg = f"Authentication failed for {self.entry}: {e}"
            raise RuntimeError(msg) from e
        except paramiko.SSHException as e:
            msg = f"SSH connection to {self.entry} failed: {e}"
            raise RuntimeError(msg) from e
        except OSError as e:
            msg = f"Failed to connect to {self.entry}: {e}"
            raise RuntimeError(msg) from e
        logger.debug("SSH connection to %s established.", self.entry)

    def _require_client(self) -> paramiko.SSHClient:
        """Return the connected client, connecting on first use.

        Raises:
            RuntimeError: If the SSH session is not properly initialised.
        """
        if not self.client:
            self.connect()
        if not self.client:
            msg = "SSH session is not properly initialised."
            raise RuntimeError(msg)
        return self.client

    def execute_command(self, command: str) -> tuple[int, str, str]:
        """Execute a command and capture its output.

        Returns:
            Tuple of (exit_status, stdout, stderr).
        """
        client = self._require_client()
        logger.debug("Executing command on %s: %s", self.entry, command)
        _stdin, stdout, stderr = client.exec_command(command, timeout=self.timeout)
        output = stdout.read().decode("utf-8", errors="replace")
        error_output = stderr.read().decode("utf-8", errors="replace")
        exit_status = stdout.channel.recv_exit_status()
        logger.debug(
            "SSH Response [exit=%d]: stdout=%r stderr=%r",
            exit_status,
            output[:500],
            error_output[:500],
        )
        return exit_status, output, error_output

    def run_script(self, script: str) -> int:
        """Feed ``script`` to ``bash -s`` on the remote host, streaming its output.

        Returns:
            The remote exit status.
        """
        client = self._require_client()
        logger.debug("Running %d-byte script on %s via bash -s", len(script), self.entry)
        stdin, stdout, _stderr = client.exec_command("bash -s")
        channel = stdout.channel
        stdin.write(script)
        stdin.flush()
        channel.shutdown_write()

        self._stream_channel(channel)
        return channel.recv_exit_status()

    def _stream_channel(self, channel: paramiko.Channel) -> None:
        """Log stdout lines as info and stderr lines as warnings until the command exits."""
        buffers = {False: "", True: ""}

        def drain(is_stderr: bool) -> None:
            reader = channel.recv_stderr if is_stderr else channel.recv
            chunk = reader(4096).decode("utf-8", errors="replace")
            *lines, buffers[is_stderr] = (buffers[is_stderr] + chunk).split("\n")
            for line in lines:
                self._log_output_line(line, is_stderr)

        while (
            not channel.exit_status_ready() or channel.recv_ready() or channel.recv_stderr_ready()
        ):
            rlist, _, _ = select.select([channel], [], [], 0.1)
            if rlist or channel.recv_ready() or channel.recv_stderr_ready():
                if channel.recv_ready():
                    drain(is_stderr=False)
                if channel.recv_stderr_ready():
                    drain(is_stderr=True)
            elif not channel.exit_status_ready():
                time.sleep(0.1)

        for is_stderr, rest in buffers.items():
            self._log_output_line(rest, is_stderr)

    def _log_output_line(self, line: str, is_stderr: bool) -> None:
        line = line.rstrip()
        if not line:
            return
        if is_stderr:
            logger.warning("     [%s] %s", self.entry, line)
        else:
            logger.info("     [%s] %s", self.entry, line)

    def ensure_remote_dir(self, remote_dir: str) -> bool:
        """Create ``remote_dir`` with ``sudo mkdir -p``.

        Returns:
            True if the directory was created or already existed.
        """
        exit_status, _out, err = self.execute_command(f"sudo mkdir -p {shlex.quote(remote_dir)}")
        if exit_status != 0:
            logger.warning(
                "     Could not create %s on %s (exit %d): %s",
                remote_dir,
                self.entry,
                exit_status,
                err.strip(),
            )
            return False
        return True

    def put_file(self, local_path: Path, remote_dir: str) -> str:
        """Upload ``local_path`` into ``remote_dir`` preserving times and mode.

        Returns:
            The remote file path.

        Raises:
            RuntimeError: If the transfer fails.
        """
        client = self._require_client()
        self.ensure_remote_dir(remote_dir)
        if not self.sftp:
            self.sftp = client.open_sftp()

        remote_path = posixpath.join(remote_dir, local_path.name)
        stat = local_path.stat()
        logger.debug("Uploading %s to %s:%s", local_path, self.entry, remote_path)
        try:
            self.sftp.put(str(local_path), remote_path)
            self.sftp.utime(remote_path, (stat.st_atime, stat.st_mtime))
            self.sftp.chmod(remote_path, stat.st_mode & 0o7777)
        except (OSError, paramiko.SSHException) as e:
            msg = f"Failed to copy {local_path} to {self.entry}:{remote_path}: {e}"
            raise RuntimeError(msg) from e
        return remote_path

    def close(self) -> None:
        """Close the SSH and SFTP sessions."""
        if self.sftp:
            self.sftp.close()
            self.sftp = None
        if self.client:
            self.client.close()
            self.client = None
