"""Command transports for reading journals on the local machine or over SSH.

Only READ-ONLY journal commands are allowed through a transport. Anything that
could modify the journal (rotate, vacuum, flush, ...) is blocked before it is run.
"""

import shlex
import socket
import subprocess
from typing import Optional

import paramiko
import structlog

from ..config import SSHConfig

logger = structlog.get_logger(__name__)

SAFE_PROGRAMS = ("journalctl",)

FORBIDDEN_OPTIONS = (
    "--rotate",
    "--vacuum-size",
    "--vacuum-time",
    "--vacuum-files",
    "--flush",
    "--sync",
    "--relinquish-var",
    "--smart-relinquish-var",
    "--setup-keys",
    "--update-catalog",
)

LOCAL_ALIASES = {"localhost", "127.0.0.1", "::1", "."}


class TransportError(Exception):
    """A command could not be run on a host (connection, timeout or non-zero exit)."""


class ConnectError(TransportError):
    """The host could not be reached at all."""


class UnsafeCommandError(TransportError):
    """A command outside the read-only whitelist was requested."""


def check_safe_command(argv: list[str]) -> None:
    """Raise UnsafeCommandError unless argv is a read-only journal command."""
    if not argv or argv[0] not in SAFE_PROGRAMS:
        logger.error("BLOCKED: command not in safe programs list", command=" ".join(argv))
        raise UnsafeCommandError(f"Unsafe command blocked: {' '.join(argv)}")
    for arg in argv[1:]:
        option = arg.split("=", 1)[0]
        if option in FORBIDDEN_OPTIONS:
            logger.error("BLOCKED: forbidden option detected", command=" ".join(argv), forbidden_op=option)
            raise UnsafeCommandError(f"Unsafe command blocked: {' '.join(argv)}")


def local_hostname() -> str:
    return socket.gethostname()


def is_local_host(host: str) -> bool:
    name = (host or "").strip().lower()
    if not name or name in LOCAL_ALIASES:
        return True
    own = local_hostname().lower()
    return name == own or name == own.split(".", 1)[0]


class Transport:
    """Runs read-only commands on one host."""

    def __init__(self, host: str, timeout: float):
        self.host = host
        self.timeout = timeout

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    def run(self, argv: list[str]) -> str:
        check_safe_command(argv)
        return self._run(argv)

    def _run(self, argv: list[str]) -> str:
        raise NotImplementedError


class LocalTransport(Transport):
    """Runs commands as subprocesses on this machine."""

    def _run(self, argv: list[str]) -> str:
        logger.debug("Executing local command", command=" ".join(argv))
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise TransportError(f"command exited with {e.returncode}: {(e.stderr or '').strip()}") from e
        except subprocess.TimeoutExpired as e:
            raise TransportError(f"command timed out after {self.timeout}s") from e
        except OSError as e:
            raise TransportError(f"cannot run {argv[0]}: {e}") from e
        return result.stdout


class SSHTransport(Transport):
    """Runs commands on a remote host over one SSH connection."""

    def __init__(self, host: str, timeout: float, ssh: SSHConfig, client_factory=paramiko.SSHClient):
        super().__init__(host, timeout)
        self.ssh = ssh
        self._client_factory = client_factory
        self.ssh_client: Optional[paramiko.SSHClient] = None

    def connect(self) -> None:
        """Establish the SSH connection."""
        if self.ssh_client is not None:
            return
        client = self._client_factory()
        try:
            client.load_system_host_keys()
            if self.ssh.allow_unknown_hosts:
                client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            else:
                client.set_missing_host_key_policy(paramiko.RejectPolicy())

            logger.debug("Connecting to remote host", host=self.host, port=self.ssh.port)
            client.connect(
                hostname=self.host,
                port=self.ssh.port,
                username=self.ssh.username,
                key_filename=self.ssh.key_filename,
                timeout=self.ssh.connect_timeout,
                banner_timeout=self.ssh.connect_timeout,
                auth_timeout=self.ssh.connect_timeout,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise ConnectError(f"cannot connect to {self.host}: {e}") from e
        self.ssh_client = client

    def close(self) -> None:
        if self.ssh_client is not None:
            self.ssh_client.close()
            self.ssh_client = None
            logger.debug("Disconnected from remote host", host=self.host)

    def _run(self, argv: list[str]) -> str:
        self.connect()
        command = shlex.join(argv)
        logger.debug("Executing remote command", host=self.host, command=command)
        try:
            _stdin, stdout, stderr = self.ssh_client.exec_command(command, timeout=self.timeout)
            stdout_content = stdout.read().decode("utf-8", errors="replace")
            stderr_content = stderr.read().decode("utf-8", errors="replace")
            exit_code = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"command failed on {self.host}: {e}") from e

        if exit_code != 0:
            raise TransportError(f"command exited with {exit_code} on {self.host}: {stderr_content.strip()}")
        return stdout_content


def open_transport(host: str, timeout: float, ssh: SSHConfig) -> Transport:
    """Pick the local or SSH transport for a host."""
    if is_local_host(host):
        return LocalTransport(host, timeout)
    return SSHTransport(host, timeout, ssh)
