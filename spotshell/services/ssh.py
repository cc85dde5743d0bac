"""SSH reachability checks and the interactive shell process."""

from __future__ import annotations

import logging
import signal
import socket
import subprocess
import threading
from pathlib import Path

import paramiko

from spotshell.constants import SESSION_TERMINATE_TIMEOUT_SECONDS, TCP_PROBE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


def probe_tcp(host: str, port: int, timeout: float = TCP_PROBE_TIMEOUT_SECONDS) -> bool:
    """Return True if a TCP connection to ``host:port`` succeeds."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as e:
        logger.debug("TCP probe of %s:%d failed: %s", host, port, e)
        return False


class SSHReadinessProbe:
    """Check that the instance accepts our key, and pin its host key.

    A listening port alone is not enough: sshd starts before the boot
    scripts have installed the authorized key.

    Parameters
    ----------
    host : str
        Instance public address
    key_file : Path
        Private key registered with the provider
    username : str
        Login user
    known_hosts : Path
        File the observed host key is saved to
    port : int
        SSH port
    timeout : float
        Connect, banner and auth timeout in seconds
    """

    def __init__(
        self,
        host: str,
        key_file: Path,
        username: str,
        known_hosts: Path,
        port: int = 22,
        timeout: float = TCP_PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self.host = host
        self.key_file = Path(key_file)
        self.username = username
        self.known_hosts = Path(known_hosts)
        self.port = port
        self.timeout = timeout

    def __call__(self) -> bool:
        if not probe_tcp(self.host, self.port, self.timeout):
            return False

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            key = paramiko.RSAKey.from_private_key_file(str(self.key_file))
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                pkey=key,
                timeout=self.timeout,
                auth_timeout=self.timeout,
                banner_timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            self.known_hosts.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            client.save_host_keys(str(self.known_hosts))
            return True
        except (
            paramiko.ssh_exception.NoValidConnectionsError,
            paramiko.ssh_exception.SSHException,
            TimeoutError,
            ConnectionRefusedError,
            ConnectionResetError,
            socket.timeout,
        ) as e:
            logger.debug("SSH not ready on %s: %s", self.host, e)
            return False
        finally:
            client.close()


def build_ssh_command(
    host: str,
    key_file: Path,
    username: str,
    port: int = 22,
    known_hosts: Path | None = None,
) -> list[str]:
    """Build the argument vector for the interactive ``ssh`` client.

    Returns
    -------
    list[str]
        Arguments for ``subprocess``; no shell is involved
    """
    command = [
        "ssh",
        "-i",
        str(key_file),
        "-p",
        str(port),
        "-o",
        "IdentitiesOnly=yes",
        "-o",
        "ServerAliveInterval=30",
        "-o",
        "ServerAliveCountMax=4",
    ]
    if known_hosts is not None and Path(known_hosts).exists():
        command += [
            "-o",
            f"UserKnownHostsFile={known_hosts}",
            "-o",
            "StrictHostKeyChecking=yes",
        ]
    else:
        command += ["-o", "StrictHostKeyChecking=accept-new"]
    command.append(f"{username}@{host}")
    return command


class InteractiveSession:
    """The user's shell, run as a child ``ssh`` process.

    Parameters
    ----------
    command : list[str]
        Argument vector, usually from ``build_ssh_command``
    """

    def __init__(self, command: list[str]) -> None:
        self.command = command
        self.process: subprocess.Popen | None = None
        self._lock = threading.Lock()

    def run(self) -> int:
        """Start the shell and block until it exits.

        Returns
        -------
        int
            Exit status of ``ssh``

        Raises
        ------
        FileNotFoundError
            If the ``ssh`` executable is missing
        """
        logger.info("Opening shell: %s", " ".join(self.command))
        with self._lock:
            self.process = subprocess.Popen(self.command)
        try:
            returncode = self.process.wait()
        finally:
            with self._lock:
                process = self.process
                self.process = None
            if process is not None and process.poll() is None:
                self._stop(process)

        logger.info("Shell exited with status %d", returncode)
        return returncode

    def forward_signal(self, signum: int) -> None:
        """Deliver ``signum`` to the running shell, if any."""
        with self._lock:
            process = self.process
        if process is not None and process.poll() is None:
            logger.debug("Forwarding %s to ssh (pid %d)", signal.Signals(signum).name, process.pid)
            process.send_signal(signum)

    def _stop(self, process: subprocess.Popen) -> None:
        process.terminate()
        try:
            process.wait(timeout=SESSION_TERMINATE_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("ssh did not exit after SIGTERM, killing it")
            process.kill()
            process.wait()
