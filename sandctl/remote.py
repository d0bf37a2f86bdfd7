"""
Remote checks against provisioned VMs.

Uses the system ssh client in batch mode; no SSH library is required.
"""

from __future__ import annotations

import logging
import socket
import subprocess
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

BOOT_FINISHED_MARKER = "/var/lib/cloud/instance/boot-finished"
SSH_PORT = 22


def port_open(address: str, port: int = SSH_PORT, timeout: float = 5.0) -> bool:
    """True if a TCP connection to address:port can be opened."""
    try:
        with socket.create_connection((address, port), timeout=timeout):
            return True
    except OSError:
        return False


def _ssh_command(
    address: str,
    command: str,
    *,
    user: str,
    private_key: Optional[Union[str, Path]],
    connect_timeout: int,
) -> List[str]:
    args = [
        "ssh",
        "-o", "BatchMode=yes",
        "-o", "StrictHostKeyChecking=no",
        "-o", "UserKnownHostsFile=/dev/null",
        "-o", "LogLevel=ERROR",
        "-o", f"ConnectTimeout={connect_timeout}",
    ]
    if private_key:
        args += ["-i", str(Path(private_key).expanduser())]
    args += [f"{user}@{address}", command]
    return args


def ssh_exec(
    address: str,
    command: str,
    *,
    user: str = "root",
    private_key: Optional[Union[str, Path]] = None,
    timeout: float = 30.0,
) -> subprocess.CompletedProcess:
    """
    Run a command on a VM over SSH and return the completed process.

    Raises:
        subprocess.TimeoutExpired: If the command outlives timeout.
        FileNotFoundError: If no ssh client is installed.
    """
    args = _ssh_command(
        address,
        command,
        user=user,
        private_key=private_key,
        connect_timeout=max(1, int(min(timeout, 10))),
    )
    logger.debug("ssh %s@%s: %s", user, address, command)
    return subprocess.run(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )


def boot_finished(
    address: str,
    *,
    user: str = "root",
    private_key: Optional[Union[str, Path]] = None,
    timeout: float = 15.0,
) -> bool:
    """
    True once cloud-init has written its boot-finished marker.

    Connection failures and timeouts mean "not yet". A missing ssh client is
    a hard error.
    """
    try:
        result = ssh_exec(
            address,
            f"test -f {BOOT_FINISHED_MARKER} && echo done",
            user=user,
            private_key=private_key,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.debug("boot check on %s timed out", address)
        return False
    return result.returncode == 0 and "done" in result.stdout
