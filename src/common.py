"""Common utilities and types for network restore automation."""

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Recovered VMs come back with new host keys on a reassigned address
SSH_OPTS = ['-o', 'StrictHostKeyChecking=no', '-o', 'UserKnownHostsFile=/dev/null', '-o', 'LogLevel=ERROR']


@dataclass
class ActionResult:
    """Result returned by an action."""
    success: bool
    message: str = ''
    duration: float = 0.0
    context_updates: dict = field(default_factory=dict)


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)


def ssh_base_args(
    user: str,
    host: str,
    port: int = 22,
    ssh_key: Optional[Path] = None,
    connect_timeout: int = 10,
    control_path: Optional[Path] = None,
    extra: Optional[list[str]] = None,
) -> list[str]:
    """Build the ssh argv prefix (everything up to the remote command).

    extra is inserted just before the destination (e.g. ['-O', 'exit']).
    """
    cmd = ['ssh'] + SSH_OPTS + ['-o', f'ConnectTimeout={connect_timeout}', '-o', 'BatchMode=yes']
    if port != 22:
        cmd += ['-p', str(port)]
    if ssh_key:
        cmd += ['-i', str(ssh_key), '-o', 'IdentitiesOnly=yes']
    if control_path:
        cmd += ['-S', str(control_path)]
    if extra:
        cmd += extra
    cmd.append(f'{user}@{host}')
    return cmd


def run_ssh(
    host: str,
    command: str,
    user: str = 'root',
    timeout: int = 60,
    port: int = 22,
    ssh_key: Optional[Path] = None,
    control_path: Optional[Path] = None,
) -> tuple[int, str, str]:
    """Run command over SSH.

    When control_path is given the command is multiplexed over an already
    open master connection instead of authenticating again.
    """
    cmd = ssh_base_args(
        user, host,
        port=port,
        ssh_key=ssh_key,
        connect_timeout=min(timeout, 30),
        control_path=control_path,
    )
    cmd.append(command)
    return run_command(cmd, timeout=timeout)
