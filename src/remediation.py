"""Remediation: converge a guest interface to its desired static configuration.

The Remediator opens one SSH session to the target, reads the live state of
the named interface, and applies the desired state only when it differs.
The session is a ControlMaster connection that is always torn down on exit,
including on interrupts.
"""

import logging
import shlex
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from common import run_command, run_ssh, ssh_base_args
from inventory import RemediationTarget
from netstate import DesiredInterfaceState, InterfaceState, diff_state, parse_nmcli_device

logger = logging.getLogger(__name__)

CHANGED = 'changed'
UNCHANGED = 'unchanged'


class RemediationError(Exception):
    """Remediation failed on a target."""

    def __init__(self, message: str, address: str = '', interface: str = ''):
        super().__init__(message)
        self.address = address
        self.interface = interface


class ConnectFailure(RemediationError):
    """No session could be established to the target address."""


class ApplyFailure(RemediationError):
    """Desired state could not be read or committed on the target."""


@dataclass
class RemediationResult:
    """Outcome of one convergence: 'changed' or 'unchanged'."""
    outcome: str
    changes: list[str] = field(default_factory=list)
    state: Optional[InterfaceState] = None

    @property
    def changed(self) -> bool:
        return self.outcome == CHANGED


class SSHSession:
    """Scoped SSH connection to a remediation target.

    Usage:
        with SSHSession(target) as session:
            rc, out, err = session.run('nmcli general status')
    """

    def __init__(self, target: RemediationTarget):
        self.target = target
        self._control_dir: Optional[str] = None
        self.control_path: Optional[Path] = None
        self.is_open = False

    def _args(self, extra: Optional[list[str]] = None) -> list[str]:
        return ssh_base_args(
            self.target.user, self.target.address,
            port=self.target.port,
            ssh_key=self.target.ssh_key,
            connect_timeout=self.target.connect_timeout,
            control_path=self.control_path,
            extra=extra,
        )

    def open(self) -> 'SSHSession':
        """Start the master connection.

        Raises:
            ConnectFailure: If the target does not accept the connection
        """
        self._control_dir = tempfile.mkdtemp(prefix='netrestore-')
        self.control_path = Path(self._control_dir) / 'ctl'
        cmd = self._args(['-M', '-N', '-f', '-o', 'ServerAliveInterval=15'])

        logger.debug(f"Opening SSH session to {self.target.user}@{self.target.address}")
        try:
            rc, err = self._start_master(cmd)
        except BaseException:
            # __exit__ never runs when __enter__ raises
            self._cleanup_dir()
            raise

        if rc != 0:
            self._cleanup_dir()
            raise ConnectFailure(
                f"Cannot connect to {self.target.user}@{self.target.address}: {err or f'ssh exited {rc}'}",
                address=self.target.address,
            )
        self.is_open = True
        return self

    def _start_master(self, cmd: list[str]) -> tuple[int, str]:
        # The backgrounded master must not hold our pipes open
        with tempfile.TemporaryFile(mode='w+') as errfile:
            try:
                proc = subprocess.run(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=errfile,
                    timeout=self.target.connect_timeout + 10,
                    check=False,
                )
                rc = proc.returncode
            except subprocess.TimeoutExpired:
                rc = -1
                errfile.write(f'Connection timed out after {self.target.connect_timeout}s')
            except OSError as e:
                rc = -1
                errfile.write(str(e))
            errfile.seek(0)
            return rc, errfile.read().strip()

    def run(self, command: str, timeout: int = 60) -> tuple[int, str, str]:
        """Run a command over the open session."""
        if not self.is_open:
            raise RuntimeError("SSH session is not open")
        return run_ssh(
            self.target.address, command,
            user=self.target.user,
            timeout=timeout,
            port=self.target.port,
            ssh_key=self.target.ssh_key,
            control_path=self.control_path,
        )

    def close(self) -> None:
        """Stop the master connection and remove the control socket."""
        if self.is_open:
            rc, _, err = run_command(self._args(['-O', 'exit']), timeout=15)
            if rc != 0:
                logger.warning(f"SSH master for {self.target.address} did not exit cleanly: {err.strip()}")
            self.is_open = False
        self._cleanup_dir()

    def _cleanup_dir(self) -> None:
        if self._control_dir:
            shutil.rmtree(self._control_dir, ignore_errors=True)
            self._control_dir = None

    def __enter__(self) -> 'SSHSession':
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


class NmcliBackend:
    """Read and apply interface state through NetworkManager (RHEL guests)."""

    FIELDS = 'GENERAL.STATE,IP4.ADDRESS,IP4.GATEWAY,IP4.DNS'

    def __init__(self, connection_name: str = '', timeout: int = 90):
        self.connection_name = connection_name
        self.timeout = timeout

    @staticmethod
    def _sudo(session: SSHSession) -> str:
        return '' if session.target.user == 'root' else 'sudo '

    def _run(self, session: SSHSession, command: str, interface: str, what: str) -> str:
        rc, out, err = session.run(command, timeout=self.timeout)
        if rc != 0:
            raise ApplyFailure(
                f"{what} failed on {session.target.address} ({interface}): {err.strip() or out.strip()}",
                address=session.target.address,
                interface=interface,
            )
        return out

    def read(self, session: SSHSession, interface: str) -> InterfaceState:
        """Read live state of the interface."""
        out = self._run(
            session,
            f'nmcli -t -f {self.FIELDS} device show {shlex.quote(interface)}',
            interface, 'Reading interface',
        )
        return parse_nmcli_device(out, interface)

    def _connections(self, session: SSHSession, interface: str) -> list[tuple[str, str]]:
        out = self._run(session, 'nmcli -t -f NAME,DEVICE connection show', interface, 'Listing connections')
        connections = []
        for line in out.splitlines():
            if not line.strip():
                continue
            name, _, device = line.rpartition(':')
            connections.append((name.replace('\\:', ':'), device))
        return connections

    def resolve_connection(self, session: SSHSession, interface: str) -> tuple[str, bool]:
        """Return (connection name, exists) for the interface.

        A configured connection name wins; otherwise the connection active on
        the device; otherwise a new connection named after the interface.
        """
        connections = self._connections(session, interface)
        names = {name for name, _ in connections}
        if self.connection_name:
            return self.connection_name, self.connection_name in names
        for name, device in connections:
            if device == interface:
                return name, True
        return interface, interface in names

    def apply(self, session: SSHSession, desired: DesiredInterfaceState) -> None:
        """Commit the desired state and bring the connection up."""
        iface = desired.interface
        sudo = self._sudo(session)
        con, exists = self.resolve_connection(session, iface)
        q_con = shlex.quote(con)

        if not exists:
            logger.info(f"Creating connection '{con}' for {iface}")
            self._run(
                session,
                f'{sudo}nmcli connection add type ethernet ifname {shlex.quote(iface)} con-name {q_con}',
                iface, 'Creating connection',
            )

        settings = [
            'connection.interface-name', iface,
            'connection.autoconnect', 'yes',
            'ipv4.method', 'manual',
            'ipv4.addresses', desired.cidr,
            'ipv4.gateway', desired.gateway,
            'ipv4.dns', ' '.join(desired.dns),
            'ipv4.ignore-auto-dns', 'yes',
        ]
        self._run(
            session,
            f'{sudo}nmcli connection modify {q_con} ' + ' '.join(shlex.quote(s) for s in settings),
            iface, 'Applying configuration',
        )
        self._run(session, f'{sudo}nmcli connection up {q_con}', iface, 'Activating connection')


class Remediator:
    """Converge a target's interface to the desired state."""

    def __init__(self, backend: Optional[NmcliBackend] = None,
                 session_factory: Optional[Callable[[RemediationTarget], SSHSession]] = None):
        self.backend = backend or NmcliBackend()
        self.session_factory = session_factory or SSHSession

    def converge(self, target: RemediationTarget, desired: DesiredInterfaceState) -> RemediationResult:
        """Apply desired state if it differs from the live state.

        Raises:
            ConnectFailure: Session could not be opened (not retried)
            ApplyFailure: Interface could not be read or configured
        """
        with self.session_factory(target) as session:
            current = self.backend.read(session, desired.interface)
            changes = diff_state(current, desired)
            if not changes:
                logger.info(f"{target.name}: {desired.interface} already at {desired.cidr}")
                return RemediationResult(outcome=UNCHANGED, state=current)

            logger.info(f"{target.name}: {desired.interface} differs ({', '.join(changes)}), applying {desired.cidr}")
            self.backend.apply(session, desired)

            after = self.backend.read(session, desired.interface)
            remaining = diff_state(after, desired)
            if remaining:
                raise ApplyFailure(
                    f"{desired.interface} on {target.address} still differs after apply: {', '.join(remaining)}",
                    address=target.address,
                    interface=desired.interface,
                )
            return RemediationResult(outcome=CHANGED, changes=changes, state=after)
