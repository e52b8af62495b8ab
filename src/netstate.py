"""Interface state model: desired vs live configuration and their difference.

The desired state is declared in target config. The live state is read from
the guest (NetworkManager terse output). diff_state() lists the fields that
must change for the live interface to match the desired one.
"""

import ipaddress
from dataclasses import dataclass, field
from typing import Optional

# NetworkManager device state code for "connected"
NM_STATE_CONNECTED = 100


@dataclass(frozen=True)
class DesiredInterfaceState:
    """Declared target configuration of the machine-network interface."""
    interface: str
    address: str
    prefix: int
    gateway: str
    dns: tuple[str, ...] = ()

    @property
    def cidr(self) -> str:
        return f'{self.address}/{self.prefix}'

    def to_params(self) -> dict:
        """Flatten into host vars for playbook-based remediation."""
        return {
            'machine_network_interface': self.interface,
            'machine_network_address': self.address,
            'machine_network_prefix': self.prefix,
            'machine_network_gateway': self.gateway,
            'machine_network_dns': list(self.dns),
        }


@dataclass
class InterfaceState:
    """Live configuration of an interface as reported by the guest."""
    interface: str
    addresses: list[str] = field(default_factory=list)  # CIDR strings
    gateway: str = ''
    dns: list[str] = field(default_factory=list)
    connected: bool = False


def parse_cidr(value: str, prefix: Optional[int] = None) -> tuple[str, int]:
    """Split an address (optionally with /prefix) into (address, prefix).

    An explicit prefix argument must agree with an embedded one.

    Raises:
        ValueError: If the address or prefix is invalid or missing
    """
    value = str(value).strip()
    if '/' in value:
        iface = ipaddress.ip_interface(value)
        embedded = iface.network.prefixlen
        if prefix is not None and int(prefix) != embedded:
            raise ValueError(f"prefix {prefix} conflicts with address {value}")
        return str(iface.ip), embedded

    ip = ipaddress.ip_address(value)
    if prefix is None:
        raise ValueError(f"no prefix length for address {value}")
    prefix = int(prefix)
    if not 0 <= prefix <= ip.max_prefixlen:
        raise ValueError(f"prefix {prefix} out of range for {value}")
    return str(ip), prefix


def _normalize_cidr(value: str) -> str:
    try:
        return str(ipaddress.ip_interface(value))
    except ValueError:
        return value


def _normalize_ip(value: str) -> str:
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        return value


def diff_state(current: InterfaceState, desired: DesiredInterfaceState) -> list[str]:
    """Return the names of fields where current differs from desired.

    An empty list means the interface already matches. Field names are
    'address', 'prefix', 'gateway', 'dns' and 'state' (interface not up).
    """
    changes = []

    current_cidrs = [_normalize_cidr(a) for a in current.addresses]
    current_ips = [c.split('/')[0] for c in current_cidrs]
    if current_ips != [_normalize_ip(desired.address)]:
        changes.append('address')
    elif current_cidrs[0] != _normalize_cidr(desired.cidr):
        changes.append('prefix')

    if _normalize_ip(current.gateway) != _normalize_ip(desired.gateway):
        changes.append('gateway')

    if [_normalize_ip(d) for d in current.dns] != [_normalize_ip(d) for d in desired.dns]:
        changes.append('dns')

    if not current.connected:
        changes.append('state')

    return changes


def parse_nmcli_device(output: str, interface: str) -> InterfaceState:
    """Parse `nmcli -t -f GENERAL.STATE,IP4.ADDRESS,IP4.GATEWAY,IP4.DNS device show`.

    Example input:
        GENERAL.STATE:100 (connected)
        IP4.ADDRESS[1]:192.168.160.120/24
        IP4.GATEWAY:192.168.160.1
        IP4.DNS[1]:8.8.8.8
    """
    state = InterfaceState(interface=interface)
    for line in output.splitlines():
        if ':' not in line:
            continue
        key, value = line.split(':', 1)
        value = value.strip()
        if not value or value == '--':
            continue
        key = key.split('[', 1)[0]

        if key == 'GENERAL.STATE':
            code = value.split(' ', 1)[0]
            state.connected = code.isdigit() and int(code) == NM_STATE_CONNECTED
        elif key == 'IP4.ADDRESS':
            state.addresses.append(value)
        elif key == 'IP4.GATEWAY':
            state.gateway = value
        elif key == 'IP4.DNS':
            state.dns.append(value)
    return state
